from abc import ABC, abstractmethod
from pathlib import Path
from typing import ClassVar, Dict, Type
import runpy

from mqtt_bridge.filters.base import MessageFilter
from mqtt_bridge.message import InboundMessage
from mqtt_bridge.utils.exceptions import ScriptPredicateError, UnsupportedTypeError
from mqtt_bridge.utils.logger import logger


MATCH_FUNCTION = "match"


class ScriptPredicate(ABC):
    """
    Base abstract class for externally authored predicate scripts.

    A predicate script exposes a ``match(payload)`` callable taking the message
    body as text and returning a boolean. Implementations decide how the script
    is loaded; each call to ``evaluate`` must run in a fresh context so that no
    state survives between messages.
    """

    def __init__(self, path: str):
        self.path = path

    @abstractmethod
    def evaluate(self, payload: str) -> bool:
        """
        Run the script against a payload.

        Returns:
            bool: True only if ``match`` returned the boolean True.

        Raises:
            ScriptPredicateError: If the script cannot be loaded or ``match`` raises.
        """
        pass


class PythonScriptPredicate(ScriptPredicate):
    """Predicate script written in Python.

    The file is executed with ``runpy`` on every evaluation, which gives each
    message a brand new module namespace. Nothing is cached.
    """

    RUN_NAME = "__mqtt_bridge_predicate__"

    def evaluate(self, payload: str) -> bool:
        try:
            namespace = runpy.run_path(self.path, run_name=self.RUN_NAME)
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            raise ScriptPredicateError(
                f"Failed to load predicate script {self.path}: {e}"
            ) from e

        match = namespace.get(MATCH_FUNCTION)
        if not callable(match):
            logger.debug(f"Predicate script {self.path} has no callable {MATCH_FUNCTION}")
            return False

        try:
            result = match(payload)
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            raise ScriptPredicateError(
                f"Predicate script {self.path} failed: {e}"
            ) from e

        return result is True


class ScriptPredicateFactory:
    """
    Factory for creating ScriptPredicate implementations.

    Implementations are registered per file extension; the extension of the
    configured script path selects the runner.
    """

    REGISTRY: ClassVar[Dict[str, Type[ScriptPredicate]]] = {}

    @classmethod
    def register_predicate(
        cls, extension: str, predicate_class: Type[ScriptPredicate]
    ) -> None:
        """
        Register a script predicate implementation.

        Args:
            extension (str): File extension, with or without the leading dot.
            predicate_class (Type[ScriptPredicate]): The implementation to register.
        """
        cls.REGISTRY[cls._normalize(extension)] = predicate_class

    @classmethod
    def create(cls, path: str) -> ScriptPredicate:
        """
        Create the ScriptPredicate matching the script's file extension.

        Raises:
            UnsupportedTypeError: If no implementation handles the extension.
        """
        extension = cls._normalize(Path(path).suffix)
        logger.debug(f"Creating script predicate for {path}")

        if extension not in cls.REGISTRY:
            supported = list(cls.REGISTRY.keys())
            logger.error(
                f"Unsupported predicate script type: {path}. Supported types: {supported}"
            )
            raise UnsupportedTypeError(
                f"Unsupported predicate script type: {path}. Supported types: {supported}"
            )

        return cls.REGISTRY[extension](path)

    @staticmethod
    def _normalize(extension: str) -> str:
        return extension.lower().lstrip(".")


class ScriptPredicateFilter(MessageFilter):
    """Filter delegating the keep/skip decision to a predicate script."""

    def __init__(self, predicate: ScriptPredicate):
        self.predicate = predicate

    def should_skip(self, message: InboundMessage) -> bool:
        return not self.predicate.evaluate(message.payload_as_string())
