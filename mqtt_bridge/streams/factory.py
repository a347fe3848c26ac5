from typing import Dict, ClassVar, Type
from mqtt_bridge.utils.logger import logger
from mqtt_bridge.utils.exceptions import UnsupportedTypeError
from mqtt_bridge.streams.base import Stream


class StreamFactory:
    """
    Factory for creating Stream implementations.

    Registry-based: stream types register under a name and are created from
    the STREAM_TYPE setting at start-up.
    """

    REGISTRY: ClassVar[Dict[str, Type[Stream]]] = {}

    @classmethod
    def register_stream(cls, name: str, stream_class: Type[Stream]) -> None:
        """
        Register a stream implementation.

        Args:
            name (str): The name to register the stream under.
            stream_class (Type[Stream]): The stream class to register.
        """
        cls.REGISTRY[name.lower()] = stream_class

    @classmethod
    def create(cls, stream_type: str, **kwargs) -> Stream:
        """
        Create a Stream implementation based on requested type.

        Args:
            stream_type (str): The type of stream to create.
            **kwargs: Configuration parameters passed to the implementation.

        Returns:
            Stream: An initialized Stream implementation.

        Raises:
            UnsupportedTypeError: If the requested stream type is not supported.
        """
        normalized_type = stream_type.lower()
        logger.debug(f"Creating stream of type: {normalized_type}")

        if normalized_type not in cls.REGISTRY:
            supported = list(cls.REGISTRY.keys())
            logger.error(
                f"Unsupported stream type: {stream_type}. Supported types: {supported}"
            )
            raise UnsupportedTypeError(
                f"Unsupported stream type: {stream_type}. Supported types: {supported}"
            )

        stream_class = cls.REGISTRY[normalized_type]
        return stream_class(**kwargs)
