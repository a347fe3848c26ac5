from abc import ABC, abstractmethod
from typing import List, Optional, Protocol
import logging

from mqtt_bridge.message import InboundMessage

logger = logging.getLogger(__name__)


class FilterException(Exception):
    """Exception raised for errors in filter operations.

    Filter errors are per-message: the dispatcher reports them and discards
    the offending message without affecting the connection.
    """
    pass


class PayloadDecodeError(FilterException):
    """Raised when a payload cannot be decoded into the shape a filter needs."""
    pass


class FilterLike(Protocol):
    """Protocol for objects with filter method compatibility.

    Anything exposing ``should_skip`` can take part in a filter chain, which
    keeps real filters and test doubles interchangeable.
    """

    def should_skip(self, message: InboundMessage) -> bool:
        """Return True when the message must be discarded."""
        ...


class MessageFilter(ABC):
    """Abstract base class for all message filters."""

    @abstractmethod
    def should_skip(self, message: InboundMessage) -> bool:
        """Decide whether a message is discarded.

        Args:
            message: The inbound message, paired with its mapping.

        Returns:
            True if the message must be discarded, False to keep it.

        Raises:
            FilterException: If the message cannot be evaluated.
        """
        pass


class FilterChain:
    """A chain of filters that must all pass for a message to be kept.

    Filters are consulted in order and evaluation stops at the first one that
    asks for the message to be skipped. An empty chain keeps every message.
    """

    def __init__(self, filters: Optional[List[FilterLike]] = None):
        self.filters = filters or []

    def add_filter(self, message_filter: FilterLike) -> None:
        """Add a filter to the end of the chain."""
        self.filters.append(message_filter)

    def should_skip(self, message: InboundMessage) -> bool:
        for message_filter in self.filters:
            if message_filter.should_skip(message):
                return True
        return False
