from abc import ABC, abstractmethod
from typing import Any, Dict, List


class Stream(ABC):
    """
    Base abstract class for all stream implementations.

    Streams are the downstream destinations of forwarded broker messages
    (e.g., AWS SQS, or the application log during local runs).
    """

    @abstractmethod
    def send(self, messages: List[Dict[str, Any]]) -> None:
        """
        Send messages to the stream destination.

        Args:
            messages (List[Dict[str, Any]]): Serialized messages to send.

        Raises:
            StreamError: If the send operation fails.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Close any open connections or resources.

        Raises:
            StreamError: If the close operation fails.
        """
        pass
