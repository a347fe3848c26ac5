import queue
from typing import Callable

from mqtt_bridge.filters.base import FilterException, FilterLike
from mqtt_bridge.filters.factory import FilterFactory
from mqtt_bridge.mappings.base import Mapping
from mqtt_bridge.message import InboundMessage
from mqtt_bridge.utils.logger import logger


# Type alias for a topic handler: (topic, payload)
MessageHandler = Callable[[str, bytes], None]


class Dispatcher:
    """
    Sits between the broker callbacks and the outbound channel.

    Each mapping gets its own handler closing over that mapping and its filter
    chain. Handlers share nothing but the outbound queue, so they can be called
    from any number of threads at once.
    """

    def __init__(self, outbound: "queue.Queue[InboundMessage]") -> None:
        """
        Initialize the dispatcher.

        Args:
            outbound: Queue kept messages are put on. When bounded, a full queue
                blocks the calling handler until the consumer catches up.
        """
        self.outbound = outbound

    def handler_for(self, mapping: Mapping) -> MessageHandler:
        """
        Build the handler for one mapping's subscription.

        Raises:
            UnsupportedTypeError: If the mapping's script type is not supported.
        """
        chain = FilterFactory.create_for_mapping(mapping)

        def handle(topic: str, payload: bytes) -> None:
            message = InboundMessage(topic=topic, payload=payload, mapping=mapping)
            self.dispatch(message, chain)

        return handle

    def dispatch(self, message: InboundMessage, chain: FilterLike) -> bool:
        """
        Filter a message and put it on the outbound queue if it is kept.

        Filter errors discard the message. Script faults are not caught here
        and end the process.

        Returns:
            bool: True if the message was forwarded.
        """
        try:
            skip = chain.should_skip(message)
        except FilterException as e:
            logger.error(f"Discarding message on {message.topic}: {e}")
            return False

        if skip:
            logger.debug(f"No match! {message.topic}: {message.payload_as_string()}")
            return False

        logger.debug(f"Match! {message.topic}: {message.payload_as_string()}")
        self.outbound.put(message)
        return True
