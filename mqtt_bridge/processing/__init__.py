from mqtt_bridge.processing.dispatcher import Dispatcher, MessageHandler
from mqtt_bridge.processing.forwarder import Forwarder, BatchSizeAndTimePolicy

__all__ = [
    "Dispatcher",
    "MessageHandler",
    "Forwarder",
    "BatchSizeAndTimePolicy"
]
