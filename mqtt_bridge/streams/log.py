from typing import Any, Dict, List
import json

from mqtt_bridge.streams.base import Stream
from mqtt_bridge.utils.logger import logger


class LogStream(Stream):
    """Stream writing each forwarded message to the application log."""

    def __init__(self, source: str = "mqtt_bridge"):
        self.source = source

    def send(self, messages: List[Dict[str, Any]]) -> None:
        for message in messages:
            logger.info(f"[{self.source}] {json.dumps(message, default=str)}")

    def close(self) -> None:
        pass
