from typing import Any, Dict
import json

from mqtt_bridge.message import InboundMessage
from mqtt_bridge.utils.exceptions import SerializationError
from mqtt_bridge.utils.logger import logger


class Serializer:
    """
    Utility class converting inbound messages to JSON-compatible dicts.

    The payload is embedded as decoded JSON when it parses, and as text
    otherwise, so downstream consumers get a structured body whenever the
    publisher sent one.
    """

    def serialize(self, message: InboundMessage) -> Dict[str, Any]:
        """
        Serialize a message to a JSON-compatible dict.

        Raises:
            SerializationError: If the message cannot be represented.
        """
        try:
            return {
                "topic": message.topic,
                "mapping": message.mapping.topic,
                "payload": self._serialize_payload(message),
                "received_at": message.received_at,
            }
        except Exception as e:
            raise SerializationError(f"Failed to serialize message on {message.topic}: {e}")

    def _serialize_payload(self, message: InboundMessage) -> Any:
        try:
            return json.loads(message.payload)
        except ValueError as e:
            # Non-JSON payloads travel as plain text
            logger.debug(f"Payload on {message.topic} is not JSON ({e}), sending as text")
            return message.payload_as_string()
