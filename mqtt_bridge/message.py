import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict

from mqtt_bridge.mappings.base import Mapping


@dataclass(frozen=True)
class InboundMessage:
    """
    A message received from the broker, paired with the mapping whose
    subscription delivered it.

    The mapping is a back-reference fixed when the handler was installed; it
    never changes for the lifetime of the message.
    """

    topic: str
    payload: bytes
    mapping: Mapping
    received_at: float = field(default_factory=time.time)

    def payload_as_string(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    def payload_as_json(self) -> Dict[str, Any]:
        """
        Decode the payload as a JSON object.

        Raises:
            ValueError: If the payload is not valid JSON or not an object.
        """
        fields = json.loads(self.payload)
        if not isinstance(fields, dict):
            raise ValueError(f"Expected a JSON object, got {type(fields).__name__}")
        return fields
