from typing import Any, Dict, Sequence

from mqtt_bridge.filters.base import MessageFilter, PayloadDecodeError
from mqtt_bridge.mappings.base import ConstraintGroup
from mqtt_bridge.message import InboundMessage


def should_skip_fields(
    fields: Dict[str, Any], groups: Sequence[ConstraintGroup], invert: bool
) -> bool:
    """
    Decide from decoded payload fields whether a message is discarded.

    Groups are processed in order. Without ``invert`` the first group that
    has a mismatching field ends the evaluation with a skip, so a later group
    can never rescue the message. With ``invert`` the decision is reset for
    every group and only the last group counts: the message is kept when at
    least one of its fields matches.

    Args:
        fields: The payload decoded as a JSON object.
        groups: Ordered constraint groups, field name to expected value.
        invert: Whether matching fields keep rather than reject the message.

    Returns:
        bool: True if the message must be discarded.
    """
    skip = False

    for group in groups:
        skip = invert
        for key, expected in group.items():
            # A missing key reads as None and never equals a string
            if (fields.get(key) == expected) == invert:
                skip = not invert
            if not invert and skip:
                break
        if not invert and skip:
            break

    return skip


class FieldEqualityFilter(MessageFilter):
    """Filter that compares JSON payload fields against expected values."""

    def __init__(self, groups: Sequence[ConstraintGroup], invert: bool = False):
        self.groups = list(groups)
        self.invert = invert

    def should_skip(self, message: InboundMessage) -> bool:
        try:
            fields = message.payload_as_json()
        except ValueError as e:
            raise PayloadDecodeError(
                f"Payload on {message.topic} is not a JSON object: {e}"
            ) from e

        return should_skip_fields(fields, self.groups, self.invert)
