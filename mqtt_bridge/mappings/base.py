from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping as MappingType, Optional, Tuple

from mqtt_bridge.utils.exceptions import ConfigurationError


# A group of field constraints: field name -> expected string value
ConstraintGroup = MappingType[str, str]


def _expected_value(topic: str, key: Any, value: Any) -> str:
    # YAML reads on/yes/true as booleans, so the written text is already lost
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigurationError(
            f"Filter value {key!r} for {topic} must be a string or number; "
            f"quote it in the config file, got {value!r}"
        )
    return str(value)


@dataclass(frozen=True)
class Mapping:
    """
    Binding of one broker topic to the rule that filters its messages.

    A mapping either names a predicate script or carries an ordered tuple of
    field constraint groups. When both are present the script wins and the
    constraint groups are ignored.
    """

    topic: str
    script: Optional[str] = None
    filters: Tuple[ConstraintGroup, ...] = field(default_factory=tuple)
    invert: bool = False

    @property
    def has_script(self) -> bool:
        return bool(self.script)

    @property
    def has_field_filters(self) -> bool:
        return len(self.filters) > 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Mapping":
        """
        Build a Mapping from one entry of the ``mappings`` config section.

        Raises:
            ConfigurationError: If the entry is malformed.
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Mapping entry must be a mapping, got {type(data).__name__}")

        topic = data.get("topic")
        if not topic or not isinstance(topic, str):
            raise ConfigurationError("Mapping topic is required")

        script = data.get("script")
        if script is not None and not isinstance(script, str):
            raise ConfigurationError(f"Mapping script for {topic} must be a path")

        raw_groups = data.get("filters") or []
        if not isinstance(raw_groups, list):
            raise ConfigurationError(f"Mapping filters for {topic} must be a list")

        groups: List[ConstraintGroup] = []
        for raw_group in raw_groups:
            if not isinstance(raw_group, dict):
                raise ConfigurationError(
                    f"Filter group for {topic} must be a mapping of field to value"
                )
            group = {
                str(key): _expected_value(topic, key, value)
                for key, value in raw_group.items()
            }
            groups.append(MappingProxyType(group))

        invert = data.get("invert", False)
        if not isinstance(invert, bool):
            raise ConfigurationError(f"Mapping invert flag for {topic} must be a boolean")

        return cls(topic=topic, script=script or None, filters=tuple(groups), invert=invert)


class MappingRegistry:
    """
    Ordered, read-only collection of mappings.

    Built once from configuration and shared between the connection manager
    and the dispatcher without locking, since nothing mutates it after load.
    """

    def __init__(self, mappings: Iterable[Mapping]):
        self._mappings: Tuple[Mapping, ...] = tuple(mappings)

    @classmethod
    def from_list(cls, entries: Optional[List[Dict[str, Any]]]) -> "MappingRegistry":
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise ConfigurationError("The mappings section must be a list")
        return cls(Mapping.from_dict(entry) for entry in entries)

    @property
    def topics(self) -> List[str]:
        return [mapping.topic for mapping in self._mappings]

    def __iter__(self) -> Iterator[Mapping]:
        return iter(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)

    def __getitem__(self, index: int) -> Mapping:
        return self._mappings[index]
