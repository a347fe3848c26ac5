from mqtt_bridge.mappings.base import Mapping, MappingRegistry, ConstraintGroup

__all__ = ["Mapping", "MappingRegistry", "ConstraintGroup"]
