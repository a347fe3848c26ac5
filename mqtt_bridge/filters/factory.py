from typing import List

from mqtt_bridge.filters.base import FilterChain, FilterLike
from mqtt_bridge.filters.field_equality import FieldEqualityFilter
from mqtt_bridge.filters.script import ScriptPredicateFactory, ScriptPredicateFilter
from mqtt_bridge.mappings.base import Mapping
from mqtt_bridge.utils.logger import logger


class FilterFactory:
    """Factory for creating filter components.

    Turns the filter settings of a mapping into the chain the dispatcher
    evaluates for every message of that mapping.
    """

    @staticmethod
    def create_filter_chain(filters: List[FilterLike]) -> FilterChain:
        """Create a new filter chain with the provided filters."""
        return FilterChain(filters)

    @staticmethod
    def create_for_mapping(mapping: Mapping) -> FilterChain:
        """
        Build the filter chain for a mapping.

        A configured script governs the mapping on its own; field constraint
        groups are only used when there is no script. A mapping with neither
        gets an empty chain, which keeps every message.

        Raises:
            UnsupportedTypeError: If the script type has no registered runner.
        """
        filters: List[FilterLike] = []

        if mapping.has_script:
            if mapping.has_field_filters:
                logger.warning(
                    f"Mapping {mapping.topic} has a script; its field filters are ignored"
                )
            predicate = ScriptPredicateFactory.create(mapping.script)
            filters.append(ScriptPredicateFilter(predicate))
        elif mapping.has_field_filters:
            filters.append(FieldEqualityFilter(mapping.filters, mapping.invert))

        return FilterFactory.create_filter_chain(filters)
