"""Filter module deciding which broker messages are forwarded.

Every mapping gets a filter chain built from its configuration. Two kinds of
filter exist: field equality against a JSON payload, and an external predicate
script. A message is forwarded only when no filter in its chain skips it.

Key components:
- MessageFilter: Abstract base class for all message filters
- FilterChain: Filters applied in order, first skip wins
- FieldEqualityFilter: Constraint-group matching on JSON payload fields
- ScriptPredicateFilter: Delegates the decision to a predicate script
- FilterFactory: Builds the chain for a mapping
- FilterException: Exception raised for errors during filtering
"""

from mqtt_bridge.filters.base import (
    MessageFilter,
    FilterChain,
    FilterException,
    PayloadDecodeError,
)
from mqtt_bridge.filters.field_equality import FieldEqualityFilter, should_skip_fields
from mqtt_bridge.filters.script import (
    ScriptPredicate,
    PythonScriptPredicate,
    ScriptPredicateFactory,
    ScriptPredicateFilter,
)
from mqtt_bridge.filters.factory import FilterFactory

# Register the Python predicate runner for .py scripts
ScriptPredicateFactory.register_predicate("py", PythonScriptPredicate)

__all__ = [
    "MessageFilter",
    "FilterChain",
    "FilterException",
    "PayloadDecodeError",
    "FieldEqualityFilter",
    "should_skip_fields",
    "ScriptPredicate",
    "PythonScriptPredicate",
    "ScriptPredicateFactory",
    "ScriptPredicateFilter",
    "FilterFactory",
]
