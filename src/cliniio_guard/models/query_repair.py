"""
Query parameter repair rules.

Each rule names one malformed PostgREST filter shape and what to do with
it. Rules are evaluated in list order and the first match wins, so a
parameter is repaired at most once per pass.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Optional


class RepairAction(str, Enum):
    """What a rule does to a matching parameter."""
    DELETE = "delete"
    STRIP_SUFFIX = "strip_suffix"
    FACILITY = "facility"


# Degenerate "filter by nothing" forms produced by the query builder
EMPTY_EQ_VALUES = frozenset({"eq.", "eq", "eq:", "eq:.", "."})

# Tenant filters where a stray ":1" replaced the facility UUID
CORRUPTED_TENANT_VALUES = frozenset({"eq.:1", "eq:1", ":1", "eq.:"})

TRAILING_TOKEN = ":1"

# PostgREST cannot compare two columns; the builder emits this anyway
COLUMN_COMPARISON_PARAM = "quantity"
COLUMN_COMPARISON_VALUE = "lt.reorder_point"


@dataclass(frozen=True)
class QueryParameterRepair:
    """
    A named repair rule.

    Attributes:
        name: Rule name, used in debug logs
        action: What to do with a matching parameter
        param: Parameter name the rule applies to (None = any parameter)
        values: Exact (trimmed) values that match
        suffix: Value suffix that matches, used instead of ``values``
    """
    name: str
    action: RepairAction
    param: Optional[str] = None
    values: FrozenSet[str] = frozenset()
    suffix: Optional[str] = None

    def matches(self, param: str, value: str) -> bool:
        if self.param is not None and param != self.param:
            return False
        if self.suffix is not None:
            return value.endswith(self.suffix)
        return value in self.values

    def strip(self, value: str) -> str:
        """Remove this rule's suffix from ``value``."""
        if self.suffix and value.endswith(self.suffix):
            return value[:-len(self.suffix)]
        return value


def default_repairs(tenant_param: str = "facility_id") -> List[QueryParameterRepair]:
    """Build the ordered rule list used by the request sanitizer."""
    return [
        QueryParameterRepair(
            name="empty_eq_filter",
            action=RepairAction.DELETE,
            values=EMPTY_EQ_VALUES,
        ),
        QueryParameterRepair(
            name="corrupted_tenant_scope",
            action=RepairAction.FACILITY,
            param=tenant_param,
            values=CORRUPTED_TENANT_VALUES,
        ),
        QueryParameterRepair(
            name="trailing_colon_one",
            action=RepairAction.STRIP_SUFFIX,
            suffix=TRAILING_TOKEN,
        ),
        QueryParameterRepair(
            name="column_comparison",
            action=RepairAction.DELETE,
            param=COLUMN_COMPARISON_PARAM,
            values=frozenset({COLUMN_COMPARISON_VALUE}),
        ),
    ]
