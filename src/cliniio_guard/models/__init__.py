"""
Data models for the request guard.
"""

from .facility_identity import FacilityIdentity
from .query_repair import (
    QueryParameterRepair,
    RepairAction,
    default_repairs,
)

__all__ = [
    "FacilityIdentity",
    "QueryParameterRepair",
    "RepairAction",
    "default_repairs",
]
