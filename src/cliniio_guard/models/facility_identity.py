"""
Facility identity model.

A resolved facility (tenant) id plus the wall-clock time it was resolved.
The facility cache holds at most one of these at a time and replaces it
on every successful resolution.
"""

from dataclasses import dataclass
from typing import Dict, Any


@dataclass(frozen=True)
class FacilityIdentity:
    """
    Resolved facility id.

    Attributes:
        id: Opaque facility UUID used to scope PostgREST queries
        resolved_at: time.time() when the id was resolved
    """
    id: str
    resolved_at: float

    def age(self, now: float) -> float:
        """Seconds since resolution."""
        return now - self.resolved_at

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return self.age(now) < ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging/debugging."""
        return {
            "id": self.id,
            "resolved_at": self.resolved_at,
        }

    def __repr__(self) -> str:
        return f"FacilityIdentity(id={self.id!r}, resolved_at={self.resolved_at!r})"
