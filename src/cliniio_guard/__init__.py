"""
Cliniio Request Guard

Repairs malformed PostgREST query filters before requests reach Supabase:
- Empty equality filters are dropped
- Corrupted facility filters are re-scoped to the current facility
- Stray ":1" suffixes are stripped
- Duplicate parameters are collapsed
"""

__version__ = "1.0.0"

from .core.config import settings

__all__ = ["settings", "__version__"]
