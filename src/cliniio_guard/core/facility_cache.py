"""
Facility id cache for the fetch guard.

The request sanitizer runs synchronously inside a transport call, so it
cannot await a facility lookup mid-flight. This cache gives it a
synchronous read (get_current) backed by an asynchronous refresh
(resolve):

- Fresh value: returned as-is.
- Stale value: returned immediately, refresh scheduled in the background.
- No value: development placeholder outside production, error in production.

Overlapping resolve() calls are not coalesced; the last one to finish wins.
"""

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Optional, Set

from cliniio_guard.core.config import settings
from cliniio_guard.core.errors import FacilityResolutionError
from cliniio_guard.models.facility_identity import FacilityIdentity

logger = logging.getLogger(__name__)

FacilityIdLookup = Callable[[], Awaitable[Optional[str]]]
RouteProvider = Callable[[], Optional[str]]


class FacilityIdentityCache:
    """
    Caches the current facility id for synchronous readers.

    Args:
        lookup: Async callable returning the current facility id or None
        environment: "development", "staging" or "production"
        ttl_seconds: Freshness window for a resolved id
        dev_facility_id: Placeholder used outside production
        login_path: Route on which resolve() does nothing
        route_provider: Callable returning the active route, if known
        clock: Wall-clock function, time.time by default
    """

    def __init__(
        self,
        lookup: Optional[FacilityIdLookup] = None,
        environment: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        dev_facility_id: Optional[str] = None,
        login_path: Optional[str] = None,
        route_provider: Optional[RouteProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.lookup = lookup
        self.environment = environment or settings.environment
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None
            else settings.guard.facility_cache_ttl_seconds
        )
        self.dev_facility_id = dev_facility_id or settings.guard.dev_facility_id
        self.login_path = login_path or settings.guard.login_path
        self.route_provider = route_provider
        self._clock = clock
        self._identity: Optional[FacilityIdentity] = None
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def identity(self) -> Optional[FacilityIdentity]:
        return self._identity

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def _on_login_route(self) -> bool:
        if self.route_provider is None:
            return False
        return self.route_provider() == self.login_path

    async def resolve(self) -> Optional[FacilityIdentity]:
        """
        Look up the current facility id and store it.

        A failed or empty lookup never overwrites a previous value. With no
        previous value the development placeholder is stored, except in
        production where the cache stays empty.

        Returns:
            The identity held after the call (may be None in production)
        """
        if self._on_login_route():
            logger.debug("Skipping facility resolution on login route")
            return self._identity

        facility_id = None
        if self.lookup is None:
            logger.warning("⚠️ No facility lookup configured")
        else:
            try:
                facility_id = await self.lookup()
            except Exception as e:
                logger.warning(f"⚠️ Failed to update facility id cache: {e}")

        if facility_id:
            self._identity = FacilityIdentity(id=facility_id, resolved_at=self._clock())
            logger.debug(f"Facility id cache updated: {facility_id}")
            return self._identity

        if self._identity is not None:
            logger.info(f"Keeping cached facility id {self._identity.id}")
        elif not self.is_production:
            logger.warning("No facility id available - using development fallback")
            self._identity = FacilityIdentity(
                id=self.dev_facility_id, resolved_at=self._clock()
            )
        else:
            logger.error("❌ No facility id available and no fallback allowed in production")

        return self._identity

    def get_current(self) -> str:
        """
        Return the current facility id without waiting.

        Raises:
            FacilityResolutionError: Cache is empty in a production build
        """
        identity = self._identity
        if identity is not None:
            if not identity.is_fresh(self._clock(), self.ttl_seconds):
                self.refresh_in_background()
            return identity.id

        if not self.is_production:
            logger.warning("Using dev facility fallback in development mode")
            return self.dev_facility_id

        raise FacilityResolutionError(
            "Facility id lookup failed - no fallback allowed in production."
        )

    def refresh_in_background(self) -> None:
        """
        Schedule resolve() without waiting for it.

        Runs as a task on the current event loop when there is one,
        otherwise on a daemon thread with its own loop. Failures are
        logged and not retried.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._refresh_quietly())
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
            return

        thread = threading.Thread(
            target=asyncio.run,
            args=(self._refresh_quietly(),),
            name="facility-cache-refresh",
            daemon=True,
        )
        thread.start()

    async def _refresh_quietly(self):
        try:
            await self.resolve()
        except Exception as e:
            logger.warning(f"⚠️ Background facility refresh failed: {e}")

    def peek(self) -> Optional[str]:
        """Cached facility id, without a freshness check, refresh or fallback."""
        return self._identity.id if self._identity is not None else None

    def clear(self):
        """Drop the cached identity."""
        self._identity = None


# Global facility cache instance
_facility_cache: Optional[FacilityIdentityCache] = None


def get_facility_cache() -> FacilityIdentityCache:
    """Get or create the global facility cache."""
    global _facility_cache
    if _facility_cache is None:
        _facility_cache = FacilityIdentityCache()
    return _facility_cache


def reset_facility_cache():
    """Reset the global facility cache (useful for testing)."""
    global _facility_cache
    _facility_cache = None
