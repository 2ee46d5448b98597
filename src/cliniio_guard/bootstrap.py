"""
Application bootstrap for the request guard.

Call bootstrap() at the earliest point of application startup, before
any code talks to Supabase. It installs the fetch guard and primes the
facility cache.
"""

import logging
from typing import List, Optional

from cliniio_guard.core.config import settings
from cliniio_guard.core.facility_cache import (
    FacilityIdentityCache,
    FacilityIdLookup,
    RouteProvider,
    get_facility_cache,
)
from cliniio_guard.core.fetch_guard import GuardTarget, install_fetch_guard
from cliniio_guard.infrastructure.facility_resolver import (
    AccessTokenProvider,
    SupabaseFacilityResolver,
)

logger = logging.getLogger(__name__)


async def bootstrap(
    lookup: Optional[FacilityIdLookup] = None,
    access_token_provider: Optional[AccessTokenProvider] = None,
    route_provider: Optional[RouteProvider] = None,
    targets: Optional[List[GuardTarget]] = None,
) -> FacilityIdentityCache:
    """
    Install the fetch guard, then resolve the facility once.

    Args:
        lookup: Facility lookup for the cache. Defaults to a
            SupabaseFacilityResolver when SUPABASE_URL is configured.
        access_token_provider: Token source for the default resolver
        route_provider: Returns the active route (resolution is skipped
            on the login route)
        targets: Transport entrypoints to guard, see install_fetch_guard()

    Returns:
        The global facility cache
    """
    logger.info(f"Starting {settings.app_name} v{settings.version}")
    logger.info(f"Environment: {settings.environment}")
    settings.validate_on_startup()

    install_fetch_guard(targets=targets)

    cache = get_facility_cache()
    if lookup is None and settings.supabase_url:
        resolver = SupabaseFacilityResolver(access_token_provider=access_token_provider)
        lookup = resolver.get_current_facility_id
    if lookup is not None:
        cache.lookup = lookup
    if route_provider is not None:
        cache.route_provider = route_provider

    identity = await cache.resolve()
    if identity is not None:
        logger.info(f"Facility cache primed with {identity.id}")
    return cache
