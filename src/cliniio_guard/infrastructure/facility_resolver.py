"""
Supabase facility resolver.

Looks up the facility of the signed-in user: the Supabase auth API
returns the user, and the ``users`` table maps the user to a facility.
Used as the lookup of the FacilityIdentityCache.
"""

import logging
from typing import Callable, Dict, Optional

import httpx

from cliniio_guard.core.config import settings

logger = logging.getLogger(__name__)

AccessTokenProvider = Callable[[], Optional[str]]


class SupabaseFacilityResolver:
    """Resolves the current user's facility id through Supabase."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        access_token_provider: Optional[AccessTokenProvider] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the resolver.

        Args:
            base_url: Supabase project URL (defaults to SUPABASE_URL)
            anon_key: Supabase anon key (defaults to SUPABASE_ANON_KEY)
            access_token_provider: Returns the signed-in user's access token,
                or None when nobody is signed in
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests mount a MockTransport)
        """
        self.base_url = (base_url or settings.supabase_url or "").rstrip("/")
        self.anon_key = anon_key or settings.supabase_anon_key
        self.access_token_provider = access_token_provider
        self.timeout = timeout if timeout is not None else settings.supabase_timeout
        self._transport = transport

        logger.info(f"SupabaseFacilityResolver initialized with base_url: {self.base_url or '<unset>'}")

    def _get_headers(self, access_token: str) -> Dict[str, str]:
        """Get headers for Supabase requests."""
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        if self.anon_key:
            headers["apikey"] = self.anon_key
        return headers

    async def get_current_facility_id(self) -> Optional[str]:
        """
        Return the facility id of the signed-in user.

        Returns:
            The facility id, or None when nobody is signed in or the user
            has no facility

        Raises:
            httpx.HTTPError: The auth or REST call failed
        """
        if not self.base_url:
            logger.warning("⚠️ SUPABASE_URL not configured - cannot resolve facility")
            return None

        access_token = self.access_token_provider() if self.access_token_provider else None
        if not access_token:
            logger.info("No authenticated user - facility id unavailable")
            return None

        headers = self._get_headers(access_token)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/auth/v1/user", headers=headers)
                if response.status_code == 401:
                    logger.info("Access token rejected - facility id unavailable")
                    return None
                response.raise_for_status()
                user_id = response.json().get("id")
                if not user_id:
                    return None

                response = await client.get(
                    f"{self.base_url}/rest/v1/users",
                    params={"select": "facility_id", "id": f"eq.{user_id}"},
                    headers=headers,
                )
                response.raise_for_status()
                rows = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"❌ HTTP error resolving facility: {e.response.status_code} - {e.response.text}")
            raise

        if not rows:
            logger.warning(f"⚠️ No user profile found for {user_id}")
            return None

        facility_id = rows[0].get("facility_id")
        if facility_id:
            logger.info(f"✅ Resolved facility {facility_id} for user {user_id}")
        return facility_id
