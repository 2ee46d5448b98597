"""
Core components of the request guard.
"""

from .config import settings, Settings, GuardSettings
from .errors import (
    CliniioGuardError,
    FacilityResolutionError,
    RequestRewriteError,
)
from .facility_cache import (
    FacilityIdentityCache,
    get_facility_cache,
    reset_facility_cache,
)
from .request_sanitizer import (
    RequestSanitizer,
    PostgrestGuardTransport,
    wrap_transport,
    get_request_sanitizer,
    reset_request_sanitizer,
)
from .fetch_guard import (
    install_fetch_guard,
    is_fetch_guard_installed,
    reset_fetch_guard,
)

__all__ = [
    # Config
    "settings",
    "Settings",
    "GuardSettings",
    # Errors
    "CliniioGuardError",
    "FacilityResolutionError",
    "RequestRewriteError",
    # Facility cache
    "FacilityIdentityCache",
    "get_facility_cache",
    "reset_facility_cache",
    # Sanitizer
    "RequestSanitizer",
    "PostgrestGuardTransport",
    "wrap_transport",
    "get_request_sanitizer",
    "reset_request_sanitizer",
    # Installation
    "install_fetch_guard",
    "is_fetch_guard_installed",
    "reset_fetch_guard",
]
