"""
One-time installation of the PostgREST fetch guard.

install_fetch_guard() replaces the send entrypoints of the HTTP clients
used by the service (httpx sync/async clients and requests sessions) with
versions that run every outgoing request through the RequestSanitizer.
It runs at most once per process; later calls do nothing.
"""

import functools
import inspect
import logging
from typing import Any, List, Optional, Tuple

import httpx
import requests

from cliniio_guard.core.config import settings
from cliniio_guard.core.request_sanitizer import (
    RequestSanitizer,
    get_request_sanitizer,
    wrap_transport,
)

logger = logging.getLogger(__name__)

# (owner, attribute name) of a transport entrypoint
GuardTarget = Tuple[Any, str]

_installed = False
_originals: List[Tuple[Any, str, Any]] = []


def default_targets() -> List[GuardTarget]:
    """Transport entrypoints patched when install_fetch_guard() gets no targets."""
    targets: List[GuardTarget] = []
    if settings.guard.guard_httpx:
        targets.append((httpx.Client, "send"))
        targets.append((httpx.AsyncClient, "send"))
    if settings.guard.guard_requests:
        targets.append((requests.Session, "send"))
    return targets


def _guard_method(original, sanitizer: Optional[RequestSanitizer]):
    """Like wrap_transport(), for methods whose request follows ``self``."""
    def _sanitizer() -> RequestSanitizer:
        return sanitizer or get_request_sanitizer()

    if inspect.iscoroutinefunction(original):
        @functools.wraps(original)
        async def send_async(client, request, *args, **kwargs):
            return await original(client, _sanitizer().sanitize(request), *args, **kwargs)
        return send_async

    @functools.wraps(original)
    def send(client, request, *args, **kwargs):
        return original(client, _sanitizer().sanitize(request), *args, **kwargs)
    return send


def install_fetch_guard(
    targets: Optional[List[GuardTarget]] = None,
    sanitizer: Optional[RequestSanitizer] = None,
) -> bool:
    """
    Install the fetch guard on the given transport entrypoints.

    Class attributes are wrapped as methods; anything else (module-level
    functions, plain objects) is wrapped with wrap_transport(). Targets
    that do not exist are skipped.

    Args:
        targets: (owner, attribute) pairs, default_targets() when None
        sanitizer: Sanitizer to use, the global one when None

    Returns:
        True if this call installed the guard, False if it was already
        installed or there was nothing to patch
    """
    global _installed
    if _installed:
        logger.debug("PostgREST fetch guard already installed")
        return False

    if targets is None:
        targets = default_targets()

    patchable = [
        (owner, attr) for owner, attr in targets
        if callable(getattr(owner, attr, None))
    ]
    if not patchable:
        logger.info("No HTTP transport available - fetch guard not installed")
        return False

    _installed = True
    for owner, attr in patchable:
        original = getattr(owner, attr)
        if inspect.isclass(owner):
            guarded = _guard_method(original, sanitizer)
        else:
            guarded = wrap_transport(original, sanitizer)
        setattr(owner, attr, guarded)
        _originals.append((owner, attr, original))

    names = ", ".join(f"{getattr(owner, '__name__', owner)}.{attr}" for owner, attr in patchable)
    logger.info(f"🛡️ PostgREST fetch guard installed on {names}")
    return True


def is_fetch_guard_installed() -> bool:
    return _installed


def reset_fetch_guard():
    """Restore the original transports (useful for testing)."""
    global _installed
    while _originals:
        owner, attr, original = _originals.pop()
        setattr(owner, attr, original)
    _installed = False
