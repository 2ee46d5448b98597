"""
PostgREST request sanitizer.

The Supabase query builder occasionally emits malformed filters: empty
equality filters, a stray ":1" appended to values (or in place of the
facility UUID), and column-to-column comparisons PostgREST rejects. This
module repairs those shapes in outgoing URLs before they reach the wire.

Rewrite order for URLs containing the REST path marker:
1. Structured pass over each parameter (see models.query_repair)
2. Raw-string catch-alls for anything the structured pass missed
3. Deduplication, last value wins

Parameters that need no repair keep their exact raw text, so a clean
query string comes back byte-identical.
"""

import functools
import inspect
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote_plus, urlsplit

import httpx

from cliniio_guard.core.config import settings
from cliniio_guard.core.errors import RequestRewriteError
from cliniio_guard.core.facility_cache import get_facility_cache
from cliniio_guard.models.query_repair import (
    COLUMN_COMPARISON_PARAM,
    COLUMN_COMPARISON_VALUE,
    EMPTY_EQ_VALUES,
    QueryParameterRepair,
    RepairAction,
    default_repairs,
)

logger = logging.getLogger(__name__)

# (raw name, raw value); value is None for a bare "name" segment
RawPair = Tuple[str, Optional[str]]

# Characters left unencoded in rewritten values (PostgREST operators use them)
_SAFE_VALUE_CHARS = ":,()*!@$;/"

_EMPTY_EQ_PAIR = re.compile(r"(^|&)[^=&]+=(?:eq|eq\.|eq:|eq:\.|\.)(?=&|$)")
_TRAILING_COLON_ONE = re.compile(r":1(?=&|$)")
_COLUMN_COMPARISON_PAIR = re.compile(
    r"(^|&)" + re.escape(f"{COLUMN_COMPARISON_PARAM}={COLUMN_COMPARISON_VALUE}") + r"(?=&|$)"
)


def _decode(raw: str) -> str:
    return unquote_plus(raw)


def _encode(value: str) -> str:
    return quote(value, safe=_SAFE_VALUE_CHARS)


def split_query(query: str) -> List[RawPair]:
    """Split a raw query string into raw name/value pairs, skipping empty segments."""
    pairs: List[RawPair] = []
    for segment in query.split("&"):
        if not segment:
            continue
        name, sep, value = segment.partition("=")
        pairs.append((name, value if sep else None))
    return pairs


def join_query(pairs: List[RawPair]) -> str:
    return "&".join(name if value is None else f"{name}={value}" for name, value in pairs)


def dedupe_pairs(pairs: List[RawPair]) -> List[RawPair]:
    """
    Collapse repeated parameter names.

    Each name keeps the position of its first occurrence and the value of
    its last one.
    """
    positions: Dict[str, int] = {}
    result: List[RawPair] = []
    for raw_name, raw_value in pairs:
        key = _decode(raw_name)
        if key in positions:
            result[positions[key]] = (raw_name, raw_value)
        else:
            positions[key] = len(result)
            result.append((raw_name, raw_value))
    return result


def _delete_param(pairs: List[RawPair], name: str) -> List[RawPair]:
    return [pair for pair in pairs if _decode(pair[0]) != name]


def _set_param(pairs: List[RawPair], name: str, raw_value: str) -> List[RawPair]:
    """Replace the first ``name`` with ``raw_value`` and drop the others; append if absent."""
    result: List[RawPair] = []
    placed = False
    for raw_name, value in pairs:
        if _decode(raw_name) != name:
            result.append((raw_name, value))
        elif not placed:
            result.append((raw_name, raw_value))
            placed = True
    if not placed:
        result.append((quote(name, safe=""), raw_value))
    return result


def target_url(target: Any) -> str:
    """URL string of a string, URL object or request object."""
    if isinstance(target, str):
        return target
    if isinstance(target, httpx.URL):
        return str(target)
    url = getattr(target, "url", None)
    if url is not None:
        return str(url)
    return str(target)


def _with_url(target: Any, url: str) -> Any:
    """Return ``target`` pointing at ``url``, keeping its type."""
    if isinstance(target, str):
        return url
    if isinstance(target, httpx.URL):
        return httpx.URL(url)
    if isinstance(target, httpx.Request):
        target.url = httpx.URL(url)
        return target
    if getattr(target, "url", None) is not None:
        # requests.PreparedRequest and similar request descriptors
        target.url = url
        return target
    return url


def _current_facility_id() -> str:
    return get_facility_cache().get_current()


class RequestSanitizer:
    """
    Repairs malformed PostgREST filters in outgoing request URLs.

    Args:
        facility_id_provider: Synchronous callable returning the facility id
            used to repair corrupted tenant filters. Defaults to the global
            facility cache.
        rest_marker: Substring identifying PostgREST URLs
        tenant_param: Name of the tenant-scoping query parameter
        repairs: Ordered repair rules, defaults to default_repairs()
    """

    def __init__(
        self,
        facility_id_provider: Optional[Callable[[], str]] = None,
        rest_marker: Optional[str] = None,
        tenant_param: Optional[str] = None,
        repairs: Optional[List[QueryParameterRepair]] = None,
    ):
        self.facility_id_provider = facility_id_provider or _current_facility_id
        self.rest_marker = rest_marker or settings.guard.rest_path_marker
        self.tenant_param = tenant_param or settings.guard.tenant_param
        self.repairs = repairs if repairs is not None else default_repairs(self.tenant_param)
        self._corrupted_tenant_pair = re.compile(
            r"(^|&)" + re.escape(f"{self.tenant_param}=eq.:1") + r"(?=&|$)"
        )

    def is_target(self, url: str) -> bool:
        return self.rest_marker in url

    # --- structured pass ---

    def _match(self, name: str, value: str) -> Optional[QueryParameterRepair]:
        for repair in self.repairs:
            if repair.matches(name, value):
                return repair
        return None

    def _repair_params(self, pairs: List[RawPair]) -> List[RawPair]:
        """Collect repairs over every parameter, then apply deletes and sets."""
        deletes: List[str] = []
        sets: List[Tuple[str, str]] = []

        for raw_name, raw_value in pairs:
            name = _decode(raw_name)
            value = _decode(raw_value or "").strip()
            repair = self._match(name, value)
            if repair is None:
                continue

            logger.debug(f"Repair '{repair.name}' matched {name}={value}")
            if repair.action == RepairAction.DELETE:
                deletes.append(name)
            elif repair.action == RepairAction.FACILITY:
                sets.append((name, _encode(f"eq.{self.facility_id_provider()}")))
            elif repair.action == RepairAction.STRIP_SUFFIX:
                stripped = repair.strip(value)
                if stripped in EMPTY_EQ_VALUES:
                    # "eq:1" would otherwise become the empty filter "eq"
                    deletes.append(name)
                else:
                    sets.append((name, _encode(stripped)))

        for name in deletes:
            pairs = _delete_param(pairs, name)
        for name, raw_value in sets:
            pairs = _set_param(pairs, name, raw_value)
        return pairs

    # --- raw catch-alls ---

    def _scrub_raw(self, query: str) -> str:
        if self._corrupted_tenant_pair.search(query):
            facility = _encode(self.facility_id_provider())
            query = self._corrupted_tenant_pair.sub(
                lambda m: f"{m.group(1)}{self.tenant_param}=eq.{facility}", query
            )
        query = _TRAILING_COLON_ONE.sub("", query)
        query = _EMPTY_EQ_PAIR.sub("", query)
        query = _COLUMN_COMPARISON_PAIR.sub("", query)
        return query

    def rewrite_query(self, query: str) -> str:
        """Apply both repair passes and deduplication to a raw query string."""
        repaired = join_query(self._repair_params(split_query(query)))
        scrubbed = self._scrub_raw(repaired)
        deduped = join_query(dedupe_pairs(split_query(scrubbed)))
        return query if deduped == query else deduped

    def rewrite_url(self, url: str) -> str:
        """
        Return ``url`` with its query repaired.

        URLs without the REST marker are returned unchanged without parsing.

        Raises:
            RequestRewriteError: URL is not an absolute, parseable URL
            FacilityResolutionError: A tenant filter needs repair and no
                facility id is available
        """
        if not self.is_target(url):
            return url

        try:
            parts = urlsplit(url)
        except ValueError as e:
            raise RequestRewriteError(url, str(e)) from e
        if not parts.scheme or not parts.netloc:
            raise RequestRewriteError(url, "not an absolute URL")

        query = self.rewrite_query(parts.query)
        if query == parts.query:
            return url
        return parts._replace(query=query).geturl()

    def sanitize(self, target: Any) -> Any:
        """
        Repair the URL of an outgoing request.

        Accepts a URL string, an httpx.URL or a request object with a ``url``
        attribute and returns the same kind of object. Errors are logged
        and re-raised.
        """
        url = target_url(target)
        if not self.is_target(url):
            return target

        try:
            rewritten = self.rewrite_url(url)
        except Exception as e:
            logger.error(f"❌ PostgREST guard failed on {url}: {e}", exc_info=True)
            raise

        if rewritten == url:
            return target

        global _rewrite_logged
        if not _rewrite_logged:
            _rewrite_logged = True
            logger.info(f"🛡️ PostgREST guard rewrote URL: from={url} to={rewritten}")
        return _with_url(target, rewritten)


def wrap_transport(
    original: Callable[..., Any],
    sanitizer: Optional[RequestSanitizer] = None,
) -> Callable[..., Any]:
    """
    Wrap a transport callable so its first argument is sanitized.

    All other arguments are forwarded unchanged and the result is returned
    unchanged. Coroutine functions stay coroutine functions.
    """
    def _sanitizer() -> RequestSanitizer:
        return sanitizer or get_request_sanitizer()

    if inspect.iscoroutinefunction(original):
        @functools.wraps(original)
        async def guarded_async(target, *args, **kwargs):
            return await original(_sanitizer().sanitize(target), *args, **kwargs)
        return guarded_async

    @functools.wraps(original)
    def guarded(target, *args, **kwargs):
        return original(_sanitizer().sanitize(target), *args, **kwargs)
    return guarded


class PostgrestGuardTransport(httpx.BaseTransport, httpx.AsyncBaseTransport):
    """
    httpx transport that sanitizes requests before handing them to ``transport``.

    Example:
        >>> client = httpx.AsyncClient(
        ...     transport=PostgrestGuardTransport(httpx.AsyncHTTPTransport())
        ... )
    """

    def __init__(self, transport, sanitizer: Optional[RequestSanitizer] = None):
        self._transport = transport
        self._sanitizer = sanitizer

    @property
    def sanitizer(self) -> RequestSanitizer:
        return self._sanitizer or get_request_sanitizer()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._transport.handle_request(self.sanitizer.sanitize(request))

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(self.sanitizer.sanitize(request))

    def close(self) -> None:
        self._transport.close()

    async def aclose(self) -> None:
        await self._transport.aclose()


# Global sanitizer instance
_request_sanitizer: Optional[RequestSanitizer] = None

# Set after the first logged rewrite; shared by every sanitizer in the process
_rewrite_logged = False


def get_request_sanitizer() -> RequestSanitizer:
    """Get or create the global request sanitizer."""
    global _request_sanitizer
    if _request_sanitizer is None:
        _request_sanitizer = RequestSanitizer()
    return _request_sanitizer


def reset_request_sanitizer():
    """Reset the global request sanitizer and the one-time log (useful for testing)."""
    global _request_sanitizer, _rewrite_logged
    _request_sanitizer = None
    _rewrite_logged = False
