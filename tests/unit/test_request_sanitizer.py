"""
Unit tests for the PostgREST request sanitizer.

Covers each repair rule, deduplication, passthrough of non-PostgREST
requests and the one-time rewrite log.
"""

import asyncio
import logging

import httpx
import pytest

from cliniio_guard.core.errors import FacilityResolutionError, RequestRewriteError
from cliniio_guard.core.request_sanitizer import (
    PostgrestGuardTransport,
    RequestSanitizer,
    dedupe_pairs,
    reset_request_sanitizer,
    split_query,
    wrap_transport,
)
from tests.helpers import REST_URL


class CountingProvider:
    """Facility id provider that records how often it was asked."""

    def __init__(self, facility_id: str = "F-123"):
        self.facility_id = facility_id
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return self.facility_id


@pytest.fixture
def provider():
    return CountingProvider()


@pytest.fixture
def sanitizer(provider):
    return RequestSanitizer(
        facility_id_provider=provider,
        rest_marker=".supabase.co/rest/v1/",
        tenant_param="facility_id",
    )


class TestPassthrough:
    """Requests outside PostgREST are never touched."""

    def test_non_target_url_unchanged(self, sanitizer, provider):
        url = "https://api.example.com/items?facility_id=eq.:1&x=1&x=2&a=eq."
        assert sanitizer.rewrite_url(url) == url
        assert sanitizer.sanitize(url) is url
        assert provider.calls == 0

    def test_clean_query_is_byte_identical(self, sanitizer, provider):
        url = (
            f"{REST_URL}?select=id,name,facility_id"
            "&facility_id=eq.550e8400-e29b-41d4-a716-446655440000"
            "&name=ilike.%25scalpel%25&order=created_at.desc&limit=10"
        )
        assert sanitizer.rewrite_url(url) == url
        assert provider.calls == 0

    def test_url_without_query_unchanged(self, sanitizer):
        assert sanitizer.rewrite_url(REST_URL) == REST_URL

    def test_rewrite_is_idempotent(self, sanitizer):
        url = f"{REST_URL}?a=eq.&date=eq.2025-08-15:1&x=1&x=2"
        once = sanitizer.rewrite_url(url)
        assert once == f"{REST_URL}?date=eq.2025-08-15&x=2"
        assert sanitizer.rewrite_url(once) == once


class TestRepairRules:
    """Each malformed filter shape is repaired."""

    def test_empty_equality_filters_removed(self, sanitizer):
        url = f"{REST_URL}?a=eq.&b=eq&c=eq:&d=eq:.&e=.&select=*"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?select=*"

    def test_only_empty_filters_drops_query(self, sanitizer):
        url = f"{REST_URL}?a=eq.&b=eq&c=eq:&d=eq:.&e=."
        assert sanitizer.rewrite_url(url) == REST_URL

    @pytest.mark.parametrize("corrupted", ["eq.:1", "eq:1", ":1", "eq.:"])
    def test_corrupted_tenant_filter_rescoped(self, sanitizer, provider, corrupted):
        url = f"{REST_URL}?select=*&facility_id={corrupted}&status=eq.clean"
        result = sanitizer.rewrite_url(url)
        assert result == f"{REST_URL}?select=*&facility_id=eq.F-123&status=eq.clean"
        assert provider.calls >= 1

    def test_percent_encoded_tenant_filter_rescoped(self, sanitizer):
        url = f"{REST_URL}?facility_id=eq.%3A1"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?facility_id=eq.F-123"

    def test_trailing_colon_one_stripped(self, sanitizer):
        url = f"{REST_URL}?date=eq.2025-08-15:1"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?date=eq.2025-08-15"

    def test_stripping_never_leaves_empty_filter(self, sanitizer):
        url = f"{REST_URL}?a=eq:1&b=eq::1&d=eq.:1&c=1"
        result = sanitizer.rewrite_url(url)

        assert result == f"{REST_URL}?c=1"
        assert sanitizer.rewrite_url(result) == result

    def test_column_comparison_removed(self, sanitizer):
        url = f"{REST_URL}?select=*&quantity=lt.reorder_point"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?select=*"

    def test_quantity_literal_comparison_kept(self, sanitizer):
        url = f"{REST_URL}?quantity=lt.5"
        assert sanitizer.rewrite_url(url) == url

    def test_other_params_untouched(self, sanitizer):
        url = f"{REST_URL}?select=id,name&facility_id=eq.:1&or=(status.eq.dirty,status.eq.clean)"
        assert sanitizer.rewrite_url(url) == (
            f"{REST_URL}?select=id,name&facility_id=eq.F-123&or=(status.eq.dirty,status.eq.clean)"
        )

    def test_fragment_preserved(self, sanitizer):
        url = f"{REST_URL}?x=1&x=2#top"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?x=2#top"


class TestRawCatchAlls:
    """The raw-string pass catches shapes the structured pass cannot see."""

    def test_bare_segment_trailing_token_stripped(self, sanitizer):
        assert sanitizer.rewrite_query("flag:1&a=1") == "flag&a=1"

    def test_scrub_drops_empty_filter_left_by_strip(self, sanitizer):
        assert sanitizer._scrub_raw("a=eq:1&b=eq.:1&c=1") == "&c=1"

    def test_clean_query_unchanged(self, sanitizer):
        query = "select=*&limit=5"
        assert sanitizer.rewrite_query(query) is query


class TestDeduplication:
    """Repeated names collapse to the last value."""

    def test_last_value_wins(self, sanitizer):
        url = f"{REST_URL}?x=1&x=2&x=3"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?x=3"

    def test_first_seen_order_kept(self, sanitizer):
        url = f"{REST_URL}?a=1&b=2&a=3"
        assert sanitizer.rewrite_url(url) == f"{REST_URL}?a=3&b=2"

    def test_dedupe_pairs_helper(self):
        pairs = split_query("a=1&&b&a=2")
        assert pairs == [("a", "1"), ("b", None), ("a", "2")]
        assert dedupe_pairs(pairs) == [("a", "2"), ("b", None)]


class TestErrors:
    """Rewrite failures are logged and re-raised."""

    def test_missing_facility_propagates(self, caplog):
        def no_facility():
            raise FacilityResolutionError("no facility")

        sanitizer = RequestSanitizer(facility_id_provider=no_facility)
        with caplog.at_level(logging.ERROR):
            with pytest.raises(FacilityResolutionError):
                sanitizer.sanitize(f"{REST_URL}?facility_id=eq.:1")
        assert any("PostgREST guard failed" in r.getMessage() for r in caplog.records)

    def test_relative_url_rejected(self, sanitizer):
        with pytest.raises(RequestRewriteError) as exc_info:
            sanitizer.sanitize("/proxy/x.supabase.co/rest/v1/tools?x=1")
        assert isinstance(exc_info.value, ValueError)

    def test_unparseable_url_rejected(self, sanitizer):
        with pytest.raises(RequestRewriteError):
            sanitizer.rewrite_url("https://[abc.supabase.co/rest/v1/tools?x=1")


class TestSanitizeTargets:
    """sanitize() keeps the caller's target type."""

    def test_string_target(self, sanitizer):
        assert sanitizer.sanitize(f"{REST_URL}?x=1&x=2") == f"{REST_URL}?x=2"

    def test_httpx_url_target(self, sanitizer):
        result = sanitizer.sanitize(httpx.URL(f"{REST_URL}?x=1&x=2"))
        assert isinstance(result, httpx.URL)
        assert str(result) == f"{REST_URL}?x=2"

    def test_httpx_request_target(self, sanitizer):
        request = httpx.Request("GET", f"{REST_URL}?date=eq.2025-08-15:1")
        result = sanitizer.sanitize(request)
        assert result is request
        assert str(request.url) == f"{REST_URL}?date=eq.2025-08-15"

    def test_unchanged_target_returned_as_is(self, sanitizer):
        request = httpx.Request("GET", f"{REST_URL}?select=*")
        assert sanitizer.sanitize(request) is request


class TestRewriteLogging:
    """Only the first rewrite is logged."""

    def test_logs_once(self, sanitizer, caplog):
        with caplog.at_level(logging.INFO, logger="cliniio_guard.core.request_sanitizer"):
            sanitizer.sanitize(f"{REST_URL}?x=1&x=2")
            sanitizer.sanitize(f"{REST_URL}?a=eq.&b=1")
        rewrites = [r for r in caplog.records if "rewrote URL" in r.getMessage()]
        assert len(rewrites) == 1
        assert f"{REST_URL}?x=2" in rewrites[0].getMessage()

    def test_logs_once_across_sanitizers(self, provider, caplog):
        with caplog.at_level(logging.INFO, logger="cliniio_guard.core.request_sanitizer"):
            RequestSanitizer(facility_id_provider=provider).sanitize(f"{REST_URL}?x=1&x=2")
            RequestSanitizer(facility_id_provider=provider).sanitize(f"{REST_URL}?y=1&y=2")
        rewrites = [r for r in caplog.records if "rewrote URL" in r.getMessage()]
        assert len(rewrites) == 1

    def test_reset_allows_another_log(self, sanitizer, caplog):
        with caplog.at_level(logging.INFO, logger="cliniio_guard.core.request_sanitizer"):
            sanitizer.sanitize(f"{REST_URL}?x=1&x=2")
            reset_request_sanitizer()
            sanitizer.sanitize(f"{REST_URL}?y=1&y=2")
        rewrites = [r for r in caplog.records if "rewrote URL" in r.getMessage()]
        assert len(rewrites) == 2

    def test_no_log_without_rewrite(self, sanitizer, caplog):
        with caplog.at_level(logging.INFO, logger="cliniio_guard.core.request_sanitizer"):
            sanitizer.sanitize(f"{REST_URL}?select=*")
        assert not [r for r in caplog.records if "rewrote URL" in r.getMessage()]


class TestWrapTransport:
    """wrap_transport() forwards everything but the URL untouched."""

    def test_sync_transport(self, sanitizer):
        calls = []

        def send(target, *args, **kwargs):
            calls.append((target, args, kwargs))
            return "response"

        guarded = wrap_transport(send, sanitizer)
        result = guarded(f"{REST_URL}?x=1&x=2", "positional", headers={"a": "b"})

        assert result == "response"
        assert calls == [(f"{REST_URL}?x=2", ("positional",), {"headers": {"a": "b"}})]

    def test_async_transport(self, sanitizer):
        calls = []

        async def fetch(target, options=None):
            calls.append((target, options))
            return 200

        guarded = wrap_transport(fetch, sanitizer)
        assert asyncio.iscoroutinefunction(guarded)
        assert asyncio.run(guarded(f"{REST_URL}?e=.&x=1", {"method": "GET"})) == 200
        assert calls == [(f"{REST_URL}?x=1", {"method": "GET"})]

    def test_transport_errors_pass_through(self, sanitizer):
        def failing(target):
            raise ConnectionError("offline")

        with pytest.raises(ConnectionError):
            wrap_transport(failing, sanitizer)(f"{REST_URL}?x=1")


class TestGuardTransport:
    """PostgrestGuardTransport sanitizes requests for httpx clients."""

    def _recording_transport(self, seen):
        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json=[])
        return httpx.MockTransport(handler)

    def test_sync_client(self, sanitizer):
        seen = []
        transport = PostgrestGuardTransport(self._recording_transport(seen), sanitizer)
        with httpx.Client(transport=transport) as client:
            response = client.get(f"{REST_URL}?facility_id=eq.:1&x=1&x=2")

        assert response.status_code == 200
        assert seen == [f"{REST_URL}?facility_id=eq.F-123&x=2"]

    def test_async_client(self, sanitizer):
        seen = []
        transport = PostgrestGuardTransport(self._recording_transport(seen), sanitizer)

        async def run():
            async with httpx.AsyncClient(transport=transport) as client:
                return await client.get(f"{REST_URL}?quantity=lt.reorder_point&select=*")

        response = asyncio.run(run())
        assert response.status_code == 200
        assert seen == [f"{REST_URL}?select=*"]
