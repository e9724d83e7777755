"""Unit tests for the rate-limited registry lookup client."""

import asyncio
import pytest
from unittest.mock import AsyncMock

# Add project root to path
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from cnpj_enricher.errors import (
    InvalidIdentifier,
    QuotaExceeded,
    RegistryNotFound,
    TooSoon,
    TransientLookupError,
    UpstreamRateLimited,
)
from cnpj_enricher.lookup.client import RegistryLookupClient
from cnpj_enricher.lookup.interfaces import LookupRecord

CNPJS = ["14665903000104", "11222333000181", "22333444000192", "33444555000103", "44555666000114"]


@pytest.mark.asyncio
class TestFetch:
    """Tests for successful lookups and caching."""

    async def test_fetch_parses_record(self, lookup_client, ok_response):
        lookup_client._request = ok_response

        record = await lookup_client.fetch("14.665.903/0001-04")

        assert isinstance(record, LookupRecord)
        assert record.cnpj == "14665903000104"
        assert record.legal_name == "ACME INDUSTRIA E COMERCIO LTDA"
        ok_response.assert_awaited_once_with("14665903000104")

    async def test_second_fetch_served_from_cache(self, lookup_client, ok_response):
        lookup_client._request = ok_response

        first = await lookup_client.fetch(CNPJS[0])
        second = await lookup_client.fetch(CNPJS[0])

        assert first is second
        assert ok_response.await_count == 1
        assert lookup_client.status().requests_in_window == 1

    async def test_cache_expires(self, lookup_client, ok_response, clock):
        lookup_client._request = ok_response
        await lookup_client.fetch(CNPJS[0])

        clock.advance(3600)

        assert not lookup_client.is_cached(CNPJS[0])
        await lookup_client.fetch(CNPJS[0])
        assert ok_response.await_count == 2

    async def test_invalid_input_never_calls_api(self, lookup_client, ok_response):
        lookup_client._request = ok_response

        with pytest.raises(InvalidIdentifier):
            await lookup_client.fetch("123")

        ok_response.assert_not_awaited()
        assert lookup_client.status().requests_in_window == 0

    async def test_fullwidth_digits_never_reach_api(self, lookup_client, ok_response):
        lookup_client._request = ok_response

        with pytest.raises(InvalidIdentifier):
            await lookup_client.fetch("１４６６５９０３０００１０４")

        ok_response.assert_not_awaited()

    async def test_cache_expiry_counts_from_admission(self, lookup_client, registry_payload, clock):
        async def slow_response(cnpj):
            clock.advance(10)
            return 200, registry_payload

        lookup_client._request = AsyncMock(side_effect=slow_response)
        await lookup_client.fetch(CNPJS[0])

        clock.advance(3589)
        assert lookup_client.is_cached(CNPJS[0])
        clock.advance(1)
        assert not lookup_client.is_cached(CNPJS[0])


@pytest.mark.asyncio
class TestRateLimit:
    """Tests for sliding-window and spacing throttles."""

    async def test_fourth_request_in_window_refused(self, lookup_client, ok_response):
        lookup_client._request = ok_response
        for cnpj in CNPJS[:3]:
            await lookup_client.fetch(cnpj)

        with pytest.raises(QuotaExceeded) as exc_info:
            await lookup_client.fetch(CNPJS[3])

        error = exc_info.value
        assert error.wait_seconds == pytest.approx(60.0)
        assert error.details["requests_in_window"] == 3
        assert error.details["max_requests"] == 3
        assert ok_response.await_count == 3

    async def test_admitted_after_window_elapses(self, lookup_client, ok_response, clock):
        lookup_client._request = ok_response
        for cnpj in CNPJS[:3]:
            await lookup_client.fetch(cnpj)

        clock.advance(30)
        with pytest.raises(QuotaExceeded) as exc_info:
            await lookup_client.fetch(CNPJS[3])
        assert exc_info.value.wait_seconds == pytest.approx(30.0)

        clock.advance(30)
        record = await lookup_client.fetch(CNPJS[3])
        assert record.cnpj == CNPJS[3]

    async def test_refused_call_consumes_nothing(self, lookup_client, ok_response):
        lookup_client._request = ok_response
        for cnpj in CNPJS[:3]:
            await lookup_client.fetch(cnpj)

        for _ in range(3):
            with pytest.raises(QuotaExceeded):
                await lookup_client.fetch(CNPJS[3])

        assert lookup_client.status().requests_in_window == 3

    async def test_too_soon(self, ok_response, clock):
        client = RegistryLookupClient(
            window_seconds=60.0,
            max_requests=3,
            min_interval_seconds=20.0,
            clock=clock,
        )
        client._request = ok_response
        await client.fetch(CNPJS[0])

        clock.advance(5)
        with pytest.raises(TooSoon) as exc_info:
            await client.fetch(CNPJS[1])
        assert exc_info.value.wait_seconds == pytest.approx(15.0)
        assert exc_info.value.code == "RATE_LIMIT_TOO_SOON"

        clock.advance(15)
        await client.fetch(CNPJS[1])
        assert ok_response.await_count == 2

    async def test_cached_served_while_exhausted(self, lookup_client, ok_response):
        lookup_client._request = ok_response
        for cnpj in CNPJS[:3]:
            await lookup_client.fetch(cnpj)
        assert not lookup_client.status().can_request

        record = await lookup_client.fetch(CNPJS[0])

        assert record.cnpj == CNPJS[0]
        assert ok_response.await_count == 3

    async def test_concurrent_fetches_never_exceed_quota(self, lookup_client, ok_response):
        lookup_client._request = ok_response

        results = await asyncio.gather(
            *(lookup_client.fetch(cnpj) for cnpj in CNPJS),
            return_exceptions=True,
        )

        records = [r for r in results if isinstance(r, LookupRecord)]
        refused = [r for r in results if isinstance(r, QuotaExceeded)]
        assert len(records) == 3
        assert len(refused) == 2
        assert ok_response.await_count == 3


@pytest.mark.asyncio
class TestUpstreamFailures:
    """Every admitted call consumes budget, whatever the response."""

    async def test_upstream_429(self, lookup_client):
        lookup_client._request = AsyncMock(return_value=(429, None))

        with pytest.raises(UpstreamRateLimited) as exc_info:
            await lookup_client.fetch(CNPJS[0])

        assert exc_info.value.wait_seconds == 60.0
        assert exc_info.value.retryable is True
        assert lookup_client.status().requests_in_window == 1
        assert not lookup_client.is_cached(CNPJS[0])

    async def test_not_found(self, lookup_client):
        lookup_client._request = AsyncMock(return_value=(404, None))

        with pytest.raises(RegistryNotFound) as exc_info:
            await lookup_client.fetch(CNPJS[0])

        assert exc_info.value.details["cnpj"] == CNPJS[0]
        assert exc_info.value.retryable is False
        assert lookup_client.status().requests_in_window == 1

    async def test_timeout_is_transient(self, lookup_client):
        lookup_client._request = AsyncMock(side_effect=asyncio.TimeoutError())

        with pytest.raises(TransientLookupError) as exc_info:
            await lookup_client.fetch(CNPJS[0])

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.underlying, asyncio.TimeoutError)
        assert lookup_client.status().requests_in_window == 1

    async def test_server_error_is_transient(self, lookup_client):
        lookup_client._request = AsyncMock(return_value=(500, None))

        with pytest.raises(TransientLookupError) as exc_info:
            await lookup_client.fetch(CNPJS[0])

        assert exc_info.value.details["status"] == 500

    async def test_non_object_body_is_transient(self, lookup_client):
        lookup_client._request = AsyncMock(return_value=(200, ["unexpected"]))

        with pytest.raises(TransientLookupError):
            await lookup_client.fetch(CNPJS[0])


@pytest.mark.asyncio
class TestStatus:
    """Tests for the read-only status snapshot."""

    async def test_fresh_client_can_request(self, lookup_client):
        status = lookup_client.status()

        assert status.can_request is True
        assert status.wait_seconds == 0.0
        assert status.requests_remaining == 3
        assert status.wait_formatted == "available now"

    async def test_status_does_not_mutate_history(self, lookup_client, ok_response, clock):
        lookup_client._request = ok_response
        await lookup_client.fetch(CNPJS[0])

        clock.advance(120)
        first = lookup_client.status()
        second = lookup_client.status()

        assert first == second
        assert first.requests_in_window == 0
        assert len(lookup_client._history) == 1

    async def test_status_reports_quota_wait(self, lookup_client, ok_response, clock):
        lookup_client._request = ok_response
        for cnpj in CNPJS[:3]:
            await lookup_client.fetch(cnpj)
        clock.advance(10)

        status = lookup_client.status()

        assert status.can_request is False
        assert status.wait_seconds == pytest.approx(50.0)
        assert status.to_dict()["wait_time_ms"] == 50000
        assert status.wait_formatted == "50 second(s)"

    async def test_clear(self, lookup_client, ok_response):
        lookup_client._request = ok_response
        await lookup_client.fetch(CNPJS[0])

        lookup_client.clear()

        assert lookup_client.status().requests_in_window == 0
        assert lookup_client.cache_stats().cache_size == 0

    async def test_cache_stats(self, lookup_client, ok_response, clock):
        lookup_client._request = ok_response
        await lookup_client.fetch(CNPJS[1])
        await lookup_client.fetch(CNPJS[0])
        clock.advance(2)

        stats = lookup_client.cache_stats()

        assert stats.cache_size == 2
        assert stats.cached_cnpjs == sorted([CNPJS[0], CNPJS[1]])
        assert stats.seconds_since_last_request == 2.0
