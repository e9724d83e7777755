"""Rate-limited client for the public CNPJ registry API.

The public API allows 3 requests per minute. Two throttles guard it:

- a sliding window: at most ``max_requests`` calls in ``window_seconds``;
- a minimum spacing of ``min_interval_seconds`` between consecutive calls.

Successful lookups are cached for ``cache_ttl_seconds``; cache hits never
consume budget. Every admitted call consumes budget, whatever its outcome,
because the upstream counts failed requests too.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

import aiohttp
import structlog

from .interfaces import LookupRecord, RateLimitStatus, CacheStats
from ..config.settings import settings
from ..errors import (
    QuotaExceeded,
    TooSoon,
    UpstreamRateLimited,
    RegistryNotFound,
    TransientLookupError,
)
from ..identifier.validator import validate

logger = structlog.get_logger()


class RegistryLookupClient:
    """Async CNPJ lookup client with sliding-window throttling and a TTL cache.

    One instance is meant to live for the whole process and be shared by every
    caller; admission and history bookkeeping run under a single lock.
    """

    def __init__(
        self,
        base_url: str = None,
        window_seconds: float = None,
        max_requests: int = None,
        min_interval_seconds: float = None,
        cache_ttl_seconds: float = None,
        timeout_seconds: float = None,
        upstream_retry_after: float = None,
        clock: Callable[[], float] = None,
    ):
        self.base_url = (base_url or settings.cnpj_api_base_url).rstrip("/")
        self.window_seconds = window_seconds if window_seconds is not None else settings.rate_limit_window_seconds
        self.max_requests = max_requests if max_requests is not None else settings.rate_limit_max_requests
        self.min_interval_seconds = (
            min_interval_seconds if min_interval_seconds is not None
            else settings.rate_limit_min_interval_seconds
        )
        self.cache_ttl_seconds = cache_ttl_seconds if cache_ttl_seconds is not None else settings.cache_ttl_seconds
        self.timeout_seconds = timeout_seconds or settings.lookup_timeout_seconds
        self.upstream_retry_after = (
            upstream_retry_after if upstream_retry_after is not None
            else settings.upstream_retry_after_seconds
        )
        self._clock = clock or time.monotonic

        self._history: Deque[float] = deque()
        self._last_request_time: Optional[float] = None
        self._cache: Dict[str, Tuple[LookupRecord, float]] = {}
        self._lock = asyncio.Lock()
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={
                    "User-Agent": settings.user_agent,
                    "Accept": "application/json",
                },
            )
        return self._session

    async def close(self):
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    # Limiter state

    def _live_history(self, now: float) -> list:
        return [ts for ts in self._history if now - ts < self.window_seconds]

    def _purge(self, now: float):
        while self._history and now - self._history[0] >= self.window_seconds:
            self._history.popleft()

    def _wait_for(self, history: list, now: float) -> Tuple[Optional[str], float]:
        """Return (reason, wait_seconds); reason is None when a request is allowed."""
        if len(history) >= self.max_requests:
            oldest = min(history)
            return "quota", max(0.0, self.window_seconds - (now - oldest))

        if self._last_request_time is not None:
            elapsed = now - self._last_request_time
            if elapsed < self.min_interval_seconds:
                return "too_soon", self.min_interval_seconds - elapsed

        return None, 0.0

    def status(self) -> RateLimitStatus:
        """Snapshot of the limiter without consuming budget or mutating history."""
        now = self._clock()
        history = self._live_history(now)
        reason, wait = self._wait_for(history, now)
        window_remaining = max(0.0, self.window_seconds - (now - min(history))) if history else 0.0
        return RateLimitStatus(
            can_request=reason is None,
            wait_seconds=wait,
            requests_in_window=len(history),
            max_requests=self.max_requests,
            window_remaining_seconds=window_remaining,
        )

    def _admit(self, now: float):
        """Admission check plus budget reservation. Caller must hold the lock."""
        self._purge(now)
        history = list(self._history)
        reason, wait = self._wait_for(history, now)

        if reason == "quota":
            logger.warning(
                "cnpj_rate_limit_quota",
                requests_in_window=len(history),
                max_requests=self.max_requests,
                wait_seconds=round(wait, 3),
            )
            raise QuotaExceeded(
                f"Limit of {self.max_requests} lookups per {int(self.window_seconds)}s reached",
                wait_seconds=wait,
                requests_in_window=len(history),
                max_requests=self.max_requests,
            )
        if reason == "too_soon":
            logger.info("cnpj_rate_limit_spacing", wait_seconds=round(wait, 3))
            raise TooSoon(
                wait_seconds=wait,
                requests_in_window=len(history),
                max_requests=self.max_requests,
            )

        self._last_request_time = now
        self._history.append(now)

    # Cache

    def _cache_get(self, cnpj: str, now: float) -> Optional[LookupRecord]:
        entry = self._cache.get(cnpj)
        if entry is None:
            return None
        record, expires_at = entry
        if now >= expires_at:
            del self._cache[cnpj]
            return None
        return record

    def is_cached(self, cnpj: str) -> bool:
        """True if a fresh cache entry exists; never consumes budget."""
        return self._cache_get(cnpj, self._clock()) is not None

    def cache_stats(self) -> CacheStats:
        """Cache contents and limiter counters."""
        now = self._clock()
        for cnpj in [c for c, (_, exp) in self._cache.items() if now >= exp]:
            del self._cache[cnpj]
        since_last = None
        if self._last_request_time is not None:
            since_last = round(now - self._last_request_time, 3)
        return CacheStats(
            cache_size=len(self._cache),
            cached_cnpjs=sorted(self._cache),
            requests_in_window=len(self._live_history(now)),
            max_requests=self.max_requests,
            seconds_since_last_request=since_last,
        )

    def clear(self):
        """Drop cached records and request history."""
        self._cache.clear()
        self._history.clear()
        self._last_request_time = None
        logger.info("cnpj_cache_cleared")

    # Lookup

    async def fetch(self, identifier: str) -> LookupRecord:
        """Return registry data for a CNPJ, from cache or from the API.

        Raises QuotaExceeded / TooSoon when the local limiter refuses the call,
        UpstreamRateLimited on HTTP 429, RegistryNotFound on HTTP 404 and
        TransientLookupError on timeouts, network errors or bad responses.
        """
        cnpj = validate(identifier)

        async with self._lock:
            now = self._clock()
            cached = self._cache_get(cnpj, now)
            if cached is not None:
                logger.info("cnpj_cache_hit", cnpj=cnpj)
                return cached

            self._admit(now)
            admitted_at = now
            in_window = len(self._history)

        logger.info(
            "cnpj_lookup_started",
            cnpj=cnpj,
            requests_in_window=in_window,
            max_requests=self.max_requests,
        )
        start_time = time.time()

        try:
            status, payload = await self._request(cnpj)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("cnpj_lookup_failed", cnpj=cnpj, error=repr(e))
            raise TransientLookupError(underlying=e) from e

        elapsed_ms = int((time.time() - start_time) * 1000)

        if status == 429:
            logger.warning("cnpj_api_rate_limited", cnpj=cnpj, time_ms=elapsed_ms)
            raise UpstreamRateLimited(wait_seconds=self.upstream_retry_after)

        if status == 404:
            logger.warning("cnpj_not_found", cnpj=cnpj, time_ms=elapsed_ms)
            raise RegistryNotFound(cnpj=cnpj)

        if status != 200 or not isinstance(payload, dict):
            logger.error("cnpj_lookup_bad_response", cnpj=cnpj, status=status, time_ms=elapsed_ms)
            raise TransientLookupError(f"CNPJ API returned HTTP {status}", status=status)

        record = LookupRecord.from_api(cnpj, payload)

        async with self._lock:
            self._cache[cnpj] = (record, admitted_at + self.cache_ttl_seconds)

        logger.info("cnpj_lookup_succeeded", cnpj=cnpj, legal_name=record.legal_name, time_ms=elapsed_ms)
        return record

    async def _request(self, cnpj: str) -> Tuple[int, Optional[dict]]:
        """GET the registry record. Returns (status, json body or None)."""
        session = await self._get_session()
        async with session.get(f"{self.base_url}/{cnpj}") as resp:
            if resp.status != 200:
                return resp.status, None
            return resp.status, await resp.json(content_type=None)
