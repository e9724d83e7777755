"""Polling pass over companies flagged for enrichment.

Each tick searches HubSpot for companies with ``cnpj_enriquecer = sim`` and
enriches them one at a time. Only one tick runs at a time, so at most one
enrichment is in flight and the shared limiter is respected. When the limiter
asks for a short wait the poller sleeps; for longer waits it ends the tick and
leaves the remaining companies flagged for the next one.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

import structlog

from ..config.settings import settings
from ..crm import schema
from ..crm.hubspot import HubSpotClient
from ..crm.tokens import Tokens, TokenStore
from ..crm.schema import EnrichmentStatus
from ..enrichment.interfaces import TickResult
from ..enrichment.service import EnrichmentService, CNPJ_PROPERTY_CANDIDATES
from ..errors import AuthError, EnrichmentError, IdentifierNotFound, RateLimitError

logger = structlog.get_logger()


class EnrichmentPoller:
    """Enrich every flagged company, sequentially."""

    def __init__(
        self,
        service: EnrichmentService,
        token_store: TokenStore,
        crm_factory: Callable[[Tokens], HubSpotClient] = None,
        batch_size: int = None,
        max_wait_seconds: float = None,
        sleep: Callable[[float], Awaitable] = None,
    ):
        self.service = service
        self.token_store = token_store
        self.crm_factory = crm_factory or service.crm_factory
        self.batch_size = batch_size or settings.poll_batch_size
        # Default: wait out the minimum spacing, but not a full quota window
        self.max_wait_seconds = (
            max_wait_seconds if max_wait_seconds is not None
            else settings.rate_limit_min_interval_seconds
        )
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()

    async def tick(self) -> TickResult:
        """Run one polling pass. Overlapping calls return immediately."""
        if self._lock.locked():
            logger.info("poll_tick_skipped", reason="previous tick still running")
            return TickResult(stopped_early=True)

        async with self._lock:
            start = datetime.now()
            try:
                tokens = self.token_store.require()
            except AuthError as e:
                logger.warning("poll_tick_no_token", code=e.code)
                return TickResult(stopped_early=True)

            crm = self.crm_factory(tokens)
            try:
                companies = await crm.search_companies(
                    schema.SHOULD_ENRICH,
                    schema.SHOULD_ENRICH_YES,
                    properties=CNPJ_PROPERTY_CANDIDATES + ["name"],
                    limit=self.batch_size,
                )
                result = await self._process(crm, tokens, companies)
            finally:
                await crm.close()

            logger.info(
                "poll_tick_completed",
                elapsed_seconds=(datetime.now() - start).total_seconds(),
                **result.to_dict(),
            )
            return result

    async def _process(self, crm: HubSpotClient, tokens: Tokens, companies: list) -> TickResult:
        result = TickResult(scanned=len(companies))

        for company in companies:
            company_id = str(company["id"])

            status = self.service.lookup.status()
            if not status.can_request:
                if status.wait_seconds > self.max_wait_seconds:
                    result.stopped_early = True
                    result.wait_seconds = status.wait_seconds
                    break
                await self._sleep(status.wait_seconds)

            try:
                await self.service.enrich(company_id, tokens)
                result.enriched += 1
            except RateLimitError as e:
                result.rate_limited += 1
                result.stopped_early = True
                result.wait_seconds = e.wait_seconds
                logger.info("poll_rate_limited", company_id=company_id, code=e.code, wait_ms=e.wait_ms)
                break
            except AuthError as e:
                result.failed += 1
                result.stopped_early = True
                logger.error("poll_auth_failed", company_id=company_id, code=e.code)
                break
            except IdentifierNotFound:
                result.failed += 1
                await self._unflag(crm, company_id)
            except EnrichmentError as e:
                result.failed += 1
                logger.warning("poll_enrichment_failed", company_id=company_id, code=e.code, error=e.message)

        return result

    async def _unflag(self, crm: HubSpotClient, company_id: str):
        """Stop rescanning a company that has no CNPJ to look up."""
        try:
            await crm.update_company(company_id, {
                schema.ENRICHMENT_STATUS: EnrichmentStatus.NOT_PROCESSED.value,
                schema.SHOULD_ENRICH: schema.SHOULD_ENRICH_NO,
            })
        except Exception as e:
            logger.error("status_tag_failed", company_id=company_id, error=str(e))
