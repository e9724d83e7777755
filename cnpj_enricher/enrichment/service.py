"""Enrichment service: CNPJ lookup for one HubSpot company and write-back."""

from typing import Callable, Optional, Tuple

import structlog

from .interfaces import EnrichmentOutcome, EnrichmentStatus
from .mapping import FieldMapping, build_mapping, map_record, summarize
from ..crm import schema
from ..crm.hubspot import HubSpotClient
from ..config.settings import settings
from ..crm.tokens import Tokens, require_tokens
from ..errors import (
    IdentifierNotFound,
    InvalidIdentifier,
    RateLimited,
    RateLimitError,
    RegistryLookupError,
)
from ..identifier.validator import normalize, validate, CNPJ_LENGTH
from ..lookup.client import RegistryLookupClient

logger = structlog.get_logger()

# Checked in order before falling back to scanning every property
CNPJ_PROPERTY_CANDIDATES = [
    "cnpj",
    "CNPJ",
    schema.CNPJ,
    "registration_number",
    "company_cnpj",
    "document_number",
    "tax_id",
    "federal_id",
]


def find_identifier(properties: dict) -> Optional[Tuple[str, str]]:
    """Locate the CNPJ among company properties.

    Returns (property_name, raw_value) or None. Known CNPJ properties win;
    otherwise the first string property, in sorted name order, that
    normalizes to 14 digits is used.
    """
    for name in CNPJ_PROPERTY_CANDIDATES:
        value = properties.get(name)
        if value:
            return name, value

    for name in sorted(properties):
        value = properties[name]
        if isinstance(value, str) and len(normalize(value)) == CNPJ_LENGTH:
            return name, value

    return None


class EnrichmentService:
    """Enrich HubSpot companies with registry data.

    The lookup client is shared and owns all rate-limit state; the service keeps
    nothing between calls and never retries. Retry policy belongs to callers.
    """

    def __init__(
        self,
        lookup: RegistryLookupClient,
        crm_factory: Callable[[Tokens], HubSpotClient] = None,
        mapping: FieldMapping = None,
    ):
        self.lookup = lookup
        self.crm_factory = crm_factory or (lambda tokens: HubSpotClient(tokens.access_token))
        self.mapping = mapping if mapping is not None else build_mapping(settings.field_mapping)

    async def enrich(self, company_id: str, tokens: Optional[Tokens]) -> EnrichmentOutcome:
        """Look up the company's CNPJ and write the registry data back.

        Raises MissingToken / TokenExpired before any external call,
        IdentifierNotFound, InvalidIdentifier, RateLimited (limiter pre-check),
        and the lookup client's errors after tagging the company status.
        """
        tokens = require_tokens(tokens)
        company_id = str(company_id)

        crm = self.crm_factory(tokens)
        try:
            return await self._enrich(crm, company_id)
        finally:
            await crm.close()

    async def _enrich(self, crm: HubSpotClient, company_id: str) -> EnrichmentOutcome:
        logger.info("enrichment_started", company_id=company_id)

        company = await crm.get_company(company_id, properties=CNPJ_PROPERTY_CANDIDATES)
        properties = company.get("properties") or {}

        found = find_identifier(properties)
        if found is None:
            logger.warning("cnpj_not_found_in_company", company_id=company_id, properties=sorted(properties))
            raise IdentifierNotFound(company_id=company_id, available_properties=sorted(properties))

        source_property, raw = found
        try:
            cnpj = validate(raw)
        except InvalidIdentifier as e:
            logger.warning("invalid_cnpj", company_id=company_id, property=source_property, reason=e.reason)
            await self._tag(crm, company_id, EnrichmentStatus.FAILED, clear_flag=True)
            e.details["company_id"] = company_id
            raise

        status = self.lookup.status()
        if not status.can_request:
            logger.info("enrichment_deferred", company_id=company_id, cnpj=cnpj, wait_ms=status.wait_ms)
            raise RateLimited(
                f"Wait {status.wait_formatted} before the next CNPJ lookup",
                wait_seconds=status.wait_seconds,
                requests_in_window=status.requests_in_window,
                max_requests=status.max_requests,
                cnpj=cnpj,
                company_id=company_id,
            )

        from_cache = self.lookup.is_cached(cnpj)

        try:
            record = await self.lookup.fetch(cnpj)
        except RateLimitError as e:
            await self._tag(crm, company_id, EnrichmentStatus.RATE_LIMITED)
            e.details.update(cnpj=cnpj, company_id=company_id)
            raise
        except RegistryLookupError as e:
            await self._tag(crm, company_id, EnrichmentStatus.FAILED, clear_flag=not e.retryable)
            e.details.update(cnpj=cnpj, company_id=company_id)
            raise

        update = map_record(record, mapping=self.mapping)
        update[schema.ENRICHMENT_STATUS] = EnrichmentStatus.ENRICHED.value
        update[schema.SHOULD_ENRICH] = schema.SHOULD_ENRICH_NO
        await crm.update_company(company_id, update)

        logger.info(
            "company_enriched",
            company_id=company_id,
            cnpj=cnpj,
            source_property=source_property,
            from_cache=from_cache,
            fields=len(update),
        )

        return EnrichmentOutcome(
            company_id=company_id,
            cnpj=cnpj,
            properties=update,
            summary=summarize(record),
            from_cache=from_cache,
        )

    async def _tag(self, crm: HubSpotClient, company_id: str, status: EnrichmentStatus, clear_flag: bool = False):
        """Best-effort status write; failures are logged and swallowed."""
        update = {schema.ENRICHMENT_STATUS: status.value}
        if clear_flag:
            update[schema.SHOULD_ENRICH] = schema.SHOULD_ENRICH_NO
        try:
            await crm.update_company(company_id, update)
        except Exception as e:
            logger.error("status_tag_failed", company_id=company_id, status=status.value, error=str(e))
