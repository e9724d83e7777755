"""Factory functions for the process-wide collaborators.

The lookup client owns the rate-limit history and the cache, so exactly one
instance must serve every caller in the process (API, worker, CLI).
"""

from functools import lru_cache

import structlog

from .config.settings import settings
from .crm.tokens import Tokens, InMemoryTokenStore
from .enrichment.service import EnrichmentService
from .lookup.client import RegistryLookupClient
from .pipeline.poller import EnrichmentPoller

logger = structlog.get_logger()


@lru_cache(maxsize=1)
def get_lookup_client() -> RegistryLookupClient:
    """Get the shared rate-limited lookup client."""
    client = RegistryLookupClient()
    logger.info(
        "lookup_client_created",
        max_requests=client.max_requests,
        window_seconds=client.window_seconds,
        min_interval_seconds=client.min_interval_seconds,
    )
    return client


@lru_cache(maxsize=1)
def get_token_store() -> InMemoryTokenStore:
    """Get the token store, seeded from CE_HUBSPOT_ACCESS_TOKEN when set."""
    seed = None
    if settings.hubspot_access_token:
        seed = Tokens(
            access_token=settings.hubspot_access_token,
            refresh_token=settings.hubspot_refresh_token,
        )
        logger.info("token_store_seeded_from_env")
    return InMemoryTokenStore(seed)


@lru_cache(maxsize=1)
def get_enrichment_service() -> EnrichmentService:
    return EnrichmentService(get_lookup_client())


@lru_cache(maxsize=1)
def get_poller() -> EnrichmentPoller:
    """Get the shared poller; its lock keeps one polling pass in flight."""
    return EnrichmentPoller(get_enrichment_service(), get_token_store())


def clear_cache():
    """Clear cached instances (useful for testing)."""
    get_poller.cache_clear()
    get_enrichment_service.cache_clear()
    get_lookup_client.cache_clear()
    get_token_store.cache_clear()
