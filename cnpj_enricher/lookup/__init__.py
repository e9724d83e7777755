"""Registry lookup with rate limiting and caching."""

from .interfaces import LookupRecord, Partner, RateLimitStatus, CacheStats
from .client import RegistryLookupClient

__all__ = ["LookupRecord", "Partner", "RateLimitStatus", "CacheStats", "RegistryLookupClient"]
