"""Background polling for companies flagged for enrichment."""

from .poller import EnrichmentPoller

__all__ = ["EnrichmentPoller"]
