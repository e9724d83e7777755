"""Data models for company enrichment."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..crm.schema import EnrichmentStatus


@dataclass
class EnrichmentOutcome:
    """Result of a successful enrichment."""

    company_id: str
    cnpj: str
    properties: dict = field(default_factory=dict)  # what was written to the CRM
    summary: dict = field(default_factory=dict)
    from_cache: bool = False
    enriched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> EnrichmentStatus:
        return EnrichmentStatus.ENRICHED

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "success": True,
            "status": self.status.value,
            "company_id": self.company_id,
            "cnpj": self.cnpj,
            "company": self.summary,
            "fields_updated": sorted(self.properties),
            "enriched_at": self.enriched_at.isoformat(),
        }


@dataclass
class TickResult:
    """Counters for one polling pass."""
    scanned: int = 0
    enriched: int = 0
    failed: int = 0
    rate_limited: int = 0
    stopped_early: bool = False
    wait_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "enriched": self.enriched,
            "failed": self.failed,
            "rate_limited": self.rate_limited,
            "stopped_early": self.stopped_early,
            "wait_seconds": self.wait_seconds,
        }
