"""Company enrichment with CNPJ registry data."""

from .interfaces import EnrichmentStatus, EnrichmentOutcome, TickResult
from .mapping import FIELD_MAPPING, build_mapping, map_record, summarize, format_report
from .service import EnrichmentService, find_identifier

__all__ = [
    "EnrichmentStatus",
    "EnrichmentOutcome",
    "TickResult",
    "FIELD_MAPPING",
    "build_mapping",
    "map_record",
    "summarize",
    "format_report",
    "EnrichmentService",
    "find_identifier",
]
