"""Engine components: dedup → ingestion pipeline → enrichment → summary jobs → cache."""

from .cache import ExpiringCache, MemoryTTLCache, SummaryCache
from .dedup import DeduplicationEngine, DeduplicationResult
from .enrichment import CatalogEnricher, EnrichmentReport
from .jobs import SummaryJobQueue, SummaryWorker, WorkerStats
from .pipeline import CandidateOutcome, IngestionPipeline, IngestionReport, IngestionRequest
from .rate_limiter import RateLimiter
from .summaries import SummaryService
from .thread_pool import ThreadPoolManager

__all__ = [
    "CandidateOutcome",
    "CatalogEnricher",
    "DeduplicationEngine",
    "DeduplicationResult",
    "EnrichmentReport",
    "ExpiringCache",
    "IngestionPipeline",
    "IngestionReport",
    "IngestionRequest",
    "MemoryTTLCache",
    "RateLimiter",
    "SummaryCache",
    "SummaryJobQueue",
    "SummaryService",
    "SummaryWorker",
    "ThreadPoolManager",
    "WorkerStats",
]
