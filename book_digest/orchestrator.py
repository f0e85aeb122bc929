"""Orchestrator wiring catalog sources, ingestion, summary jobs and scheduling."""

from __future__ import annotations

import importlib
from threading import Lock
from typing import Callable, Iterable

import structlog

from .clients import CatalogSource, GoogleBooksSource, OpenLibrarySource, Summarizer
from .config import CatalogProvider, ConfigRepository, GlobalConfig, SourceConfig
from .engine import (
    CatalogEnricher,
    DeduplicationEngine,
    EnrichmentReport,
    ExpiringCache,
    IngestionPipeline,
    IngestionReport,
    IngestionRequest,
    MemoryTTLCache,
    RateLimiter,
    SummaryCache,
    SummaryJobQueue,
    SummaryService,
    SummaryWorker,
    ThreadPoolManager,
    WorkerStats,
)
from .engine.pipeline import PriorityPredicate
from .errors import BookDigestError
from .infra import SQLiteCatalogStore, SQLiteManager
from .logging_conf import configure_logging, source_logger

SourceSelector = Callable[[SourceConfig], bool]
SourceFactory = Callable[[SourceConfig, GlobalConfig], CatalogSource]
ProviderFactory = Callable[[CatalogProvider, GlobalConfig], CatalogSource]

SUMMARY_POOL = "summaries"


def catalog_for_provider(provider: CatalogProvider, global_config: GlobalConfig) -> CatalogSource:
    if provider is CatalogProvider.GOOGLE_BOOKS:
        return GoogleBooksSource(api_key=global_config.effective_google_books_api_key())
    if provider is CatalogProvider.OPEN_LIBRARY:
        return OpenLibrarySource()
    raise ValueError(f"Unsupported catalog provider: {provider}")


def build_catalog_source(source: SourceConfig, global_config: GlobalConfig) -> CatalogSource:
    return catalog_for_provider(source.provider, global_config)


def load_summarizer(import_path: str) -> Summarizer:
    """Build a summarizer from ``package.module:callable``."""

    module_name, _, attribute = import_path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Summarizer path must look like 'package.module:factory': {import_path}")
    factory = getattr(importlib.import_module(module_name), attribute)
    return factory()


def request_for(source: SourceConfig) -> IngestionRequest:
    return IngestionRequest(
        query=source.query,
        external_ids=list(source.external_ids),
        isbns=list(source.isbns),
        target_count=source.target_count,
        extra_categories=list(source.extra_categories),
        featured=source.featured,
        bestseller=source.bestseller,
        enqueue_summaries=source.enqueue_summaries,
        label=source.source_name,
    )


class Orchestrator:
    """Explicit dependency context for every catalog operation.

    Nothing here is a module-level singleton: the store, cache, queue and
    per-provider rate limiters are built from configuration and handed to the
    pipeline and workers they serve.
    """

    def __init__(
        self,
        config_repository: ConfigRepository,
        scheduler,
        thread_pool: ThreadPoolManager,
        storage: SQLiteManager,
        summarizer: Summarizer | None = None,
        cache_backend: ExpiringCache | None = None,
        source_factory: SourceFactory | None = None,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.scheduler = scheduler
        self.thread_pool = thread_pool
        self.storage = storage
        self.logger = configure_logging().bind(component="orchestrator")
        self.store = SQLiteCatalogStore(storage, config_repository.store_path())
        self.dedup = DeduplicationEngine(self.store)
        self.cache = SummaryCache(
            cache_backend if cache_backend is not None else MemoryTTLCache(),
            ttl_seconds=self.global_config.summary_cache_ttl_seconds,
            logger=structlog.get_logger("book_digest.cache"),
        )
        self.job_queue = SummaryJobQueue(self.store, self.store)
        self.summaries = SummaryService(self.store, self.cache, self.job_queue)
        if summarizer is None and self.global_config.summarizer:
            summarizer = load_summarizer(self.global_config.summarizer)
        self.summarizer = summarizer
        self.source_factory = source_factory or build_catalog_source
        self.provider_factory = provider_factory or catalog_for_provider
        self._limiters: dict[CatalogProvider, RateLimiter] = {}
        self._limiter_lock = Lock()

    # ------------------------------------------------------------------
    def limiter_for(self, provider: CatalogProvider) -> RateLimiter:
        """One limiter per provider, shared by every source that queries it."""

        with self._limiter_lock:
            if provider not in self._limiters:
                self._limiters[provider] = RateLimiter(
                    max_calls=self.global_config.rate_limit_max_calls,
                    window_seconds=self.global_config.rate_limit_window_seconds,
                    min_interval=self.global_config.request_delay_seconds,
                )
            return self._limiters[provider]

    def run_source(self, source_name: str, priority: PriorityPredicate | None = None) -> IngestionReport:
        source = self.config_repository.load_source(source_name)
        return self._ingest(source, priority)

    def run_source_async(self, source: SourceConfig) -> None:
        self.thread_pool.get().submit(self.run_source, source.source_name)

    def run_sources(
        self,
        selector: SourceSelector | None = None,
        priority: PriorityPredicate | None = None,
    ) -> dict[str, IngestionReport]:
        """Run the selected sources concurrently, one thread per source."""

        sources = [
            source
            for source in self.config_repository.list_sources()
            if selector is None or selector(source)
        ]
        outcomes = self.thread_pool.run_all(
            (source.source_name, lambda source=source: self._ingest(source, priority))
            for source in sources
        )
        reports: dict[str, IngestionReport] = {}
        for source in sources:
            outcome = outcomes[source.source_name]
            if isinstance(outcome, BaseException):
                self.logger.error("source_run_failed", source=source.source_name, error=str(outcome))
                report = IngestionReport()
                report.record_failure(source.source_name, str(outcome))
                outcome = report
            reports[source.source_name] = outcome
        total = sum(reports.values(), IngestionReport())
        self.logger.info("sources_run_finished", sources=len(reports), **total.as_dict())
        return reports

    def _ingest(self, source: SourceConfig, priority: PriorityPredicate | None) -> IngestionReport:
        log = source_logger(source.source_name)
        catalog = self.source_factory(source, self.global_config)
        pipeline = IngestionPipeline(
            self.store,
            self.dedup,
            self.limiter_for(source.provider),
            job_queue=self.job_queue if source.enqueue_summaries else None,
            logger=log,
            cooldown_seconds=self.global_config.rate_limit_cooldown_seconds,
            summary_style=self.global_config.summary_style,
        )
        try:
            return pipeline.run(catalog, request_for(source), priority)
        finally:
            catalog.close()

    # ------------------------------------------------------------------
    def refresh_popularity(self, limit: int | None = None) -> EnrichmentReport:
        """Rate and score stored books that have no popularity rank yet."""

        return self._enrich(
            CatalogProvider.GOOGLE_BOOKS,
            lambda enricher, catalog: enricher.refresh_popularity(catalog, limit=limit),
        )

    def refresh_covers(
        self,
        provider: CatalogProvider = CatalogProvider.OPEN_LIBRARY,
        limit: int | None = None,
        force: bool = False,
    ) -> EnrichmentReport:
        return self._enrich(
            provider,
            lambda enricher, catalog: enricher.refresh_covers(catalog, limit=limit, force=force),
        )

    def _enrich(
        self,
        provider: CatalogProvider,
        run: Callable[[CatalogEnricher, CatalogSource], EnrichmentReport],
    ) -> EnrichmentReport:
        catalog = self.provider_factory(provider, self.global_config)
        enricher = CatalogEnricher(
            self.store,
            self.limiter_for(provider),
            logger=structlog.get_logger("book_digest.enrichment").bind(provider=provider.value),
            cooldown_seconds=self.global_config.rate_limit_cooldown_seconds,
        )
        try:
            report = run(enricher, catalog)
        finally:
            catalog.close()
        self.logger.info("enrichment_run_finished", provider=provider.value, **report.as_dict())
        return report

    # ------------------------------------------------------------------
    def build_worker(self) -> SummaryWorker:
        if self.summarizer is None:
            raise BookDigestError(
                "No summarizer configured; set `summarizer` in global_config.yaml"
            )
        return SummaryWorker(self.job_queue, self.store, self.summarizer, self.cache)

    def drain_summaries(self, max_jobs: int | None = None, workers: int | None = None) -> WorkerStats:
        """Process pending summary jobs until the queue is empty or ``max_jobs`` is hit.

        Jobs left ``processing`` for longer than ``stale_job_seconds`` are put
        back in the queue first.
        """

        worker = self.build_worker()
        self.job_queue.requeue_stale(self.global_config.stale_job_seconds)
        if max_jobs is not None:
            return worker.drain(max_jobs)
        count = workers or self.global_config.summary_workers
        outcomes = self.thread_pool.run_all(
            ((index, self.build_worker().drain) for index in range(count)),
            pool_name=SUMMARY_POOL,
            max_workers=self.global_config.summary_workers,
        )
        total = WorkerStats()
        for outcome in outcomes.values():
            if isinstance(outcome, BaseException):
                self.logger.error("summary_worker_crashed", error=str(outcome))
                continue
            total.processed += outcome.processed
            total.completed += outcome.completed
            total.failed += outcome.failed
            total.extended_failures += outcome.extended_failures
        return total

    # ------------------------------------------------------------------
    def register_schedules(self, sources: Iterable[SourceConfig]) -> None:
        self.scheduler.schedule_sources(sources, self.run_source_async)
        interval = self.global_config.summary_drain_interval_seconds
        if self.summarizer is not None and interval:
            self.scheduler.schedule_summary_drain(interval, self.drain_summaries)
        self.scheduler.start()


__all__ = [
    "Orchestrator",
    "build_catalog_source",
    "catalog_for_provider",
    "load_summarizer",
    "request_for",
]
