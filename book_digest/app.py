"""Typer CLI entrypoint for book-digest."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import (
    CatalogProvider,
    ConfigRepository,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
    SourcePriority,
)
from .engine import EnrichmentReport, IngestionReport, ThreadPoolManager, WorkerStats
from .errors import BookDigestError, BookNotFoundError
from .infra import SQLiteManager
from .logging_conf import (
    available_source_logs,
    configure_logging,
    main_log_path,
    source_log_path,
    tail_log,
)
from .models import Candidate, SummaryJob
from .orchestrator import Orchestrator
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="book-digest: catalog ingestion and summary jobs",
    no_args_is_help=True,
    rich_markup_mode=None,
)
source_app = typer.Typer(name="source", help="Catalog source commands", no_args_is_help=True)
summary_app = typer.Typer(name="summary", help="Summary job commands", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing commands", no_args_is_help=True)
catalog_app = typer.Typer(name="catalog", help="Catalog enrichment commands", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    scheduler: APSchedulerAdapter
    orchestrator: Orchestrator
    storage: SQLiteManager


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    scheduler = APSchedulerAdapter()
    thread_pool = ThreadPoolManager(global_config.thread_pool_workers)
    storage = SQLiteManager()
    orchestrator = Orchestrator(
        config_repository=repository,
        scheduler=scheduler,
        thread_pool=thread_pool,
        storage=storage,
    )
    return AppState(
        repository=repository,
        scheduler=scheduler,
        orchestrator=orchestrator,
        storage=storage,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: ScheduleConfig) -> str:
    data = schedule.value
    label = schedule.type.value
    if data in (None, "", [], {}):
        return label
    if schedule.type is ScheduleType.CRON:
        return f"cron ({data})"
    if schedule.type is ScheduleType.INTERVAL:
        return f"interval ({data})"
    return f"{label} ({data})"


def _describe_target(source: SourceConfig) -> str:
    parts = []
    if source.query:
        parts.append(f"query: {source.query}")
    if source.external_ids:
        parts.append(f"{len(source.external_ids)} id(s)")
    if source.isbns:
        parts.append(f"{len(source.isbns)} isbn(s)")
    return ", ".join(parts)


def _render_sources_table(sources: Sequence[SourceConfig]) -> Table:
    table = Table(title=f"Sources · {len(sources)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Provider", style="magenta")
    table.add_column("Priority", style="yellow")
    table.add_column("Target", overflow="fold")
    table.add_column("Count", justify="right")
    table.add_column("Schedule", style="green", overflow="fold")
    for source in sources:
        table.add_row(
            source.source_name,
            source.provider.value,
            source.priority.value,
            _describe_target(source),
            str(source.target_count),
            _format_schedule(source.schedule),
        )
    return table


def _render_jobs_table(jobs: Iterable[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time", "-")),
            str(job.get("trigger", "-")),
        )
    return table


def _render_report(title: str, report: IngestionReport | EnrichmentReport) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for metric, value in report.as_dict().items():
        table.add_row(metric.replace("_", " "), str(value))
    return table


def _render_job(job: SummaryJob) -> Table:
    table = Table(title="Summary job", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("id", job.id)
    table.add_row("book", job.book_id)
    table.add_row("status", job.status.value)
    table.add_row("style", job.style)
    table.add_row("retries", str(job.retry_count))
    if job.summary_id:
        table.add_row("summary", job.summary_id)
    if job.error_message:
        table.add_row("error", job.error_message)
    return table


def _candidate_filter(require_isbn: bool, require_description: bool):
    if not (require_isbn or require_description):
        return None

    def _accept(candidate: Candidate) -> bool:
        if require_isbn and not (candidate.isbn13 or candidate.isbn10):
            return False
        if require_description and not candidate.description:
            return False
        return True

    return _accept


app.add_typer(source_app, name="source", help="List and run catalog sources")
app.add_typer(summary_app, name="summary", help="Request, inspect and process summaries")
app.add_typer(log_app, name="log", help="Inspect log files")
app.add_typer(catalog_app, name="catalog", help="Refresh ratings and covers of stored books")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    ctx.obj = build_state(verbose)


# ----------------------------------------------------------------------
# source
# ----------------------------------------------------------------------
@source_app.command("list", help="Show configured sources and scheduled jobs.")
def source_list(
    ctx: typer.Context,
    hide_schedule: bool = typer.Option(False, "--hide-schedule", help="Do not show scheduled jobs."),
) -> None:
    state = _get_state(ctx)
    sources = state.repository.list_sources()
    if not sources:
        console.print(
            f"No sources configured yet; add YAML files under {state.repository.locator.sources_dir}.",
            style="yellow",
        )
        raise typer.Exit(code=0)
    console.print(_render_sources_table(sources))
    if not hide_schedule:
        jobs = list(state.scheduler.list_jobs())
        if jobs:
            console.print(_render_jobs_table(jobs))
        else:
            console.print("No scheduled jobs.", style="dim")


@source_app.command("run", help="Ingest one source now.")
def source_run(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Source name."),
    require_isbn: bool = typer.Option(False, "--require-isbn", help="Skip candidates without an ISBN."),
    require_description: bool = typer.Option(
        False, "--require-description", help="Skip candidates without a description."
    ),
) -> None:
    state = _get_state(ctx)
    try:
        report = state.orchestrator.run_source(
            name, priority=_candidate_filter(require_isbn, require_description)
        )
    except FileNotFoundError:
        console.print(f"Source `{name}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print(_render_report(f"{name} results", report))
    for label, reason in report.failures:
        console.print(f"- {label}: {reason}", style="red")


@source_app.command("run-all", help="Ingest every configured source, sources in parallel.")
def source_run_all(
    ctx: typer.Context,
    priority: Optional[SourcePriority] = typer.Option(
        None, "--priority", help="Only run sources with this priority."
    ),
    require_isbn: bool = typer.Option(False, "--require-isbn", help="Skip candidates without an ISBN."),
    require_description: bool = typer.Option(
        False, "--require-description", help="Skip candidates without a description."
    ),
) -> None:
    state = _get_state(ctx)
    selector = (lambda source: source.priority is priority) if priority else None
    reports = state.orchestrator.run_sources(
        selector=selector,
        priority=_candidate_filter(require_isbn, require_description),
    )
    if not reports:
        console.print("No matching sources.", style="yellow")
        raise typer.Exit(code=0)
    table = Table(title=f"Batch results · {len(reports)} source(s)", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan")
    for column in ("attempted", "added", "duplicate", "failed", "skipped"):
        table.add_column(column, justify="right")
    for source_name, report in reports.items():
        counts = report.as_dict()
        table.add_row(
            source_name,
            *(str(counts[column]) for column in ("attempted", "added", "duplicate", "failed", "skipped")),
        )
    console.print(table)
    total = sum(reports.values(), IngestionReport())
    console.print(
        f"Total: added {total.added}, duplicate {total.duplicate}, "
        f"failed {total.failed}, skipped {total.skipped}"
    )


@app.command("serve", help="Run scheduled source ingestion and the summary drain in the foreground.")
def serve(
    ctx: typer.Context,
    duration: Optional[float] = typer.Option(
        None, "--duration", min=0, help="Stop after this many seconds (runs until Ctrl+C when empty)."
    ),
) -> None:
    state = _get_state(ctx)
    sources = state.repository.list_sources()
    state.orchestrator.register_schedules(sources)
    jobs = state.scheduler.list_jobs()
    if jobs:
        console.print(_render_jobs_table(jobs))
    else:
        console.print("No scheduled jobs.", style="dim")
    deadline = None if duration is None else time.monotonic() + duration
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        state.scheduler.shutdown()
        state.orchestrator.thread_pool.shutdown()


# ----------------------------------------------------------------------
# summary
# ----------------------------------------------------------------------
@summary_app.command("request", help="Queue summary generation for a book.")
def summary_request(
    ctx: typer.Context,
    book_id: str = typer.Argument(..., help="Catalog book id."),
    regenerate: bool = typer.Option(False, "--regenerate", help="Replace an existing summary."),
    style: str = typer.Option("full", "--style", help="Summary style: brief or full."),
) -> None:
    if style not in ("brief", "full"):
        raise typer.BadParameter("style must be 'brief' or 'full'", param_hint="--style")
    state = _get_state(ctx)
    try:
        job = state.orchestrator.summaries.request_summary(book_id, regenerate=regenerate, style=style)
    except BookNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    console.print(_render_job(job))


@summary_app.command("status", help="Show the status of a summary job.")
def summary_status(ctx: typer.Context, job_id: str = typer.Argument(..., help="Job id.")) -> None:
    state = _get_state(ctx)
    job = state.orchestrator.summaries.get_job(job_id)
    if job is None:
        console.print(f"Job `{job_id}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print(_render_job(job))


@summary_app.command("show", help="Print the summary of a book.")
def summary_show(ctx: typer.Context, book_id: str = typer.Argument(..., help="Catalog book id.")) -> None:
    state = _get_state(ctx)
    summary = state.orchestrator.summaries.get_summary(book_id)
    if summary is None:
        console.print(f"No summary for book `{book_id}`.", style="yellow")
        raise typer.Exit(code=1)
    console.print(summary.one_sentence_hook, style="bold")
    table = Table(title="Key ideas", box=box.SIMPLE_HEAD)
    table.add_column("Idea", overflow="fold")
    table.add_column("Confidence", style="magenta")
    for idea in summary.key_ideas:
        table.add_row(idea.idea, idea.confidence)
    console.print(table)
    console.print("How to apply:", style="cyan")
    for point in summary.how_to_apply:
        console.print(f"- {point.action}")
    console.print(f"Read time: {summary.read_time_minutes} min", style="dim")
    if summary.extended_summary:
        console.print(summary.extended_summary)


@summary_app.command("work", help="Process pending summary jobs.")
def summary_work(
    ctx: typer.Context,
    max_jobs: Optional[int] = typer.Option(None, "--max-jobs", min=1, help="Stop after N jobs."),
) -> None:
    state = _get_state(ctx)
    try:
        stats: WorkerStats = state.orchestrator.drain_summaries(max_jobs=max_jobs)
    except BookDigestError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    console.print(
        f"Processed {stats.processed}: completed {stats.completed}, failed {stats.failed}, "
        f"extended failures {stats.extended_failures}"
    )


# ----------------------------------------------------------------------
# catalog
# ----------------------------------------------------------------------
@catalog_app.command("popularity", help="Fetch ratings and score books that have no popularity rank.")
def catalog_popularity(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Examine at most N books."),
) -> None:
    state = _get_state(ctx)
    report = state.orchestrator.refresh_popularity(limit=limit)
    _print_enrichment("Popularity refresh", report)


@catalog_app.command("covers", help="Fill in missing cover images.")
def catalog_covers(
    ctx: typer.Context,
    provider: CatalogProvider = typer.Option(
        CatalogProvider.OPEN_LIBRARY, "--provider", help="Catalog to take covers from."
    ),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Examine at most N books."),
    force: bool = typer.Option(False, "--force", help="Also revisit books that already have a cover."),
) -> None:
    state = _get_state(ctx)
    report = state.orchestrator.refresh_covers(provider=provider, limit=limit, force=force)
    _print_enrichment("Cover refresh", report)


def _print_enrichment(title: str, report: EnrichmentReport) -> None:
    if not report.examined:
        console.print("No books need updating.", style="dim")
        return
    console.print(_render_report(title, report))
    for label, reason in report.failures:
        console.print(f"- {label}: {reason}", style="red")


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("list", help="List per-source log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(title="Log files", box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the main log or a source log.")
def log_show(
    name: Optional[str] = typer.Option(None, "--source", help="Source name (main log when empty)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    path = main_log_path() if not name else source_log_path(name)
    lines = tail_log(path, tail)
    if not lines:
        console.print("Log is empty.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} line(s)", style="cyan")
    console.print("".join(lines))


__all__ = ["app", "build_state", "AppState"]
