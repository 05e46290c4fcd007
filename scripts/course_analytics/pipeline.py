"""Wire collectors, orchestrator and storage into one collection run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

import psycopg2

from scripts.course_analytics.artifacts import write_record_set_csv, write_summary_csv
from scripts.course_analytics.collectors import COLLECTOR_CLASSES
from scripts.course_analytics.config import PipelineConfig
from scripts.course_analytics.db import Database
from scripts.course_analytics.errors import ConfigurationError
from scripts.course_analytics.fetcher import PagedFetcher, RetryPolicy
from scripts.course_analytics.models import CollectionSummary, RecordSet, StorageSummary, StorageTarget
from scripts.course_analytics.orchestrator import ALL_SOURCES, Orchestrator
from scripts.course_analytics.secrets import CredentialProvider
from scripts.course_analytics.storage import (
    DEFAULT_TARGETS,
    StorageEngine,
    parse_write_mode,
    unavailable_summary,
)

logger = logging.getLogger("collection.pipeline")

# Named source subsets for recurring runs
PROFILES: dict[str, Union[str, tuple[str, ...]]] = {
    "daily": ("posit_cloud", "github_commits", "zoom_recordings"),
    "weekly": ("zoom_sessions",),
    "manual_surveys": ("pre_survey", "post_survey"),
    "full": ALL_SOURCES,
}


@dataclass
class PipelineResult:
    run_id: str
    record_sets: dict[str, RecordSet]
    collection: CollectionSummary
    storage: Optional[StorageSummary] = None


def resolve_sources(
    sources: Optional[Iterable[str]] = None,
    profile: Optional[str] = None,
) -> Union[str, list[str]]:
    if sources and profile:
        raise ConfigurationError("Pass either sources or a profile, not both")
    if profile:
        if profile not in PROFILES:
            raise ConfigurationError(
                f"Unknown profile {profile!r}; expected one of {', '.join(PROFILES)}"
            )
        selected = PROFILES[profile]
        return selected if isinstance(selected, str) else list(selected)
    if not sources:
        return ALL_SOURCES
    names = [s for s in sources if s]
    if ALL_SOURCES in names:
        return ALL_SOURCES
    return names


def build_fetcher(config: PipelineConfig) -> PagedFetcher:
    fetch = config.fetch
    return PagedFetcher(
        retry=RetryPolicy(
            max_attempts=fetch.max_retries,
            base_delay=fetch.backoff_base_s,
            max_delay=fetch.max_backoff_s,
        ),
        timeout=fetch.timeout_s,
    )


def build_orchestrator(
    config: PipelineConfig,
    credentials: CredentialProvider,
    fetcher: Optional[PagedFetcher] = None,
) -> Orchestrator:
    """Register every known collector, sharing one fetcher and credential provider."""
    fetcher = fetcher or build_fetcher(config)
    orchestrator = Orchestrator()
    for cls in COLLECTOR_CLASSES:
        collector = cls(credentials, fetcher, config.fetch, lookback_days=config.lookback_days)
        orchestrator.register(cls.SOURCE_NAME, collector, cls.DISPLAY_NAME)
    return orchestrator


def collect(
    orchestrator: Orchestrator,
    config: PipelineConfig,
    selected: Union[str, Iterable[str]] = ALL_SOURCES,
    run_id: Optional[str] = None,
) -> PipelineResult:
    """Collection phase only; record set CSV backups are written when save_files is on."""
    record_sets, summary = orchestrator.run(selected)
    result = PipelineResult(
        run_id=run_id or Database.new_run_id(),
        record_sets=record_sets,
        collection=summary,
    )
    if config.save_files:
        for record_set in record_sets.values():
            write_record_set_csv(record_set, config.data_dir)
    write_summary_csv(summary, config.data_dir)
    return result


def store(
    result: PipelineResult,
    config: PipelineConfig,
    db_factory: Callable[[], Database],
    write_mode: Optional[str] = None,
    targets: Iterable[StorageTarget] = DEFAULT_TARGETS,
) -> StorageSummary:
    """Storage phase: always yields a summary, even when the database is down.

    The pool is opened once per run and closed on every exit path.
    """
    mode = parse_write_mode(write_mode or config.write_mode)
    targets = tuple(targets)
    try:
        db = db_factory()
    except psycopg2.Error as exc:
        logger.error("Cannot connect to database: %s", exc, extra={"run_id": result.run_id})
        summary = unavailable_summary(result.record_sets, f"Database unavailable: {exc}", targets)
    else:
        try:
            try:
                with db.sink() as sink:
                    summary = StorageEngine(sink, targets).store(result.record_sets, mode)
            except psycopg2.Error as exc:
                logger.error("Lost database connection: %s", exc, extra={"run_id": result.run_id})
                summary = unavailable_summary(result.record_sets, f"Database unavailable: {exc}", targets)
            _record_summaries(db, result.run_id, result.collection, summary)
        finally:
            db.close()

    result.storage = summary
    write_summary_csv(summary, config.data_dir)
    return summary


def _record_summaries(
    db: Database,
    run_id: str,
    collection: CollectionSummary,
    storage: StorageSummary,
) -> None:
    try:
        db.record_summary(run_id, collection)
        db.record_summary(run_id, storage)
    except psycopg2.Error as exc:
        logger.error("Could not record run summaries: %s", exc, extra={"run_id": run_id})


def collect_and_store(
    config: PipelineConfig,
    credentials: CredentialProvider,
    selected: Union[str, Iterable[str]] = ALL_SOURCES,
    write_mode: Optional[str] = None,
    db_factory: Optional[Callable[[], Database]] = None,
    orchestrator: Optional[Orchestrator] = None,
    targets: Iterable[StorageTarget] = DEFAULT_TARGETS,
) -> PipelineResult:
    """Full pipeline: collect the selected sources, then store them."""
    mode = parse_write_mode(write_mode or config.write_mode)
    orchestrator = orchestrator or build_orchestrator(config, credentials)
    orchestrator.resolve(selected)  # fail fast before any network call

    run_id = Database.new_run_id()
    logger.info("Pipeline run started", extra={"run_id": run_id})

    result = collect(orchestrator, config, selected, run_id=run_id)
    store(result, config, db_factory or (lambda: Database(config.database)), mode, targets)

    logger.info(
        "Pipeline run finished: collection %s, storage %s",
        result.collection.counts(), result.storage.counts() if result.storage else {},
        extra={"run_id": run_id},
    )
    return result
