"""Write record sets to their storage targets with per-target isolation.

Upsert is delete-then-insert on the target's identity key. The delete and
the insert must run inside one sink transaction; outside of one, concurrent
writers to the same table can interleave and break idempotency.
"""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Callable,
    ContextManager,
    Iterable,
    Mapping,
    Protocol,
    Sequence,
    Union,
)

from scripts.course_analytics.config import WRITE_MODES
from scripts.course_analytics.errors import ConfigurationError, TargetMissingError, WriteError
from scripts.course_analytics.models import (
    ERROR,
    SKIPPED,
    SUCCESS,
    Record,
    RecordSet,
    StorageOutcome,
    StorageSummary,
    StorageTarget,
)

logger = logging.getLogger("collection.storage")

APPEND = "append"
REPLACE = "replace"
UPSERT = "upsert"


class Sink(Protocol):
    def exists(self, table: str) -> bool: ...

    def insert(self, table: str, rows: Sequence[Record]) -> int: ...

    def delete_where(
        self, table: str, key_columns: Sequence[str], key_values: Sequence[tuple]
    ) -> int: ...

    def clear(self, table: str) -> int: ...

    def transaction(self) -> ContextManager[Any]: ...


DEFAULT_TARGETS: tuple[StorageTarget, ...] = (
    StorageTarget("pre_survey", "pre_course_survey", ("participant_id",)),
    StorageTarget("post_survey", "post_course_survey", ("participant_id",)),
    StorageTarget("posit_cloud", "posit_cloud_usage", ("session_id",)),
    StorageTarget("zoom_sessions", "zoom_live_sessions", ("meeting_id", "participant_id", "join_time")),
    StorageTarget("zoom_recordings", "zoom_recordings", ("recording_id", "viewer_id", "view_start_time")),
    StorageTarget("github_commits", "github_commits", ("commit_sha",)),
)


def parse_write_mode(mode: str) -> str:
    normalized = (mode or "").strip().lower()
    if normalized not in WRITE_MODES:
        raise ConfigurationError(
            f"Unknown write mode {mode!r}; expected one of {', '.join(WRITE_MODES)}"
        )
    return normalized


def dedupe_by_key(rows: Sequence[Record], key_columns: Sequence[str]) -> list[Record]:
    """Keep the last row for each identity key, preserving first-seen key order."""
    latest: dict[tuple, Record] = {}
    for row in rows:
        key = tuple(row.get(c) for c in key_columns)
        if any(v is None for v in key):
            raise WriteError(f"Row has a null identity value for {', '.join(key_columns)}")
        latest[key] = row
    return list(latest.values())


def _as_mapping(record_sets: Union[Mapping[str, RecordSet], Iterable[RecordSet]]) -> dict[str, RecordSet]:
    if isinstance(record_sets, Mapping):
        return dict(record_sets)
    return {rs.name: rs for rs in record_sets}


def unavailable_summary(
    record_sets: Union[Mapping[str, RecordSet], Iterable[RecordSet]],
    message: str,
    targets: Iterable[StorageTarget] = DEFAULT_TARGETS,
) -> StorageSummary:
    """Storage summary for a run whose backend could not be reached at all."""
    by_name = {t.record_set: t for t in targets}
    summary = StorageSummary()
    for name in _as_mapping(record_sets):
        target = by_name.get(name)
        summary.add(StorageOutcome(
            name=name,
            status=ERROR,
            error_message=message,
            target=target.table if target else None,
        ))
    return summary


class StorageEngine:
    def __init__(
        self,
        sink: Sink,
        targets: Iterable[StorageTarget] = DEFAULT_TARGETS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.targets = {t.record_set: t for t in targets}
        self._clock = clock

    def store(
        self,
        record_sets: Union[Mapping[str, RecordSet], Iterable[RecordSet]],
        write_mode: str = UPSERT,
    ) -> StorageSummary:
        mode = parse_write_mode(write_mode)
        summary = StorageSummary()

        for name, record_set in _as_mapping(record_sets).items():
            summary.add(self._store_one(name, record_set, mode))

        counts = summary.counts()
        logger.info(
            "Storage complete: %d succeeded, %d failed, %d skipped",
            counts["succeeded"], counts["failed"], counts["skipped"],
            extra={"records": counts["records"]},
        )
        return summary

    def _store_one(self, name: str, record_set: RecordSet, mode: str) -> StorageOutcome:
        target = self.targets.get(name)
        if target is None:
            logger.warning("No storage target for record set %s, skipping", name,
                           extra={"source": name})
            return StorageOutcome(name=name, status=SKIPPED,
                                  error_message=f"No storage target for {name}")

        if not record_set:
            logger.info("Nothing to write for %s", name,
                        extra={"source": name, "target": target.table})
            return StorageOutcome(name=name, status=SKIPPED, target=target.table)

        started = self._clock()
        try:
            written = self._write(target, record_set.records, mode)
        except Exception as exc:
            duration = self._clock() - started
            logger.error(
                "Storing %s into %s failed: %s", name, target.table, exc,
                extra={"source": name, "target": target.table, "duration_s": round(duration, 3)},
            )
            return StorageOutcome(
                name=name,
                status=ERROR,
                duration_seconds=duration,
                error_message=str(exc)[:1000] or type(exc).__name__,
                target=target.table,
            )

        duration = self._clock() - started
        logger.info(
            "Stored %d records from %s into %s (%s)", written, name, target.table, mode,
            extra={
                "source": name,
                "target": target.table,
                "records": written,
                "duration_s": round(duration, 3),
            },
        )
        return StorageOutcome(
            name=name,
            status=SUCCESS,
            record_count=written,
            duration_seconds=duration,
            target=target.table,
        )

    def _write(self, target: StorageTarget, rows: list[Record], mode: str) -> int:
        if not self.sink.exists(target.table):
            raise TargetMissingError(target.table)

        if mode == APPEND:
            with self.sink.transaction():
                return self.sink.insert(target.table, rows)

        if mode == REPLACE:
            with self.sink.transaction():
                self.sink.clear(target.table)
                return self.sink.insert(target.table, rows)

        batch = dedupe_by_key(rows, target.identity_key)
        if len(batch) < len(rows):
            logger.warning(
                "Discarded %d duplicate identity key(s) in batch for %s (last wins)",
                len(rows) - len(batch), target.table,
                extra={"target": target.table},
            )
        keys = [tuple(row[c] for c in target.identity_key) for row in batch]
        with self.sink.transaction():
            self.sink.delete_where(target.table, target.identity_key, keys)
            return self.sink.insert(target.table, batch)

