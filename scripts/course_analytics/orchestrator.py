"""Run a selection of registered collectors with per-source failure isolation."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Iterable, NamedTuple, Optional, Union

from scripts.course_analytics.errors import ConfigurationError
from scripts.course_analytics.models import (
    ERROR,
    SUCCESS,
    CollectionOutcome,
    CollectionSummary,
    RecordSet,
)

logger = logging.getLogger("collection.orchestrator")

ALL_SOURCES = "all"

Collector = Callable[[], Any]


@dataclass(frozen=True)
class RegisteredSource:
    name: str
    collector: Collector
    display_name: str


class CollectionRun(NamedTuple):
    record_sets: dict[str, RecordSet]
    summary: CollectionSummary


class Orchestrator:
    """Registry of named collectors, run one after another in registration order."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._sources: "OrderedDict[str, RegisteredSource]" = OrderedDict()
        self._clock = clock

    def register(
        self,
        name: str,
        collector: Collector,
        display_name: Optional[str] = None,
    ) -> None:
        if name in self._sources:
            raise ConfigurationError(f"Source {name!r} is already registered")
        self._sources[name] = RegisteredSource(name, collector, display_name or name)

    @property
    def source_names(self) -> list[str]:
        return list(self._sources)

    def resolve(self, selected: Union[str, Iterable[str]] = ALL_SOURCES) -> list[RegisteredSource]:
        """Validate a selection and return the sources to run, in registration order."""
        if isinstance(selected, str):
            if selected == ALL_SOURCES:
                return list(self._sources.values())
            selected = [selected]
        wanted = set(selected)
        unknown = sorted(wanted - set(self._sources))
        if unknown:
            raise ConfigurationError(
                f"Unknown source(s): {', '.join(unknown)}. "
                f"Available: {', '.join(self._sources)}"
            )
        return [s for s in self._sources.values() if s.name in wanted]

    def run(self, selected: Union[str, Iterable[str]] = ALL_SOURCES) -> CollectionRun:
        sources = self.resolve(selected)
        record_sets: dict[str, RecordSet] = {}
        summary = CollectionSummary()

        logger.info("Starting collection for %d source(s): %s",
                    len(sources), [s.name for s in sources])

        for source in sources:
            record_set, outcome = self._run_one(source)
            record_sets[source.name] = record_set
            summary.add(outcome)

        counts = summary.counts()
        logger.info(
            "Collection complete: %d succeeded, %d failed",
            counts["succeeded"], counts["failed"],
            extra={"records": counts["records"]},
        )
        return CollectionRun(record_sets, summary)

    def _run_one(self, source: RegisteredSource) -> tuple[RecordSet, CollectionOutcome]:
        logger.info("Collecting %s", source.display_name, extra={"source": source.name})
        started = self._clock()
        try:
            result = source.collector()
            record_set = self._as_record_set(source.name, result)
        except Exception as exc:
            duration = self._clock() - started
            logger.error(
                "Collection failed for %s: %s", source.display_name, exc,
                extra={"source": source.name, "duration_s": round(duration, 3)},
            )
            return RecordSet.empty(source.name), CollectionOutcome(
                name=source.name,
                status=ERROR,
                record_count=0,
                duration_seconds=duration,
                error_message=str(exc)[:1000] or type(exc).__name__,
            )

        duration = self._clock() - started
        logger.info(
            "Collected %d records from %s", len(record_set), source.display_name,
            extra={
                "source": source.name,
                "records": len(record_set),
                "duration_s": round(duration, 3),
            },
        )
        return record_set, CollectionOutcome(
            name=source.name,
            status=SUCCESS,
            record_count=len(record_set),
            duration_seconds=duration,
        )

    @staticmethod
    def _as_record_set(name: str, result: Any) -> RecordSet:
        if isinstance(result, RecordSet):
            if result.name != name:
                return RecordSet(name=name, records=result.records, columns=result.columns)
            return result
        if result is None:
            return RecordSet.empty(name)
        return RecordSet(name=name, records=list(result))
