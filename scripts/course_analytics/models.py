"""Record sets, per-unit outcomes and run summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

SUCCESS = "success"
ERROR = "error"
SKIPPED = "skipped"

SUMMARY_COLUMNS = ["name", "status", "record_count", "duration_seconds", "error_message"]

Record = dict[str, Any]


@dataclass
class RecordSet:
    """Normalized records for one source, all sharing one schema."""

    name: str
    records: list[Record] = field(default_factory=list)
    columns: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def __bool__(self) -> bool:
        return bool(self.records)

    @classmethod
    def empty(cls, name: str) -> "RecordSet":
        return cls(name=name)

    @property
    def column_names(self) -> list[str]:
        if self.columns:
            return list(self.columns)
        return list(self.records[0].keys()) if self.records else []


@dataclass(frozen=True)
class StorageTarget:
    """Maps a record set name to the table that holds it."""

    record_set: str
    table: str
    identity_key: tuple[str, ...]


@dataclass(frozen=True)
class CollectionOutcome:
    name: str
    status: str
    record_count: int = 0
    duration_seconds: float = 0.0
    error_message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    def to_row(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "record_count": self.record_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class StorageOutcome(CollectionOutcome):
    target: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        row = super().to_row()
        row["target"] = self.target or ""
        return row


@dataclass
class RunSummary:
    """Ordered outcomes of one phase of a run."""

    PHASE = ""
    COLUMNS = SUMMARY_COLUMNS

    outcomes: list[CollectionOutcome] = field(default_factory=list)

    def add(self, outcome: CollectionOutcome) -> None:
        self.outcomes.append(outcome)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self) -> Iterator[CollectionOutcome]:
        return iter(self.outcomes)

    def get(self, name: str) -> Optional[CollectionOutcome]:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None

    def _with_status(self, status: str) -> list[CollectionOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[CollectionOutcome]:
        return self._with_status(SUCCESS)

    @property
    def failed(self) -> list[CollectionOutcome]:
        return self._with_status(ERROR)

    @property
    def skipped(self) -> list[CollectionOutcome]:
        return self._with_status(SKIPPED)

    @property
    def total_records(self) -> int:
        return sum(o.record_count for o in self.succeeded)

    def to_rows(self) -> list[dict[str, Any]]:
        return [o.to_row() for o in self.outcomes]

    def counts(self) -> dict[str, int]:
        return {
            "attempted": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "records": self.total_records,
        }


@dataclass
class CollectionSummary(RunSummary):
    PHASE = "collection"


@dataclass
class StorageSummary(RunSummary):
    PHASE = "storage"
    COLUMNS = SUMMARY_COLUMNS + ["target"]
