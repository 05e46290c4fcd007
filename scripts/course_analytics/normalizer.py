"""Coalesce heterogeneous API records into fixed-schema rows.

Raw records are plain mappings: a missing key reads as absent. Each output
column declares an ordered list of candidates; the first candidate that
yields a non-None value wins. Candidate order is part of a collector's
contract and is never rearranged here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from scripts.course_analytics.errors import ValidationError

logger = logging.getLogger("collection.normalizer")

Accessor = Union[str, Callable[[Mapping[str, Any]], Any]]

COLLECTED_AT = "collected_at"


@dataclass(frozen=True)
class Column:
    """One canonical output column and how to find its value."""

    name: str
    candidates: tuple[Accessor, ...]
    convert: Optional[Callable[[Any], Any]] = None
    default: Any = None


def column(
    name: str,
    *candidates: Accessor,
    convert: Optional[Callable[[Any], Any]] = None,
    default: Any = None,
) -> Column:
    """Shorthand: ``column("user_id", "user_id", "owner_id", convert=str)``."""
    return Column(name=name, candidates=candidates or (name,), convert=convert, default=default)


def lookup(raw: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path (``commit.author.email``) from nested mappings."""
    value: Any = raw
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
        if value is None:
            return None
    return value


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def _evaluate(accessor: Accessor, raw: Mapping[str, Any]) -> Any:
    if callable(accessor):
        return accessor(raw)
    return lookup(raw, accessor)


def coalesce(raw: Mapping[str, Any], col: Column) -> Any:
    """Return the first present candidate value for ``col``, or its default.

    Presence alone decides the winner when the column has no converter.
    With a converter, a present value that fails conversion (``TypeError``
    or ``ValueError``) counts as absent and the next candidate is tried, so
    for ``[A, B, C]`` with a malformed ``B`` the result comes from ``C``.
    """
    for accessor in col.candidates:
        value = _evaluate(accessor, raw)
        if value is None:
            continue
        if col.convert is not None:
            try:
                value = col.convert(value)
            except (TypeError, ValueError) as exc:
                logger.debug("Candidate %r for %s not convertible: %s", accessor, col.name, exc)
                continue
            if value is None:
                continue
        return value
    return col.default


def normalize_strict(
    raw: Mapping[str, Any],
    columns: Sequence[Column],
    required: Iterable[str] = (),
    collected_at: Optional[datetime] = None,
) -> dict[str, Any]:
    """Normalize one record, raising ValidationError when it must be dropped."""
    record = {col.name: coalesce(raw, col) for col in columns}

    if all(is_blank(v) for v in record.values()):
        raise ValidationError("blank row")
    missing = [name for name in required if is_blank(record.get(name))]
    if missing:
        raise ValidationError(f"missing required column(s): {', '.join(missing)}")

    record[COLLECTED_AT] = collected_at or datetime.now(timezone.utc)
    return record


def normalize(
    raw: Mapping[str, Any],
    columns: Sequence[Column],
    required: Iterable[str] = (),
    collected_at: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    """Normalize one record; returns None when the record is dropped."""
    try:
        return normalize_strict(raw, columns, required, collected_at)
    except ValidationError as exc:
        logger.debug("Dropping record: %s", exc)
        return None


def normalize_all(
    raws: Iterable[Mapping[str, Any]],
    columns: Sequence[Column],
    required: Iterable[str] = (),
    source: Optional[str] = None,
) -> list[dict[str, Any]]:
    required = tuple(required)
    records: list[dict[str, Any]] = []
    dropped = 0
    for raw in raws:
        record = normalize(raw, columns, required)
        if record is None:
            dropped += 1
        else:
            records.append(record)
    if dropped:
        logger.warning(
            "Dropped %d record(s) missing required data", dropped,
            extra={"source": source, "records": dropped},
        )
    return records


# ----------------------------------------------------------------------
# Converters shared by collectors
# ----------------------------------------------------------------------

def to_str(value: Any) -> str:
    return str(value)


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("bool is not an integer value")
    return int(float(value))


def to_float(value: Any) -> float:
    return float(value)


def parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 (with ``Z`` suffix) or epoch seconds into aware UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty timestamp")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise TypeError(f"cannot parse timestamp from {type(value).__name__}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_date(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_timestamp(value).date()


# ----------------------------------------------------------------------
# Derived-value accessors
# ----------------------------------------------------------------------

def divided(path: str, by: float) -> Callable[[Mapping[str, Any]], Any]:
    """Accessor reading a numeric field and dividing it (seconds -> minutes)."""

    def _get(raw: Mapping[str, Any]) -> Any:
        value = lookup(raw, path)
        if value is None:
            return None
        try:
            return float(value) / by
        except (TypeError, ValueError):
            return None

    return _get


def minutes_between(start: str, end: str) -> Callable[[Mapping[str, Any]], Any]:
    """Accessor computing whole minutes between two timestamp fields."""

    def _get(raw: Mapping[str, Any]) -> Any:
        first, last = lookup(raw, start), lookup(raw, end)
        if first is None or last is None:
            return None
        try:
            delta = parse_timestamp(last) - parse_timestamp(first)
        except (TypeError, ValueError):
            return None
        return delta.total_seconds() / 60

    return _get
