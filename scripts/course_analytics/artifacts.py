"""Flat CSV audit files for run summaries and collected record sets."""

from __future__ import annotations

import csv
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from scripts.course_analytics.models import RecordSet, RunSummary

logger = logging.getLogger("collection.artifacts")


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def write_summary_csv(summary: RunSummary, data_dir: Path) -> Path:
    """Write ``<phase>_summary.csv``; the file is replaced on every run."""
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / f"{summary.PHASE}_summary.csv"
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=summary.COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for row in summary.to_rows():
            writer.writerow({k: _cell(v) for k, v in row.items()})
    logger.info("%s summary saved to %s", summary.PHASE.capitalize(), path)
    return path


def write_record_set_csv(record_set: RecordSet, data_dir: Path) -> Optional[Path]:
    """Back up a non-empty record set as ``<name>.csv``."""
    if not record_set:
        return None
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / f"{record_set.name}.csv"
    columns = record_set.column_names
    if "collected_at" not in columns and "collected_at" in record_set.records[0]:
        columns.append("collected_at")
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for record in record_set:
            writer.writerow({c: _cell(record.get(c)) for c in columns})
    logger.info("Saved %d records to %s", len(record_set), path,
                extra={"source": record_set.name, "records": len(record_set)})
    return path
