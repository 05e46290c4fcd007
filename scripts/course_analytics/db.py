"""Database helpers: connection pool, PostgreSQL sink, run summary tracking."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Generator, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool
from psycopg2 import sql

from scripts.course_analytics.config import DatabaseConfig
from scripts.course_analytics.models import Record, RunSummary

logger = logging.getLogger("collection.db")


class Database:
    """Thin wrapper around a ThreadedConnectionPool with run tracking helpers."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def sink(self) -> Generator["PostgresSink", None, None]:
        """Hold one pooled connection for a whole storage phase."""
        with self.connection() as conn:
            yield PostgresSink(conn)

    # ------------------------------------------------------------------
    # Run summary tracking
    # ------------------------------------------------------------------

    @staticmethod
    def new_run_id() -> str:
        return str(uuid.uuid4())

    def record_summary(self, run_id: str, summary: RunSummary) -> int:
        """Insert one collection_runs row per outcome. Returns rows written."""
        rows = [
            (
                run_id,
                summary.PHASE,
                o.name,
                getattr(o, "target", None),
                o.status,
                o.record_count,
                o.duration_seconds,
                o.error_message or None,
            )
            for o in summary
        ]
        if not rows:
            return 0
        with self.transaction() as cur:
            psycopg2.extras.execute_values(
                cur,
                """INSERT INTO collection_runs
                   (run_id, phase, name, target, status, record_count,
                    duration_seconds, error_message)
                   VALUES %s""",
                rows,
            )
        return len(rows)

    def get_recent_runs(
        self,
        name: Optional[str] = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Fetch recent outcome rows for status display."""
        with self.transaction() as cur:
            if name:
                cur.execute(
                    """SELECT run_id, phase, name, target, status, record_count,
                              duration_seconds, error_message, recorded_at
                       FROM collection_runs
                       WHERE name = %s
                       ORDER BY recorded_at DESC LIMIT %s""",
                    (name, limit),
                )
            else:
                cur.execute(
                    """SELECT run_id, phase, name, target, status, record_count,
                              duration_seconds, error_message, recorded_at
                       FROM collection_runs
                       ORDER BY recorded_at DESC LIMIT %s""",
                    (limit,),
                )
            cols = [d[0] for d in cur.description]
            return [dict(zip(cols, row)) for row in cur.fetchall()]


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return psycopg2.extras.Json(value)
    return value


class PostgresSink:
    """Storage sink bound to a single connection.

    Every statement runs inside ``transaction()``; a call made outside an
    open transaction gets its own. Nested ``transaction()`` blocks join the
    outer one, so delete+insert pairs commit or roll back together.
    """

    def __init__(self, conn) -> None:
        self._conn = conn
        self._cur = None

    @contextmanager
    def transaction(self) -> Generator:
        if self._cur is not None:
            yield self._cur
            return
        try:
            with self._conn.cursor() as cur:
                self._cur = cur
                yield cur
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            self._cur = None

    def exists(self, table: str) -> bool:
        with self.transaction() as cur:
            cur.execute("SELECT to_regclass(%s) IS NOT NULL", (table,))
            row = cur.fetchone()
        return bool(row and row[0])

    def insert(self, table: str, rows: Sequence[Record]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        statement = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        )
        values = [tuple(_adapt(row.get(c)) for c in columns) for row in rows]
        with self.transaction() as cur:
            psycopg2.extras.execute_values(cur, statement.as_string(cur), values, page_size=500)
        return len(values)

    def delete_where(
        self,
        table: str,
        key_columns: Sequence[str],
        key_values: Sequence[tuple],
    ) -> int:
        if not key_values:
            return 0
        statement = sql.SQL("DELETE FROM {} WHERE ({}) IN %s").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in key_columns),
        )
        with self.transaction() as cur:
            cur.execute(statement, (tuple(tuple(k) for k in key_values),))
            deleted = cur.rowcount
        return int(deleted or 0)

    def clear(self, table: str) -> int:
        with self.transaction() as cur:
            cur.execute(sql.SQL("DELETE FROM {}").format(sql.Identifier(table)))
            deleted = cur.rowcount
        return int(deleted or 0)
