from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple, Type

from trafficreport.settings import Settings

log = logging.getLogger("uvicorn.error")


def adapt_sql(sql: str) -> str:
    cleaned = sql.strip().rstrip(";")
    return cleaned.replace("?", "%s")


class PostgresCursor:
    def __init__(self, cursor: Any, prefetched: Optional[dict] = None) -> None:
        self._cursor = cursor
        self._prefetched = prefetched
        self.lastrowid = None
        self.rowcount = cursor.rowcount
        if prefetched and "id" in prefetched:
            self.lastrowid = prefetched["id"]

    def fetchone(self):
        if self._prefetched is not None:
            row = self._prefetched
            self._prefetched = None
            return row
        return self._cursor.fetchone()

    def fetchall(self):
        rows = []
        if self._prefetched is not None:
            rows.append(self._prefetched)
            self._prefetched = None
        rows.extend(self._cursor.fetchall())
        return rows

    def close(self) -> None:
        self._cursor.close()


class PostgresConnection:
    """sqlite3-flavoured facade over a pooled psycopg2 connection."""

    def __init__(self, raw_conn: Any, pool: Any) -> None:
        self._raw = raw_conn
        self._pool = pool
        self._returned = False

    def close(self) -> None:
        if not self._returned:
            self._pool.putconn(self._raw)
            self._returned = True

    def execute(self, sql: str, params: Any = ()):
        from psycopg2.extras import RealDictCursor

        sql_text = adapt_sql(sql)
        sql_upper = sql_text.lstrip().upper()
        add_returning = sql_upper.startswith("INSERT") and "RETURNING" not in sql_upper and "ON CONFLICT" not in sql_upper
        if add_returning:
            sql_text = f"{sql_text} RETURNING id"
        cursor = self._raw.cursor(cursor_factory=RealDictCursor)
        cursor.execute(sql_text, tuple(params))
        prefetched = None
        if add_returning:
            prefetched = cursor.fetchone() or {}
        return PostgresCursor(cursor, prefetched)

    def commit(self) -> None:
        self._raw.commit()

    def rollback(self) -> None:
        self._raw.rollback()


class Database:
    """Process-wide store handle.

    Built once by the application factory, opened in the app lifespan and
    closed on shutdown. SQLite is used unless a PostgreSQL config is given.
    """

    def __init__(
        self,
        *,
        sqlite_path: Optional[Path] = None,
        postgres: Optional[Dict[str, Any]] = None,
        pool_max: int = 10,
    ) -> None:
        if sqlite_path is None and postgres is None:
            raise ValueError("Either sqlite_path or postgres config is required")
        self.sqlite_path = Path(sqlite_path) if sqlite_path is not None else None
        self._postgres_config = postgres
        self._pool_max = pool_max
        self._pool = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        if settings.use_postgres:
            return cls(postgres=settings.postgres_config(), pool_max=settings.db_pool_max)
        return cls(sqlite_path=settings.sqlite_path)

    @property
    def use_postgres(self) -> bool:
        return self._postgres_config is not None

    @property
    def integrity_errors(self) -> Tuple[Type[Exception], ...]:
        """Exception types raised on constraint violations by this backend."""
        if self.use_postgres:
            import psycopg2

            return (psycopg2.IntegrityError,)
        return (sqlite3.IntegrityError,)

    def describe(self) -> str:
        if self.use_postgres:
            cfg = self._postgres_config or {}
            return f"Postgres host={cfg.get('host')} db={cfg.get('dbname')} user={cfg.get('user')}"
        return f"SQLite at {self.sqlite_path}"

    def open(self) -> None:
        if self.use_postgres:
            if self._pool is not None:
                return
            from psycopg2 import pool

            self._pool = pool.ThreadedConnectionPool(1, self._pool_max, **(self._postgres_config or {}))
        else:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        log.info("Database backend: %s", self.describe())

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            log.info("Database pool closed")

    @contextmanager
    def connect(self) -> Iterator[Any]:
        if self.use_postgres:
            if self._pool is None:
                raise RuntimeError("Database is not open")
            conn = PostgresConnection(self._pool.getconn(), self._pool)
        else:
            raw = sqlite3.connect(str(self.sqlite_path))
            raw.row_factory = sqlite3.Row
            raw.execute("PRAGMA foreign_keys = ON")
            conn = raw
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


__all__ = ["Database", "adapt_sql"]
