"""
Async database access helpers (raw SQL) using asyncpg.

`Database` owns the connection pool. The FastAPI lifespan constructs one
instance on startup, connects it, and closes it on shutdown (see
`api/main.py`); everything else receives it as an argument.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...

json/jsonb columns are encoded/decoded as Python values by the pool's
connection init hook. Pass dicts/lists directly; `None` is stored as SQL NULL.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg

from . import settings

logger = logging.getLogger(__name__)

HEALTH_PING_TIMEOUT_S = 1.0
# Health message thresholds.
HEAVY_LOAD_RATIO = 0.8
HIGH_WAIT_COUNT = 1000


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url() -> str:
    url = os.environ.get("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


async def _init_connection(conn: asyncpg.Connection) -> None:
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename,
            encoder=_json_dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


class Database:
    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ) -> None:
        self.dsn = _sanitize_database_url(dsn)
        self.min_size = min(min_size, max_size)
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None
        self.wait_count = 0
        self.wait_duration_s = 0.0

    @classmethod
    def from_env(cls) -> "Database":
        return cls(
            database_url(),
            min_size=settings.db_pool_min_size(),
            max_size=settings.db_pool_max_size(),
            command_timeout=settings.db_command_timeout_s(),
        )

    async def connect(self) -> None:
        if self._pool is not None:
            return None
        self._pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
            init=_init_connection,
        )
        logger.info("db_connected min_size=%s max_size=%s", self.min_size, self.max_size)

    async def close(self) -> None:
        if self._pool is None:
            return None
        await self._pool.close()
        self._pool = None
        logger.info("db_disconnected")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("DB pool is not initialized. Call connect() on startup.")
        return self._pool

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Check a connection out of the pool, counting checkouts that had to wait.

        asyncpg keeps no wait statistics, so a checkout counts as a wait when
        the pool is at max size with no idle connection.
        """
        pool = self.pool
        must_wait = pool.get_idle_size() == 0 and pool.get_size() >= pool.get_max_size()
        started = time.monotonic()
        async with pool.acquire() as conn:  # type: asyncpg.Connection
            if must_wait:
                self.wait_count += 1
                self.wait_duration_s += time.monotonic() - started
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection and run the block in a single transaction.

        Any exception raised inside the block rolls the transaction back.
        """
        async with self._acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        """
        Run a query and return a single row as a dict (or None).
        """
        async with self._acquire() as conn:
            row = await conn.fetchrow(sql, *args)
        return _record_to_dict(row) if row is not None else None

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """
        Run a query and return all rows as a list of dicts.
        """
        async with self._acquire() as conn:
            rows = await conn.fetch(sql, *args)
        return [_record_to_dict(r) for r in rows]

    async def execute(self, sql: str, *args: Any) -> None:
        """
        Run a statement (INSERT/UPDATE/DELETE/DDL). No result returned.
        """
        async with self._acquire() as conn:
            await conn.execute(sql, *args)

    async def health(self) -> dict[str, str]:
        """
        Ping the database and report pool statistics.

        Never raises: a failed ping is reported as `status=down`.
        """
        stats: dict[str, str] = {}
        if self._pool is None:
            return {"status": "down", "error": "db pool is not initialized"}

        try:
            await asyncio.wait_for(self._pool.fetchval("SELECT 1"), timeout=HEALTH_PING_TIMEOUT_S)
        except (asyncio.TimeoutError, OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            logger.error("db_health_failed error=%s", exc)
            stats["status"] = "down"
            stats["error"] = f"db down: {exc}"
            return stats

        size = self._pool.get_size()
        idle = self._pool.get_idle_size()
        max_size = self._pool.get_max_size()

        stats["status"] = "up"
        stats["message"] = "It's healthy"
        stats["open_connections"] = str(size)
        stats["in_use"] = str(size - idle)
        stats["idle"] = str(idle)
        stats["min_size"] = str(self._pool.get_min_size())
        stats["max_size"] = str(max_size)
        stats["wait_count"] = str(self.wait_count)
        stats["wait_duration"] = f"{self.wait_duration_s:.3f}s"

        # Later checks win: the most specific message is reported.
        if size > max_size * HEAVY_LOAD_RATIO:
            stats["message"] = "The database is experiencing heavy load."
        if self.wait_count > HIGH_WAIT_COUNT:
            stats["message"] = "The database has a high number of wait events, indicating potential bottlenecks."
        if size >= max_size and idle == 0:
            stats["message"] = "The database pool is exhausted; requests are waiting for connections."
        return stats
