"""Connection handling for the phase engine store.

SQLite through aiosqlite is the default backend (DATABASE_PATH). Setting
DATABASE_URL to a postgresql:// URL switches to an asyncpg pool; connections
from that pool are wrapped so the query helpers in phase_records.py can keep
using the aiosqlite call shape (``await db.execute(sql, params)`` returning a
cursor with ``fetchone`` / ``fetchall`` / ``rowcount``).
"""

import asyncio
import itertools
import logging
import re
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite
import asyncpg
from alembic import command
from alembic.config import Config

from phase_engine.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

PG_POOL_MIN = 2
PG_POOL_MAX = 10


def _is_postgres() -> bool:
    return settings.database_url.startswith("postgresql://")


def _sqlalchemy_url() -> str:
    if _is_postgres():
        return settings.database_url
    return f"sqlite:///{settings.database_path}"


async def _connect_sqlite() -> aiosqlite.Connection:
    db = await aiosqlite.connect(settings.database_path)
    db.row_factory = aiosqlite.Row
    return db


# ── PostgreSQL ────────────────────────────────────────────────────────

_pg_pool: Optional[asyncpg.Pool] = None

# ? outside of single-quoted literals
_PLACEHOLDER_RE = re.compile(r"'[^']*'|\?")


def to_pg_placeholders(sql: str) -> str:
    """Rewrite sqlite-style ? parameters as asyncpg's $1, $2, ..."""
    numbers = itertools.count(1)
    return _PLACEHOLDER_RE.sub(
        lambda m: m.group(0) if m.group(0) != "?" else f"${next(numbers)}",
        sql,
    )


def _status_rowcount(status: str) -> int:
    # asyncpg reports e.g. "INSERT 0 1" or "UPDATE 2"
    tail = (status or "").rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else -1


class PgCursor:
    """Result of one statement, already fully fetched."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, rowcount: int = -1):
        self._rows = rows or []
        self.rowcount = rowcount

    async def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    async def fetchall(self):
        rows, self._rows = self._rows, []
        return rows


class PgConnection:
    """aiosqlite-shaped facade over one pooled asyncpg connection.

    asyncpg rejects overlapping statements on a connection and the services
    fan out reads with asyncio.gather, so statements run one at a time.
    """

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn
        self._lock = asyncio.Lock()

    async def execute(self, sql: str, params=None) -> PgCursor:
        query = to_pg_placeholders(sql)
        args = tuple(params or ())
        returns_rows = query.lstrip().upper().startswith("SELECT") or "RETURNING" in query.upper()
        async with self._lock:
            if returns_rows:
                records = await self._conn.fetch(query, *args)
                return PgCursor([dict(r) for r in records], len(records))
            status = await self._conn.execute(query, *args)
        return PgCursor(rowcount=_status_rowcount(status))

    async def commit(self):
        # Statements outside an explicit transaction autocommit
        pass

    async def close(self):
        # The pool owns the connection; get_db releases it
        pass


async def _get_pg_pool() -> asyncpg.Pool:
    global _pg_pool
    if _pg_pool is None:
        _pg_pool = await asyncpg.create_pool(settings.database_url, min_size=PG_POOL_MIN, max_size=PG_POOL_MAX)
    return _pg_pool


# ── Public API ────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator:
    """FastAPI dependency: one connection per request, closed or released afterwards."""
    if _is_postgres():
        pool = await _get_pg_pool()
        conn = await pool.acquire()
        try:
            yield PgConnection(conn)
        finally:
            await pool.release(conn)
        return

    db = await _connect_sqlite()
    try:
        yield db
    finally:
        await db.close()


def _run_alembic_upgrade():
    """Bring the schema to head. Synchronous; runs once at startup."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", _sqlalchemy_url())
    command.upgrade(alembic_cfg, "head")


async def init_db():
    if _is_postgres():
        logger.info("Using PostgreSQL backend: %s", settings.database_url.split("@")[-1])
    else:
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using SQLite backend: %s", settings.database_path)
    _run_alembic_upgrade()


async def close_db():
    global _pg_pool
    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None
