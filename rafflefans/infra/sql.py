"""
Async SQL plumbing shared by every store.

One engine per process, one sessionmaker, and one DB gate: a semaphore sized
to the connection pool, so a burst of webhook deliveries queues in the
event loop instead of timing out inside the pool.
"""
import os
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

Gated = Callable[[], AsyncContextManager[None]]

_DRIVERS = {
    "sqlite://": "sqlite+aiosqlite://",
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def _normalize_async_url(url: str) -> str:
    for prefix, async_prefix in _DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def _install_sqlite_pragmas(sync_engine: Engine) -> None:
    # WAL lets readers run while a webhook holds the write lock;
    # busy_timeout makes contended writers wait instead of failing
    @event.listens_for(sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA busy_timeout=5000;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def make_gate(limit: int) -> Gated:
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return gated


def make_async_engine(
    database_url: str, gate_limit: Optional[int] = None,
) -> tuple[AsyncEngine, async_sessionmaker, Gated]:
    db_url = _normalize_async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)

    pool_size = None
    if db_url.startswith("postgresql+asyncpg://"):
        pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        kw.update(
            pool_size=pool_size,
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )

    engine = create_async_engine(db_url, **kw)
    if db_url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine.sync_engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    if gate_limit is None:
        gate_limit = int(os.getenv("DB_GATE_LIMIT", pool_size or 10))
    return engine, SessionAsync, make_gate(gate_limit)


class SqlStore:
    """Base for stores backed by the SQL database.

    Every database round trip goes through the gate first.
    """

    def __init__(
        self, *, sessions: async_sessionmaker, gated: Gated
    ) -> None:
        self.sessions = sessions
        self.gated = gated

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        async with self.gated():
            async with self.sessions() as db:
                yield db

    @asynccontextmanager
    async def write(self) -> AsyncIterator[AsyncSession]:
        """One transaction; commits on exit, rolls back on error."""
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    yield db
