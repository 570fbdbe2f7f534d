"""SQLite backend for local development and the test suite.

Provides an async SQLAlchemy engine backed by ``aiosqlite`` that uses the
same ORM table definitions as the production PostgreSQL backend, so the
gateway can run without any external database.

Key differences from the PostgreSQL backend:

* Writers are serialised by SQLite's database lock; a busy connection waits
  up to ``busy_timeout`` seconds instead of failing immediately.
* Tables are created automatically on startup by the gateway lifespan.
* ``ON CONFLICT`` upserts use SQLite's native syntax (3.24+).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

logger = logging.getLogger(__name__)


def get_local_engine(
    db_path: Path | str = ".storefront/metering.db",
    busy_timeout: float = 15.0,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine backed by SQLite via aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Parent directories are
        created automatically.  ``:memory:`` gives an ephemeral database,
        but every pooled connection then sees its own copy, so concurrent
        tests must use a file.
    busy_timeout:
        Seconds a connection waits for the write lock before raising
        ``database is locked``.

    Returns
    -------
    AsyncEngine
        A configured async engine ready for session creation.
    """
    db_path = Path(db_path) if db_path != ":memory:" else db_path

    if isinstance(db_path, Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{db_path}"
    else:
        url = "sqlite+aiosqlite:///:memory:"

    engine = create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )

    # Enable WAL mode and foreign keys for every connection.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    logger.info("Created SQLite engine: %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create all ORM tables.  Idempotent, safe to call on every startup."""
    from metering_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("SQLite tables created/verified")


@asynccontextmanager
async def get_local_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Unit of work against a local engine; see :func:`database.get_session`."""
    from metering_core.state.database import get_session

    async with get_session(engine) as session:
        yield session
