"""
Fragment database - one SQLite file per storage directory.

Batch linking saves many fragments concurrently, so schema creation is
guarded by a lock and every session gets its own short-lived connection.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from .models import Base

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=30000",
    "PRAGMA foreign_keys=ON",
)


def _apply_pragmas(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions."""

    def __init__(self, storage_path: str = "./storage", db_name: str = "markmind.db"):
        directory = Path(storage_path)
        directory.mkdir(parents=True, exist_ok=True)

        self.db_path = directory / db_name
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker] = None
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    def _connect(self) -> AsyncEngine:
        # Created lazily so the engine binds to the running event loop
        if self._engine is None:
            self._engine = create_async_engine(
                self.url,
                connect_args={"check_same_thread": False},
                poolclass=NullPool,
            )
            event.listen(self._engine.sync_engine, "connect", _apply_pragmas)
            self._sessions = async_sessionmaker(
                bind=self._engine, class_=AsyncSession, expire_on_commit=False
            )
        return self._engine

    async def ensure_schema(self) -> None:
        """Create the fragments table on first use."""
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            async with self._connect().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_ready = True
            logger.info(f"Fragment database ready at {self.db_path}")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        await self.ensure_schema()
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        self._schema_ready = False
