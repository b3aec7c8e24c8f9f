"""
Database model and async database manager backing the SQL key-value store.

The service only needs an expiring key-value map, so the schema is a single
`kv_entries` table. Only SQLite (aiosqlite) and PostgreSQL (asyncpg) are
supported. The engine is owned by a `DatabaseManager` instance rather than
created at import time, so tests and applications can point several managers
at different databases.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import Column, AsyncAdaptedQueuePool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import String, Text, Float

from passkeygate.core.config import settings

logger = logging.getLogger(__name__)

# --- Base Model ---
Base = declarative_base()


class KVEntry(Base):
    __tablename__ = 'kv_entries'

    key = Column(String(512), primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(Float, nullable=True, index=True)  # epoch seconds, NULL = never

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self):
        return f"<KVEntry {self.key}>"


def _normalize_uri(db_uri: str) -> str:
    if 'sqlite' in db_uri and 'aiosqlite' not in db_uri:
        db_uri = db_uri.replace('sqlite:///', 'sqlite+aiosqlite:///')
    return db_uri


class DatabaseManager:
    """
    Manages the async engine and sessions for the SQL key-value store.
    Handles auto-creation of the table on first use.
    """

    def __init__(self, db_uri: Optional[str] = None):
        db_uri = _normalize_uri(db_uri or settings.DEFAULT_DATABASE_URI)
        self.engine: AsyncEngine = create_async_engine(
            db_uri,
            connect_args={'check_same_thread': False} if 'sqlite' in db_uri else {},
            poolclass=AsyncAdaptedQueuePool,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            pool_recycle=settings.DATABASE_POOL_RECYCLE,
            pool_pre_ping=settings.DATABASE_POOL_PRE_PING,
        )
        self.AsyncSessionLocal = async_sessionmaker(bind=self.engine, class_=AsyncSession, expire_on_commit=False)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize_database(self):
        """
        Creates the key-value table if it doesn't exist.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        logger.debug("Key-value table ready.")

    @asynccontextmanager
    async def get_context_manager_db(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provides an async database session as a context manager.
        Ensures the table exists if AUTO_CREATE_DATABASE is enabled.
        """
        if settings.AUTO_CREATE_DATABASE and not self._initialized:
            async with self._init_lock:
                if not self._initialized:
                    await self.initialize_database()
        async with self.AsyncSessionLocal() as session:
            yield session

    def get_db(self):
        """
        Returns an async context manager for a database session.
        Usage: async with db_manager.get_db() as db:
        """
        return self.get_context_manager_db()

    async def dispose(self):
        await self.engine.dispose()
