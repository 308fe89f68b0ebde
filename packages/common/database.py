"""
Database session management for SQLAlchemy with async support

Supports both FastAPI (explicit init) and standalone scripts/workers (lazy init).

Background categorization jobs outlive the HTTP request that started them, so
repositories open their own sessions through `sessionmanager.session()`
instead of borrowing the request-scoped one.
"""
import os
import threading
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


class DatabaseSessionManager:
    """Manage database connections and sessions"""

    def __init__(self):
        self._engine = None
        self._sessionmaker = None
        self._init_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        """Check if session manager is initialized"""
        return self._sessionmaker is not None

    def init(self, database_url: str, **engine_kwargs):
        """Initialize database engine and session maker"""
        if self.initialized:
            return

        with self._init_lock:  # Double-checked locking
            if self.initialized:
                return

            # Convert postgresql:// to postgresql+asyncpg://
            if database_url.startswith("postgresql://"):
                database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

            default_kwargs = {
                "echo": engine_kwargs.get("echo", False),
                "pool_size": 20,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            }
            default_kwargs.update(engine_kwargs)

            self._engine = create_async_engine(database_url, **default_kwargs)

            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autocommit=False,
                autoflush=False,
            )

    async def close(self):
        """Close database connections"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for database sessions"""
        if not self.initialized:
            _ensure_initialized()

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


# Global session manager instance
sessionmanager = DatabaseSessionManager()


# ---- Lazy auto-init for standalone scripts and Celery workers ---------------------------

def _ensure_initialized():
    """
    Ensure database session manager is initialized.

    This allows scripts to work without explicit init() call by reading
    DATABASE_URL from environment. Can be disabled in production with
    DB_LAZY_INIT=0 for stricter control.
    """
    if sessionmanager.initialized:
        return

    if os.getenv("DB_LAZY_INIT", "1") not in {"1", "true", "True"}:
        raise RuntimeError(
            "Database lazy init disabled and session manager not initialized. "
            "Call sessionmanager.init(DATABASE_URL) explicitly in startup."
        )

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError(
            "DATABASE_URL environment variable not set for lazy database initialization"
        )

    echo = os.getenv("SQL_ECHO", "0") in {"1", "true", "True"}
    sessionmanager.init(database_url, echo=echo)

