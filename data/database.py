from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from data.schema import Base

log = logging.getLogger(__name__)


class Database:
    """Pooled async engine for the relational store and its liveness flag.

    The flag is set by every successful session and cleared by every failed
    one. While it is cleared the store is skipped; after
    ``retry_interval_seconds`` one probe through :meth:`init` decides whether
    it comes back.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        retry_interval_seconds: float = 30.0,
        pool_size: int = 10,
        echo: bool = False,
    ) -> None:
        engine_kwargs = {}
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=pool_size, pool_pre_ping=True)
        self.engine = create_async_engine(url, echo=echo, **engine_kwargs)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self._timeout = timeout_seconds
        self._retry_interval = retry_interval_seconds
        self._available = False
        self._failed_at: float | None = None

    @property
    def available(self) -> bool:
        return self._available

    def mark_available(self) -> None:
        if not self._available:
            log.info("Relational store is available")
        self._available = True
        self._failed_at = None

    def mark_unavailable(self, reason: object = None) -> None:
        if self._available:
            log.warning("Relational store marked unavailable: %s", reason)
        self._available = False
        self._failed_at = time.monotonic()

    async def init(self) -> bool:
        """Test the connection and create all tables (idempotent).

        Guarded by the connect timeout. Never raises: returns whether the
        relational store is usable.
        """
        try:
            await asyncio.wait_for(self._create_tables(), timeout=self._timeout)
        except Exception as exc:
            log.warning("Relational store unavailable, falling back to file storage: %s", exc)
            self.mark_unavailable(exc)
            return False
        self.mark_available()
        return True

    async def _create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
            if conn.dialect.name == "sqlite":
                # WAL lets the reconciler read while the API writes
                await conn.execute(text("PRAGMA journal_mode=WAL"))

    async def ensure_available(self) -> bool:
        """Whether the next call should try the relational store."""
        if self._available:
            return True
        if (
            self._failed_at is not None
            and time.monotonic() - self._failed_at < self._retry_interval
        ):
            return False
        return await self.init()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as exc:
                self.mark_unavailable(exc)
                await session.rollback()
                raise
        self.mark_available()

    async def close(self) -> None:
        await self.engine.dispose()
