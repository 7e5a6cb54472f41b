"""meridian_rag.storage.database

Async SQLAlchemy engine and session management.

Classes
-------
Database
    Owns the async engine and session factory for one database URL.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from meridian_rag.storage.models import Base

logger = logging.getLogger(__name__)


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"))


class Database:
    """Async engine plus session factory.

    Parameters
    ----------
    url : str
        SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./meridian.db`` or
        ``postgresql+asyncpg://...``.
    echo : bool, optional
        Log emitted SQL.

    Notes
    -----
    In-memory SQLite URLs share a single connection so every session sees the
    same database.
    """

    def __init__(self, url: str, *, echo: bool = False):
        self.url = url
        kwargs: dict[str, Any] = {"echo": echo}
        if _is_sqlite_memory(url):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        self.engine = create_async_engine(url, **kwargs)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "Database":
        return cls(str(config.get("url", "sqlite+aiosqlite:///./meridian.db")), echo=bool(config.get("echo", False)))

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def create_all(self) -> None:
        """Create missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug("Ensured schema on %s", self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self.engine.dispose()


__all__ = ["Database"]
