from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Database:
    """
    Store-client handle: one async engine plus its session factory.

    Constructed once at process start and passed explicitly to every
    data-access function; ``dispose`` closes the pool at shutdown.
    Extra keyword arguments go straight to ``create_async_engine`` so
    tests can swap in an in-memory SQLite engine with a ``StaticPool``.
    """

    def __init__(self, url: str, *, echo: bool = False, **engine_kwargs) -> None:
        engine_kwargs.setdefault("pool_pre_ping", True)
        self.url = url
        self.engine = create_async_engine(url, echo=echo, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on failure."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        # Models must be registered on Base.metadata before create_all runs.
        import postboard.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        import postboard.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
