"""
Database engine and sessions.

The job-scoped critical sections rely on ``SELECT ... FOR UPDATE``; on
PostgreSQL every connection gets a ``lock_timeout`` so a stuck holder turns
into an error instead of an endless wait. SQLite (tests, local tinkering)
ignores row locks and gets a busy timeout instead.
"""
from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.core.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Engine for ``url`` with pool and lock settings suited to its backend."""
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo, connect_args={"timeout": 5})

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args={
            "server_settings": {
                "application_name": "sparkbid-backend",
                "lock_timeout": str(settings.db_lock_timeout_ms),
            }
        },
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services keep using rows after commit to build events and responses
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine: AsyncEngine = build_engine(settings.async_database_url, echo=settings.db_echo)
async_session_maker = build_session_maker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session.

    Lifecycle services commit their own critical sections; this only commits
    what plain reads and simple writes left pending.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables. Development bootstrap; deployments run Alembic."""
    from src.core.models import Base
    import src.models  # noqa: F401  registers every mapped table

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
