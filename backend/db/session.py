"""SQLAlchemy async engine and session factory."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_settings

settings = get_settings()


def create_db_engine(
    url: str = None,
    pool_size: int = None,
    max_overflow: int = None,
    pool_recycle: int = 1800,
) -> AsyncEngine:
    """Create and configure an async SQLAlchemy engine.

    SQLite (tests, local development) gets the dialect's default pool;
    PostgreSQL gets a sized, pre-pinged pool.
    """
    url = url or settings.DATABASE_URL
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO)
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=pool_size or settings.DB_POOL_SIZE,
            max_overflow=max_overflow if max_overflow is not None else settings.DB_MAX_OVERFLOW,
            pool_recycle=pool_recycle,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Global engine and session factory instances
engine = create_db_engine()
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind: AsyncEngine = None):
    """Create all tables from the registered models."""
    from db.base import Base
    import db.models  # noqa: F401  triggers model registration

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connection."""
    await engine.dispose()
