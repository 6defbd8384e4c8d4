"""FastAPI dependency injection functions."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.session import AsyncSessionLocal
from workflow.engine import WorkflowEngine, create_engine_for


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for the API process. Tests override this."""
    return AsyncSessionLocal


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is rolled back on error.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> WorkflowEngine:
    """Workflow engine bound to the request's session factory."""
    return create_engine_for(session_factory)
