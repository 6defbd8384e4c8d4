"""Worker-safe database sessions for Celery tasks.

Creates a fresh async engine per task invocation to avoid the 'Future
attached to a different loop' error when asyncpg connections are shared
across the event loops each Celery task creates.
"""

from contextlib import asynccontextmanager

from db.session import create_db_engine, create_session_factory


@asynccontextmanager
async def worker_session_factory():
    """Provide a session factory bound to a per-task engine.

    Usage:
        async with worker_session_factory() as session_factory:
            store = ExecutionStore(session_factory)
    """
    engine = create_db_engine(pool_size=5, max_overflow=5, pool_recycle=300)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
