"""Worker-safe database sessions for Celery tasks.

Creates a fresh async engine per call so connections are never shared
across the event loops that each Celery task invocation spins up.
"""

from contextlib import asynccontextmanager

from db.database import create_db_engine, create_session_factory


@asynccontextmanager
async def worker_session_factory():
    """Provide a session factory bound to a short-lived engine.

    Usage:
        async with worker_session_factory() as session_factory:
            async with session_factory() as session:
                result = await session.execute(...)
    """
    engine = create_db_engine()
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
