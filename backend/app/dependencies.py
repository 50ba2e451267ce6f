"""FastAPI dependency injection functions."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from db.database import AsyncSessionLocal
from triggers.dispatcher import TriggerDispatcher, get_trigger_dispatcher
from workflow.recorder import RunRecorder

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise
        finally:
            await session.close()


def get_dispatcher() -> TriggerDispatcher:
    """Trigger dispatcher shared by the manual and webhook endpoints."""
    return get_trigger_dispatcher()


def get_run_recorder() -> RunRecorder:
    """Recorder of the dispatcher's engine (run history and logs)."""
    return get_trigger_dispatcher().engine.recorder
