"""Celery task to poll schedules and trigger workflow runs.

Runs every minute via Celery Beat. Enabled schedules whose next_run_at is
not in the future are fired through the TriggerDispatcher (a workflow that
is still running is skipped), then advanced to their next occurrence.
The tick waits for the runs it started before its event loop closes.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.schedule_poller.poll_schedules",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def poll_schedules(self):
    """Check for due schedules and start their workflows."""
    logger.info("[schedule-poller] Polling schedules for due runs...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_poll_with_worker_engine())
        logger.info(f"[schedule-poller] Done: {result}")
        return result
    except Exception as exc:
        logger.error(f"[schedule-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()


async def _poll_with_worker_engine() -> dict:
    from app.config import get_settings
    from db.worker_session import worker_session_factory
    from services.runtime import build_run_services
    from triggers.dispatcher import TriggerDispatcher
    from workflow.context import EngineSettings
    from workflow.engine import WorkflowEngine
    from workflow.recorder import SqlRunRecorder
    from workflow.run_lock import get_run_lock

    async with worker_session_factory() as session_factory:
        engine = WorkflowEngine(
            recorder=SqlRunRecorder(session_factory),
            services=build_run_services(session_factory),
            settings=EngineSettings.from_settings(get_settings()),
            run_lock=get_run_lock(),
        )
        dispatcher = TriggerDispatcher(engine, session_factory)
        return await poll_and_dispatch(dispatcher, session_factory)


async def poll_and_dispatch(
    dispatcher,
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
    wait: bool = True,
) -> dict:
    """Fire every due schedule once and advance it.

    Returns:
        Counts of started, skipped and failed firings plus the started run ids
    """
    from core.utils import utc_now
    from services.workflow_service import WorkflowService

    now = now or utc_now()
    started: list[str] = []
    skipped = 0
    errors = 0

    async with session_factory() as session:
        svc = WorkflowService(session)
        due_schedules = await svc.list_due_schedules(now)
        if not due_schedules:
            logger.debug("[schedule-poller] No due schedules found.")

        for schedule in due_schedules:
            result = await dispatcher.dispatch_schedule(schedule.workflow_id, schedule_id=schedule.id)
            if result.run_id:
                started.append(result.run_id)
                status = "started"
            elif result.skipped:
                skipped += 1
                status = "skipped"
            else:
                errors += 1
                status = "failed"
                logger.warning(
                    f"[schedule-poller] Schedule {schedule.id} "
                    f"(workflow {schedule.workflow_id}) not started: {result.error}"
                )

            await svc.mark_fired(schedule, now, status)
            await session.commit()
            logger.info(
                f"[schedule-poller] Workflow {schedule.workflow_id}: {status}, "
                f"next run {schedule.next_run_at}"
            )

    if wait:
        for run_id in started:
            await dispatcher.engine.wait_for_run(run_id)

    return {"started": len(started), "skipped": skipped, "errors": errors, "run_ids": started}
