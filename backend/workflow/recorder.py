"""Execution run recorder.

Persists the lifecycle of an ExecutionRun: created `running`, one log entry
appended per executed step, finalized exactly once as `completed` or
`failed`. A finalized run is immutable; any further write raises
RunFinalizedError.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.constants import ABANDONED_RUN_ERROR, RunStatus
from core.exceptions import ConflictError, NotFoundError, RunFinalizedError
from core.utils import ensure_utc, utc_now
from workflow.models import ExecutionRunRecord, StepLogEntry

logger = structlog.get_logger(__name__)


class RunRecorder(ABC):
    """Storage of execution runs and their step logs."""

    @abstractmethod
    async def create_run(
        self,
        workflow_id: str,
        trigger_source: str,
        total_steps: int,
        started_at: datetime,
    ) -> str:
        """Create a `running` run and return its id.

        Raises:
            ConflictError: If the workflow already has a `running` run
        """
        ...

    @abstractmethod
    async def append_entry(self, run_id: str, entry: StepLogEntry, steps_completed: int) -> None:
        ...

    @abstractmethod
    async def finalize(
        self,
        run_id: str,
        status: RunStatus,
        completed_at: datetime,
        duration_ms: int,
        result_data: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def get_run(self, run_id: str) -> ExecutionRunRecord:
        """
        Raises:
            NotFoundError: If the run does not exist
        """
        ...

    @abstractmethod
    async def list_runs(self, workflow_id: str, limit: int = 50) -> list[ExecutionRunRecord]:
        """Runs of a workflow, newest first."""
        ...


# ─── In-Memory Recorder ───────────────────────────────────────

class InMemoryRunRecorder(RunRecorder):
    """Keeps runs in a dict. Used by tests and one-off executions."""

    def __init__(self):
        self._runs: dict[str, ExecutionRunRecord] = {}

    async def create_run(self, workflow_id, trigger_source, total_steps, started_at) -> str:
        if any(r.workflow_id == workflow_id and not r.is_finalized for r in self._runs.values()):
            raise ConflictError(f"Workflow {workflow_id} is already running")
        run_id = str(uuid4())
        self._runs[run_id] = ExecutionRunRecord(
            id=run_id,
            workflow_id=workflow_id,
            status=RunStatus.RUNNING,
            trigger_source=trigger_source,
            started_at=started_at,
            total_steps=total_steps,
        )
        return run_id

    def _open_run(self, run_id: str) -> ExecutionRunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Execution run {run_id} not found")
        if run.is_finalized:
            raise RunFinalizedError(run_id)
        return run

    async def append_entry(self, run_id, entry, steps_completed) -> None:
        run = self._open_run(run_id)
        run.execution_log.append(entry)
        run.steps_completed = steps_completed

    async def finalize(
        self, run_id, status, completed_at, duration_ms, result_data=None, error_message=None
    ) -> None:
        run = self._open_run(run_id)
        run.status = status
        run.completed_at = completed_at
        run.execution_duration = duration_ms
        run.result_data = result_data
        run.error_message = error_message

    async def get_run(self, run_id: str) -> ExecutionRunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Execution run {run_id} not found")
        return run.model_copy(deep=True)

    async def list_runs(self, workflow_id: str, limit: int = 50) -> list[ExecutionRunRecord]:
        runs = [r for r in self._runs.values() if r.workflow_id == workflow_id]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs[:limit]]


# ─── SQLAlchemy Recorder ──────────────────────────────────────

def _to_record(row) -> ExecutionRunRecord:
    record = ExecutionRunRecord.model_validate(row)
    record.started_at = ensure_utc(record.started_at)
    if record.completed_at is not None:
        record.completed_at = ensure_utc(record.completed_at)
    return record


class SqlRunRecorder(RunRecorder):
    """Writes runs to the `execution_runs` table.

    Each call uses its own short session so a run's progress is visible to
    pollers while it executes. The partial unique index on
    `execution_runs(workflow_id) WHERE status = 'running'` makes the
    one-running-run rule hold for every process sharing the database.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create_run(self, workflow_id, trigger_source, total_steps, started_at) -> str:
        from db.models import ExecutionRun

        async with self._session_factory() as session:
            run = ExecutionRun(
                workflow_id=workflow_id,
                status=RunStatus.RUNNING.value,
                trigger_source=trigger_source,
                started_at=started_at,
                total_steps=total_steps,
                steps_completed=0,
                execution_log=[],
            )
            session.add(run)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if await self._has_running_run(session, workflow_id):
                    logger.info("Run rejected, workflow already running", workflow_id=workflow_id)
                    raise ConflictError(f"Workflow {workflow_id} is already running") from None
                raise
            return run.id

    async def _has_running_run(self, session, workflow_id: str) -> bool:
        from db.models import ExecutionRun

        result = await session.execute(
            select(ExecutionRun.id)
            .where(ExecutionRun.workflow_id == workflow_id)
            .where(ExecutionRun.status == RunStatus.RUNNING.value)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def fail_abandoned_runs(self, started_before: datetime) -> int:
        """Finalize as failed every run still `running` that started before the cutoff.

        Such a run belongs to a process that stopped mid-run; left alone it
        would block its workflow from ever running again.
        """
        from db.models import ExecutionRun

        async with self._session_factory() as session:
            result = await session.execute(
                select(ExecutionRun)
                .where(ExecutionRun.status == RunStatus.RUNNING.value)
                .where(ExecutionRun.started_at < started_before)
            )
            runs = result.scalars().all()
            now = utc_now()
            for run in runs:
                run.status = RunStatus.FAILED.value
                run.completed_at = now
                run.execution_duration = int((now - ensure_utc(run.started_at)).total_seconds() * 1000)
                run.error_message = ABANDONED_RUN_ERROR
            await session.commit()
        if runs:
            logger.warning("Abandoned runs failed", count=len(runs))
        return len(runs)

    async def _load_open(self, session, run_id: str):
        from db.models import ExecutionRun

        run = await session.get(ExecutionRun, run_id)
        if run is None:
            raise NotFoundError(f"Execution run {run_id} not found")
        if RunStatus(run.status).is_terminal:
            raise RunFinalizedError(run_id)
        return run

    async def append_entry(self, run_id, entry, steps_completed) -> None:
        async with self._session_factory() as session:
            run = await self._load_open(session, run_id)
            # JSON columns only detect reassignment
            log = copy.deepcopy(run.execution_log or [])
            log.append(entry.model_dump(mode="json"))
            run.execution_log = log
            run.steps_completed = steps_completed
            await session.commit()

    async def finalize(
        self, run_id, status, completed_at, duration_ms, result_data=None, error_message=None
    ) -> None:
        from db.models import Workflow

        async with self._session_factory() as session:
            run = await self._load_open(session, run_id)
            run.status = status.value
            run.completed_at = completed_at
            run.execution_duration = duration_ms
            run.result_data = result_data
            run.error_message = error_message

            workflow = await session.get(Workflow, run.workflow_id)
            if workflow is not None:
                workflow.last_run_at = completed_at
                workflow.last_run_status = status.value
                if status == RunStatus.COMPLETED:
                    workflow.last_successful_run_at = run.started_at
            await session.commit()
        logger.debug("Run finalized", run_id=run_id, status=status.value)

    async def get_run(self, run_id: str) -> ExecutionRunRecord:
        from db.models import ExecutionRun

        async with self._session_factory() as session:
            run = await session.get(ExecutionRun, run_id)
            if run is None:
                raise NotFoundError(f"Execution run {run_id} not found")
            return _to_record(run)

    async def list_runs(self, workflow_id: str, limit: int = 50) -> list[ExecutionRunRecord]:
        from db.models import ExecutionRun

        async with self._session_factory() as session:
            result = await session.execute(
                select(ExecutionRun)
                .where(ExecutionRun.workflow_id == workflow_id)
                .order_by(ExecutionRun.started_at.desc())
                .limit(limit)
            )
            return [_to_record(row) for row in result.scalars().all()]
