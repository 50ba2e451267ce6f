"""Workflow Execution Engine — sequential, fail-fast workflow runner.

Takes a persisted workflow definition and runs its steps in order:

- Seeds a fresh variable store from the trigger payload
- Validates each step's config right before it runs
- Delegates execution to the step executor registered for the step type
- Appends one log entry per executed step (for_each nests its children)
- Stops at the first failing step and finalizes the run as failed
- Finalizes completed runs with a JSON-safe snapshot of the store

Run state machine:

    pending ──start_run──▶ running ──all steps ok──▶ completed
                              │
                              └──first failure / timeout──▶ failed

At most one run per workflow executes at a time; a trigger that arrives
while a run holds the workflow's lock raises ConflictError and creates
nothing. The in-process lock is the fast path; the recorder enforces the
same rule for every process sharing the database.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import structlog

from core.constants import INTERNAL_ENGINE_ERROR, RunStatus
from core.exceptions import ConflictError
from core.logging_config import bind_run_context, clear_run_context
from core.utils import safe_serialize, utc_now
from tasks.base_task import TaskResult
from tasks.registry import TaskRegistry, get_task_registry
from workflow.context import ChildRunOutcome, EngineSettings, RunServices, StepContext
from workflow.models import ExecutionRunRecord, StepDefinition, StepLogEntry, WorkflowDefinition
from workflow.recorder import RunRecorder
from workflow.run_lock import RunLock, get_run_lock
from workflow.validation import validate_for_run
from workflow.variables import VariableStore

logger = structlog.get_logger(__name__)


# ─── Run State ────────────────────────────────────────────────

@dataclass
class _RunState:
    """Bookkeeping of one executing run."""
    run_id: str
    definition: WorkflowDefinition
    trigger_source: str
    now: datetime
    store: VariableStore
    started_monotonic: float = field(default_factory=time.monotonic)
    current_index: int = 0
    current_step: Optional[StepDefinition] = None
    current_step_started: float = 0.0


def build_step_entry(
    step: StepDefinition,
    position: int,
    result: TaskResult,
    item_index: Optional[int] = None,
) -> StepLogEntry:
    return StepLogEntry(
        step=position,
        step_id=step.id,
        name=step.display_name,
        type=step.type,
        duration_ms=int(round(result.duration_ms)),
        success=result.success,
        output=safe_serialize(result.output),
        error=result.error,
        item_index=item_index,
        children=result.children,
    )


def run_error_message(position: int, step: StepDefinition, error: Optional[str]) -> str:
    return f"Step {position} ({step.display_name}) failed: {error or 'unknown error'}"


# ─── Workflow Engine ───────────────────────────────────────────

class WorkflowEngine:
    """Main workflow execution engine.

    Collaborators (recorder, strategy store, data source, adapters,
    notifier) are injected, so the same engine runs against SQLAlchemy in
    the app and against in-memory fakes in tests.
    """

    def __init__(
        self,
        recorder: RunRecorder,
        services: RunServices,
        settings: Optional[EngineSettings] = None,
        task_registry: Optional[TaskRegistry] = None,
        run_lock: Optional[RunLock] = None,
    ):
        self._recorder = recorder
        self._services = services
        self._settings = settings or EngineSettings()
        self._task_registry = task_registry or get_task_registry()
        self._run_lock = run_lock or RunLock()
        self._running: dict[str, asyncio.Task] = {}

    @property
    def recorder(self) -> RunRecorder:
        return self._recorder

    @property
    def run_lock(self) -> RunLock:
        return self._run_lock

    # ─── Public API ───────────────────────────────────────────

    async def start_run(
        self,
        definition: WorkflowDefinition,
        trigger_source: str,
        initial_context: Optional[dict[str, Any]] = None,
        wait: bool = False,
    ) -> str:
        """Create a run and execute it.

        Returns once the run row exists; the steps run in a background task
        unless `wait` is set.

        Raises:
            ValidationError: If the workflow cannot run (no steps, bad trigger)
            ConflictError: If a run of this workflow is already in progress
        """
        validate_for_run(definition)

        placeholder = f"pending-{uuid4()}"
        if not self._run_lock.try_acquire(definition.id, placeholder):
            raise ConflictError(f"Workflow {definition.id} is already running")

        started_at = utc_now()
        try:
            run_id = await self._recorder.create_run(
                workflow_id=definition.id,
                trigger_source=trigger_source,
                total_steps=len(definition.steps),
                started_at=started_at,
            )
        except BaseException:
            self._run_lock.release(definition.id, placeholder)
            raise
        self._run_lock.transfer(definition.id, run_id)

        logger.info(
            "Run started",
            run_id=run_id,
            workflow_id=definition.id,
            trigger_source=trigger_source,
            total_steps=len(definition.steps),
        )
        coroutine = self._execute(definition, run_id, trigger_source, initial_context or {}, started_at)
        if wait:
            await coroutine
        else:
            task = asyncio.create_task(coroutine, name=f"workflow-run-{run_id}")
            self._running[run_id] = task
            task.add_done_callback(lambda _t: self._running.pop(run_id, None))
        return run_id

    async def execute(
        self,
        definition: WorkflowDefinition,
        trigger_source: str = "manual",
        initial_context: Optional[dict[str, Any]] = None,
    ) -> ExecutionRunRecord:
        """Run a workflow to completion and return the finalized run."""
        run_id = await self.start_run(definition, trigger_source, initial_context, wait=True)
        return await self._recorder.get_run(run_id)

    async def record_failed_run(
        self,
        workflow_id: str,
        trigger_source: str,
        error_message: str = INTERNAL_ENGINE_ERROR,
    ) -> str:
        """Record a run that fails before its first step, e.g. a stored
        definition that no longer loads.

        Raises:
            ConflictError: If a run of this workflow is already in progress
        """
        placeholder = f"pending-{uuid4()}"
        if not self._run_lock.try_acquire(workflow_id, placeholder):
            raise ConflictError(f"Workflow {workflow_id} is already running")
        try:
            started_at = utc_now()
            run_id = await self._recorder.create_run(
                workflow_id=workflow_id,
                trigger_source=trigger_source,
                total_steps=0,
                started_at=started_at,
            )
            completed_at = utc_now()
            await self._recorder.finalize(
                run_id,
                RunStatus.FAILED,
                completed_at=completed_at,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                error_message=error_message,
            )
        finally:
            self._run_lock.release(workflow_id, placeholder)
        logger.warning(
            "Run failed before start",
            run_id=run_id,
            workflow_id=workflow_id,
            trigger_source=trigger_source,
            error=error_message,
        )
        return run_id

    async def wait_for_run(self, run_id: str) -> ExecutionRunRecord:
        task = self._running.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return await self._recorder.get_run(run_id)

    def get_running_runs(self) -> list[str]:
        return list(self._running)

    async def shutdown(self) -> None:
        """Cancel in-flight runs; each is finalized as failed."""
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ─── Run Execution ────────────────────────────────────────

    def _seed_store(
        self,
        definition: WorkflowDefinition,
        run_id: str,
        trigger_source: str,
        initial_context: dict[str, Any],
    ) -> VariableStore:
        seed: dict[str, Any] = {"trigger": {}}
        seed.update(initial_context)
        seed.update({
            "triggerSource": trigger_source,
            "workflowId": definition.id,
            "workflowName": definition.name,
            "runId": run_id,
            "lastSuccessfulRunAt": (
                definition.last_successful_run_at.isoformat()
                if definition.last_successful_run_at else None
            ),
        })
        return VariableStore(initial=seed)

    async def _execute(
        self,
        definition: WorkflowDefinition,
        run_id: str,
        trigger_source: str,
        initial_context: dict[str, Any],
        started_at: datetime,
    ) -> None:
        bind_run_context(run_id, definition.id)
        state = _RunState(
            run_id=run_id,
            definition=definition,
            trigger_source=trigger_source,
            now=started_at,
            store=self._seed_store(definition, run_id, trigger_source, initial_context),
        )
        try:
            try:
                error_message = await asyncio.wait_for(
                    self._run_steps(state), timeout=self._settings.run_timeout_seconds
                )
            except asyncio.TimeoutError:
                error_message = await self._record_timeout(state)
            except asyncio.CancelledError:
                await self._finalize(state, RunStatus.FAILED, error_message="Run cancelled")
                raise
            except Exception:
                logger.exception("Run crashed", run_id=run_id)
                error_message = INTERNAL_ENGINE_ERROR

            if error_message is None:
                await self._finalize(
                    state,
                    RunStatus.COMPLETED,
                    result_data=safe_serialize(state.store.snapshot()),
                )
            else:
                await self._finalize(state, RunStatus.FAILED, error_message=error_message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to finalize run", run_id=run_id)
        finally:
            self._run_lock.release(definition.id, run_id)
            clear_run_context()

    async def _run_steps(self, state: _RunState) -> Optional[str]:
        """Execute top-level steps in order. Returns the run error, if any."""
        for position, step in enumerate(state.definition.steps, start=1):
            state.current_index = position
            state.current_step = step
            state.current_step_started = time.monotonic()

            result = await self._run_step(state, step, position, state.store)
            entry = build_step_entry(step, position, result)
            await self._recorder.append_entry(state.run_id, entry, steps_completed=position)

            if not result.success and result.blocking:
                return run_error_message(position, step, result.error)
        state.current_step = None
        return None

    async def _run_step(
        self,
        state: _RunState,
        step: StepDefinition,
        position: int,
        store: VariableStore,
    ) -> TaskResult:
        task = self._task_registry.create_instance(step.type)
        if task is None:
            logger.error("No executor registered for step type", step_type=step.type.value)
            return TaskResult(success=False, error=INTERNAL_ENGINE_ERROR, fatal=True)

        async def run_children(steps, scope, item_index):
            return await self._run_child_steps(state, steps, scope, item_index)

        ctx = StepContext(
            run_id=state.run_id,
            workflow_id=state.definition.id,
            workflow_name=state.definition.name,
            trigger_source=state.trigger_source,
            step=step,
            # Writes are attributed to the enclosing top-level step
            step_index=state.current_index or position,
            store=store,
            services=self._services,
            settings=self._settings,
            now=state.now,
            run_child_steps=run_children,
        )
        return await task.run(ctx)

    async def _run_child_steps(
        self,
        state: _RunState,
        steps: list[StepDefinition],
        scope: VariableStore,
        item_index: int,
    ) -> ChildRunOutcome:
        """Run one for_each iteration. Stops at the iteration's first failure."""
        outcome = ChildRunOutcome()
        for position, step in enumerate(steps, start=1):
            result = await self._run_step(state, step, position, scope)
            outcome.entries.append(build_step_entry(step, position, result, item_index=item_index))
            if not result.success and result.blocking:
                outcome.failed = True
                outcome.fatal = result.fatal
                outcome.error = result.error if result.fatal else f"{step.display_name}: {result.error}"
                break
        return outcome

    async def _record_timeout(self, state: _RunState) -> str:
        timeout = self._settings.run_timeout_seconds
        error = f"Run timed out after {timeout:g}s"
        step = state.current_step
        if step is None:
            return error
        elapsed = (time.monotonic() - state.current_step_started) * 1000
        entry = build_step_entry(
            step,
            state.current_index,
            TaskResult(success=False, error=error, duration_ms=elapsed),
        )
        await self._recorder.append_entry(state.run_id, entry, steps_completed=state.current_index)
        return run_error_message(state.current_index, step, error)

    async def _finalize(
        self,
        state: _RunState,
        status: RunStatus,
        result_data: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        duration_ms = int((time.monotonic() - state.started_monotonic) * 1000)
        await self._recorder.finalize(
            state.run_id,
            status,
            completed_at=utc_now(),
            duration_ms=duration_ms,
            result_data=result_data,
            error_message=error_message,
        )
        log = logger.info if status == RunStatus.COMPLETED else logger.warning
        log(
            "Run finished",
            run_id=state.run_id,
            workflow_id=state.definition.id,
            status=status.value,
            duration_ms=duration_ms,
            error=error_message,
        )


# ─── Singleton ─────────────────────────────────────────────────

_engine: Optional[WorkflowEngine] = None


def get_workflow_engine() -> WorkflowEngine:
    """Get or create the application's SQLAlchemy-backed engine."""
    global _engine
    if _engine is None:
        from app.config import get_settings
        from db.database import AsyncSessionLocal
        from services.runtime import build_run_services
        from workflow.recorder import SqlRunRecorder

        _engine = WorkflowEngine(
            recorder=SqlRunRecorder(AsyncSessionLocal),
            services=build_run_services(AsyncSessionLocal),
            settings=EngineSettings.from_settings(get_settings()),
            run_lock=get_run_lock(),
        )
    return _engine


def set_workflow_engine(engine: Optional[WorkflowEngine]) -> None:
    """Replace the singleton (tests, worker processes)."""
    global _engine
    _engine = engine
