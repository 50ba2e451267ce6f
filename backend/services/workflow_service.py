"""Workflow service — CRUD, step ordering and schedule bookkeeping."""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.constants import TriggerType
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.utils import ensure_utc, utc_now
from db.models import Workflow, WorkflowSchedule
from services.base import BaseService
from triggers.handlers.schedule import next_run, resolve_cron
from workflow.models import WorkflowDefinition
from workflow.validation import check_structure, load_definition, repair_legacy_steps, validate_trigger

logger = logging.getLogger(__name__)


def to_definition(workflow: Workflow, max_nesting: Optional[int] = None) -> WorkflowDefinition:
    """Build the runner's view of a stored workflow."""
    nesting = max_nesting or get_settings().MAX_LOOP_NESTING
    last_success = workflow.last_successful_run_at
    return load_definition(
        {
            "id": workflow.id,
            "name": workflow.name,
            "description": workflow.description,
            "isEnabled": workflow.is_enabled,
            "triggerType": workflow.trigger_type,
            "triggerConfig": workflow.trigger_config or {},
            "steps": workflow.steps or [],
            "lastSuccessfulRunAt": ensure_utc(last_success) if last_success else None,
        },
        max_nesting=nesting,
    )


class WorkflowService(BaseService[Workflow]):
    """Service for workflow management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    # ─── Validation ────────────────────────────────────────

    def _validate(self, trigger_type: str, trigger_config: dict, steps: list) -> list:
        try:
            trigger = TriggerType(trigger_type)
        except ValueError:
            raise ValidationError(f"Unknown trigger type '{trigger_type}'") from None
        check_structure(steps, max_nesting=get_settings().MAX_LOOP_NESTING)
        validate_trigger(trigger, trigger_config)
        return repair_legacy_steps(steps)

    async def _check_identifier(self, identifier: Optional[str], workflow_id: Optional[str] = None):
        if not identifier:
            return
        existing = await self.get_by_webhook_identifier(identifier)
        if existing is not None and existing.id != workflow_id:
            raise ConflictError(f"Webhook identifier '{identifier}' is already used by another workflow")

    @staticmethod
    def _identifier(trigger_type: str, trigger_config: dict) -> Optional[str]:
        if trigger_type != TriggerType.WEBHOOK.value:
            return None
        return (trigger_config or {}).get("identifier")

    # ─── CRUD ──────────────────────────────────────────────

    async def create_workflow(
        self,
        name: str,
        description: str = "",
        is_enabled: bool = True,
        trigger_type: str = TriggerType.MANUAL.value,
        trigger_config: dict = None,
        steps: list = None,
    ) -> Workflow:
        """Validate and create a workflow."""
        trigger_config = trigger_config or {}
        steps = self._validate(trigger_type, trigger_config, steps or [])
        identifier = self._identifier(trigger_type, trigger_config)
        await self._check_identifier(identifier)

        workflow = await self.create({
            "name": name,
            "description": description or "",
            "is_enabled": is_enabled,
            "trigger_type": trigger_type,
            "trigger_config": trigger_config,
            "steps": steps,
            "webhook_identifier": identifier,
        })
        await self.sync_schedule(workflow)
        logger.info(f"Workflow {workflow.id} created ({trigger_type}, {len(steps)} steps)")
        return workflow

    async def update_workflow(self, workflow_id: str, data: dict[str, Any]) -> Workflow:
        """Apply a partial update. Steps, when given, replace the whole list.

        Raises:
            NotFoundError: If the workflow does not exist
            ValidationError: If the resulting workflow is invalid
        """
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        trigger_type = data.get("trigger_type") or workflow.trigger_type
        trigger_config = data.get("trigger_config")
        if trigger_config is None:
            trigger_config = workflow.trigger_config or {}
        steps = data.get("steps")
        if steps is None:
            steps = workflow.steps or []

        steps = self._validate(trigger_type, trigger_config, steps)
        identifier = self._identifier(trigger_type, trigger_config)
        await self._check_identifier(identifier, workflow.id)

        for field in ("name", "description", "is_enabled"):
            if data.get(field) is not None:
                setattr(workflow, field, data[field])
        workflow.trigger_type = trigger_type
        workflow.trigger_config = trigger_config
        workflow.steps = steps
        workflow.webhook_identifier = identifier

        await self.db.flush()
        await self.sync_schedule(workflow)
        await self.db.refresh(workflow)
        return workflow

    async def reorder_steps(self, workflow_id: str, step_ids: list[str]) -> Workflow:
        """Reorder top-level steps. Ids are kept; only positions change.

        Raises:
            ValidationError: If `step_ids` is not a permutation of the current ids
        """
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        steps = list(workflow.steps or [])
        by_id = {str(step.get("id")): step for step in steps}
        requested = [str(sid) for sid in step_ids]
        if len(requested) != len(set(requested)) or set(requested) != set(by_id):
            raise ValidationError(
                "Reorder must list every top-level step id exactly once "
                f"(expected: {', '.join(by_id)})"
            )

        workflow.steps = [by_id[sid] for sid in requested]
        await self.db.flush()
        await self.db.refresh(workflow)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            return False
        workflow.soft_delete()
        workflow.webhook_identifier = None
        schedule = await self._get_schedule(workflow_id)
        if schedule is not None:
            schedule.is_enabled = False
        await self.db.flush()
        return True

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return to_definition(workflow)

    async def get_by_webhook_identifier(self, identifier: str) -> Optional[Workflow]:
        result = await self.db.execute(
            select(Workflow).where(
                Workflow.webhook_identifier == identifier,
                Workflow.is_deleted == False,
            )
        )
        return result.scalar_one_or_none()

    # ─── Schedules ─────────────────────────────────────────

    async def _get_schedule(self, workflow_id: str) -> Optional[WorkflowSchedule]:
        result = await self.db.execute(
            select(WorkflowSchedule).where(WorkflowSchedule.workflow_id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def sync_schedule(self, workflow: Workflow, now: Optional[datetime] = None) -> Optional[WorkflowSchedule]:
        """Create, refresh or disable the schedule row of a workflow."""
        schedule = await self._get_schedule(workflow.id)
        is_scheduled = workflow.trigger_type == TriggerType.SCHEDULE.value

        if not is_scheduled:
            if schedule is not None:
                schedule.is_enabled = False
                schedule.next_run_at = None
                await self.db.flush()
            return schedule

        config = workflow.trigger_config or {}
        cron = resolve_cron(config)
        timezone_name = config.get("timezone") or "UTC"
        upcoming = next_run(cron, now or utc_now(), timezone_name)

        if schedule is None:
            schedule = WorkflowSchedule(workflow_id=workflow.id, cron_expression=cron)
            self.db.add(schedule)
        schedule.cron_expression = cron
        schedule.timezone = timezone_name
        schedule.is_enabled = workflow.is_enabled
        schedule.next_run_at = upcoming
        await self.db.flush()
        logger.info(f"Schedule for workflow {workflow.id}: '{cron}' ({timezone_name}), next {upcoming}")
        return schedule

    async def list_due_schedules(self, now: datetime) -> Sequence[WorkflowSchedule]:
        result = await self.db.execute(
            select(WorkflowSchedule).where(
                WorkflowSchedule.is_enabled == True,
                WorkflowSchedule.next_run_at <= now,
            )
        )
        return result.scalars().all()

    async def mark_fired(self, schedule: WorkflowSchedule, now: datetime, status: str) -> None:
        """Record a poller tick and advance the schedule to its next fire time."""
        schedule.last_fired_at = now
        schedule.last_status = status
        schedule.next_run_at = next_run(schedule.cron_expression, now, schedule.timezone)
        await self.db.flush()
