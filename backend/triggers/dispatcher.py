"""Trigger Dispatcher — routes trigger firings to the workflow engine.

Each trigger type has a handler that turns a TriggerEvent into the run's
initial variables. The dispatcher looks the workflow up, lets the handler
build the context and asks the engine to start a run. A firing that finds
the workflow already running is skipped (ConflictError for manual and
webhook callers, a skipped TriggerResult for the scheduler).
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.constants import INTERNAL_ENGINE_ERROR, TriggerType
from core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from core.utils import utc_now
from db.models import Workflow
from services.workflow_service import WorkflowService, to_definition
from triggers.base import BaseTriggerHandler, TriggerEvent, TriggerResult
from triggers.handlers.manual import ManualTriggerHandler
from triggers.handlers.schedule import ScheduleTriggerHandler
from triggers.handlers.webhook import WebhookTriggerHandler
from workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Central entry point for manual, webhook and schedule triggers."""

    def __init__(self, engine: WorkflowEngine, session_factory: async_sessionmaker):
        self._engine = engine
        self._session_factory = session_factory
        self._handlers: dict[TriggerType, BaseTriggerHandler] = {}

        self.register_handler(ManualTriggerHandler())
        self.register_handler(WebhookTriggerHandler())
        self.register_handler(ScheduleTriggerHandler())

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    def register_handler(self, handler: BaseTriggerHandler) -> None:
        self._handlers[handler.trigger_type] = handler
        logger.debug(f"Registered trigger handler: {handler.trigger_type.value}")

    def get_handler(self, trigger_type: TriggerType) -> BaseTriggerHandler:
        return self._handlers[trigger_type]

    # ─── Core ──────────────────────────────────────────────

    async def _load(self, workflow_id: str) -> Workflow:
        async with self._session_factory() as session:
            workflow = await WorkflowService(session).get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def start_run(
        self,
        workflow_id: str,
        trigger_source: str,
        initial_context: Optional[dict[str, Any]] = None,
        wait: bool = False,
    ) -> str:
        """Start a run of a stored workflow and return its id.

        Raises:
            NotFoundError: If the workflow does not exist
            ValidationError: If the workflow cannot run
            ConflictError: If the workflow is already running
        """
        workflow = await self._load(workflow_id)
        return await self._start(workflow, trigger_source, initial_context or {}, wait)

    async def _start(
        self,
        workflow: Workflow,
        trigger_source: str,
        initial_context: dict[str, Any],
        wait: bool = False,
    ) -> str:
        try:
            definition = to_definition(workflow)
        except ValidationError as e:
            # Saved definitions were valid; one that no longer loads is corrupt
            logger.error(f"Stored definition of workflow {workflow.id} is corrupt: {e.message}")
            return await self._engine.record_failed_run(workflow.id, trigger_source, INTERNAL_ENGINE_ERROR)
        return await self._engine.start_run(definition, trigger_source, initial_context, wait=wait)

    def _context(self, trigger_type: TriggerType, event: TriggerEvent) -> dict[str, Any]:
        return self.get_handler(trigger_type).build_context(event)

    # ─── Manual ────────────────────────────────────────────

    async def dispatch_manual(self, workflow_id: str, payload: Optional[dict] = None) -> str:
        """"Run now" from the API. Works for any workflow, enabled or not."""
        workflow = await self._load(workflow_id)
        event = TriggerEvent(workflow_id=workflow.id, trigger_type=TriggerType.MANUAL, payload=payload or {})
        run_id = await self._start(workflow, event.trigger_source, self._context(TriggerType.MANUAL, event))
        logger.info(f"Manual trigger started run {run_id} for workflow {workflow.id}")
        return run_id

    # ─── Webhook ───────────────────────────────────────────

    async def dispatch_webhook(self, identifier: str, body: bytes, signature: Optional[str] = None) -> str:
        """Start the workflow whose webhook identifier matches.

        Raises:
            NotFoundError: No enabled webhook workflow has this identifier
            AuthenticationError: The signature does not match the shared secret
            ValidationError: The body is not a JSON object
            ConflictError: The workflow is already running
        """
        async with self._session_factory() as session:
            workflow = await WorkflowService(session).get_by_webhook_identifier(identifier)
        handler = self.get_handler(TriggerType.WEBHOOK)
        if (
            workflow is None
            or workflow.trigger_type != TriggerType.WEBHOOK.value
            or not handler.matches(workflow.trigger_config or {}, identifier)
        ):
            raise NotFoundError(f"No webhook workflow for '{identifier}'")
        if not workflow.is_enabled:
            raise ConflictError(f"Workflow {workflow.id} is disabled")

        if not handler.verify_signature(workflow.trigger_config or {}, body, signature):
            logger.warning(f"Webhook signature mismatch for '{identifier}'")
            raise AuthenticationError("Invalid webhook signature")

        payload = _parse_body(body)
        event = TriggerEvent(workflow_id=workflow.id, trigger_type=TriggerType.WEBHOOK, payload=payload)
        run_id = await self._start(workflow, event.trigger_source, self._context(TriggerType.WEBHOOK, event))
        logger.info(f"Webhook '{identifier}' started run {run_id} for workflow {workflow.id}")
        return run_id

    # ─── Schedule ──────────────────────────────────────────

    async def dispatch_schedule(self, workflow_id: str, schedule_id: Optional[str] = None) -> TriggerResult:
        """Fire a due schedule. Never raises for skipped or invalid workflows."""
        try:
            workflow = await self._load(workflow_id)
        except NotFoundError as e:
            return TriggerResult(success=False, message=e.message, workflow_id=workflow_id, error=e.message)
        if not workflow.is_enabled:
            return TriggerResult(
                success=False, message="Workflow disabled", workflow_id=workflow_id, skipped=True,
            )

        event = TriggerEvent(
            workflow_id=workflow.id,
            trigger_type=TriggerType.SCHEDULE,
            timestamp=utc_now(),
            metadata={"schedule_id": schedule_id},
        )
        try:
            run_id = await self._start(workflow, event.trigger_source, self._context(TriggerType.SCHEDULE, event))
        except ConflictError as e:
            logger.info(f"Schedule tick for workflow {workflow_id} skipped: already running")
            return TriggerResult(
                success=False, message="Skipped: run in progress", workflow_id=workflow_id,
                error=e.message, skipped=True,
            )
        except ValidationError as e:
            logger.warning(f"Scheduled workflow {workflow_id} cannot run: {e.message}")
            return TriggerResult(success=False, message=e.message, workflow_id=workflow_id, error=e.message)

        return TriggerResult(success=True, message="Run started", workflow_id=workflow_id, run_id=run_id)


def _parse_body(body: bytes) -> dict[str, Any]:
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Webhook body must be JSON") from None
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return payload


# ─── Singleton ─────────────────────────────────────────────────

_dispatcher: Optional[TriggerDispatcher] = None


def get_trigger_dispatcher() -> TriggerDispatcher:
    global _dispatcher
    if _dispatcher is None:
        from db.database import AsyncSessionLocal
        from workflow.engine import get_workflow_engine

        _dispatcher = TriggerDispatcher(get_workflow_engine(), AsyncSessionLocal)
    return _dispatcher


def set_trigger_dispatcher(dispatcher: Optional[TriggerDispatcher]) -> None:
    global _dispatcher
    _dispatcher = dispatcher
