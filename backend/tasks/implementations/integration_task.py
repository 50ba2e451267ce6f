"""
Integration Action Task — Call a configured external system from a workflow.

Looks up the adapter serving the step's integration id, resolves the
parameters against the variable store and invokes the action with a timeout.
"""

import asyncio

import structlog

from core.constants import StepType
from core.exceptions import AdapterError, FatalEngineError
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.expressions import resolve_text, resolve_value
from workflow.models import IntegrationActionConfig

logger = structlog.get_logger(__name__)


class IntegrationActionTask(BaseTask):
    """Invoke an action on a registered integration (Splynx, data tables, ...)."""

    task_type = StepType.INTEGRATION_ACTION
    display_name = "Integration Action"
    description = "Run an action against a connected external system and store the result"

    async def execute(self, config: IntegrationActionConfig, ctx: StepContext) -> TaskResult:
        provider = ctx.services.integrations
        if provider is None:
            raise FatalEngineError("No integration provider configured")

        integration_id = resolve_text(config.integration_id, ctx.store, ctx.now, strict=True)
        parameters = resolve_value(config.parameters, ctx.store, ctx.now)
        timeout = config.timeout_seconds or ctx.settings.integration_timeout_seconds

        adapter = await provider.get_adapter(integration_id)
        try:
            result = await asyncio.wait_for(adapter.invoke(config.action, parameters), timeout)
        except asyncio.TimeoutError:
            raise AdapterError(
                f"Integration action '{config.action}' timed out after {timeout:g}s"
            ) from None
        finally:
            await adapter.aclose()

        logger.debug(
            "Integration action completed",
            integration_id=integration_id,
            platform=adapter.platform_type,
            action=config.action,
            count=result.count,
        )
        return TaskResult(
            success=True,
            output=result.to_dict(),
            value=result.value,
            metadata={
                "integration_id": integration_id,
                "platform": adapter.platform_type,
                "action": config.action,
            },
        )


INTEGRATION_TASK_TYPES = {
    StepType.INTEGRATION_ACTION: IntegrationActionTask,
}
