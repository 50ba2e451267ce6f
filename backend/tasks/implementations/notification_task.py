"""
Notification Task — Send an email, Slack or webhook message.

Delivery failures fail the run unless notifications are configured as
best effort, in which case the failure is recorded on the step and the run
moves on.
"""

import asyncio

import structlog

from core.constants import StepType
from core.exceptions import AdapterError, FatalEngineError
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.expressions import resolve_text
from workflow.models import NotificationConfig

logger = structlog.get_logger(__name__)


class NotificationTask(BaseTask):
    task_type = StepType.NOTIFICATION
    display_name = "Send Notification"
    description = "Deliver an interpolated message through email, Slack or a webhook"

    async def execute(self, config: NotificationConfig, ctx: StepContext) -> TaskResult:
        notifier = ctx.services.notifier
        if notifier is None:
            raise FatalEngineError("No notifier configured")

        recipient = resolve_text(config.recipient, ctx.store, ctx.now)
        message = resolve_text(config.message, ctx.store, ctx.now)
        title = resolve_text(config.title, ctx.store, ctx.now) if config.title else None
        timeout = ctx.settings.notification_timeout_seconds
        output = {
            "sent": False,
            "channel": config.channel.value,
            "recipient": recipient,
            "message": message,
        }

        try:
            await asyncio.wait_for(
                notifier.send(
                    config.channel,
                    recipient,
                    message,
                    title=title,
                    context={
                        "workflow_id": ctx.workflow_id,
                        "workflow_name": ctx.workflow_name,
                        "run_id": ctx.run_id,
                    },
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            error = f"Notification via {config.channel.value} timed out after {timeout:g}s"
            return self._failed(error, output, ctx)
        except AdapterError as e:
            return self._failed(e.message, output, ctx)

        output["sent"] = True
        return TaskResult(success=True, output=output)

    def _failed(self, error: str, output: dict, ctx: StepContext) -> TaskResult:
        if not ctx.settings.notifications_best_effort:
            raise AdapterError(error)
        logger.warning("Notification failed, continuing run", step_id=ctx.step.id, error=error)
        return TaskResult(success=False, output=output, error=error, blocking=False)


NOTIFICATION_TASK_TYPES = {
    StepType.NOTIFICATION: NotificationTask,
}
