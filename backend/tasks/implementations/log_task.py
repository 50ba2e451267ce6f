"""
Log Event Task — Write a message to the engine log.
"""

import structlog

from core.constants import StepType
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.expressions import resolve_text
from workflow.models import LogEventConfig

logger = structlog.get_logger("workflow.events")


class LogEventTask(BaseTask):
    task_type = StepType.LOG_EVENT
    display_name = "Log Event"
    description = "Emit an interpolated message at the chosen level"

    async def execute(self, config: LogEventConfig, ctx: StepContext) -> TaskResult:
        message = resolve_text(config.message, ctx.store, ctx.now)
        emit = getattr(logger, config.level.value)
        emit(
            message,
            workflow_id=ctx.workflow_id,
            run_id=ctx.run_id,
            step_id=ctx.step.id,
        )
        return TaskResult(success=True, output={"message": message, "level": config.level.value})


LOG_TASK_TYPES = {
    StepType.LOG_EVENT: LogEventTask,
}
