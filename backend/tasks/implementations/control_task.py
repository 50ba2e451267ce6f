"""
Control Flow Tasks — for_each over a list variable.

Each iteration runs the child steps in a fresh scope that binds
`currentItem` and `currentIndex`; writes made inside the iteration are
dropped when it ends. The loop summary goes to the enclosing scope.
"""

import structlog

from core.constants import OnItemError, StepType
from core.exceptions import FatalEngineError, ValidationError
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.expressions import resolve
from workflow.models import ForEachConfig, StepLogEntry

logger = structlog.get_logger(__name__)


class ForEachTask(BaseTask):
    task_type = StepType.FOR_EACH
    display_name = "For Each"
    description = "Run child steps once per element of a list variable"

    async def execute(self, config: ForEachConfig, ctx: StepContext) -> TaskResult:
        if ctx.run_child_steps is None:
            raise FatalEngineError("for_each executed without a child step runner")

        items = resolve("{" + config.source_variable + "}", ctx.store, ctx.now, strict=True)
        if not isinstance(items, list):
            raise ValidationError(
                f"Variable '{config.source_variable}' is not a list "
                f"(got {type(items).__name__})"
            )

        children: list[StepLogEntry] = []
        success_count = 0
        error_count = 0

        for index, item in enumerate(items):
            scope = ctx.store.loop_scope(item, index)
            outcome = await ctx.run_child_steps(config.child_steps, scope, index)
            children.extend(outcome.entries)

            if outcome.fatal:
                return TaskResult(success=False, error=outcome.error, children=children, fatal=True)
            if not outcome.failed:
                success_count += 1
                continue

            error_count += 1
            if config.on_item_error == OnItemError.ABORT:
                return TaskResult(
                    success=False,
                    error=f"Item {index} failed: {outcome.error}",
                    output=self._summary(index + 1, success_count, error_count),
                    children=children,
                )
            logger.info("for_each item failed, continuing", step_id=ctx.step.id, item_index=index)

        return TaskResult(
            success=True,
            output=self._summary(len(items), success_count, error_count),
            children=children,
        )

    @staticmethod
    def _summary(processed: int, success_count: int, error_count: int) -> dict:
        return {
            "itemsProcessed": processed,
            "successCount": success_count,
            "errorCount": error_count,
        }


CONTROL_TASK_TYPES = {
    StepType.FOR_EACH: ForEachTask,
}
