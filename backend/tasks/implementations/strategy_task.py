"""
Strategy Update Task — Write progress to a key result or objective.

The target id is either static (`targetId`, which may itself be a template
such as `{objectiveId}`) or read from a variable (`targetIdVariable`).
"""

from typing import Any

from core.constants import StepType
from core.exceptions import FatalEngineError, ResolutionError
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.expressions import coerce_number, resolve, to_text
from workflow.models import StrategyUpdateConfig


def _variable_reference(name: str) -> str:
    return "{" + name.strip().strip("{}").strip() + "}"


class StrategyUpdateTask(BaseTask):
    task_type = StepType.STRATEGY_UPDATE
    display_name = "Update Strategy"
    description = "Set, increment or percentage-update a key result or objective"

    async def execute(self, config: StrategyUpdateConfig, ctx: StepContext) -> TaskResult:
        store = ctx.services.strategy_store
        if store is None:
            raise FatalEngineError("No strategy store configured")

        target_id = self._resolve_target(config, ctx)
        raw_value = resolve(config.value, ctx.store, ctx.now, strict=True)
        value = coerce_number(raw_value, label="Update value")

        outcome = await store.apply_update(
            config.target_type, target_id, config.update_type, value, ctx.audit()
        )
        return TaskResult(success=True, output=outcome.to_dict())

    def _resolve_target(self, config: StrategyUpdateConfig, ctx: StepContext) -> str:
        if config.target_id_variable and (config.use_dynamic_target or not config.target_id):
            template = _variable_reference(config.target_id_variable)
        else:
            template = config.target_id

        value: Any = resolve(template, ctx.store, ctx.now, strict=True)
        if isinstance(value, (dict, list)) or value is None or isinstance(value, bool):
            raise ResolutionError(f"Target id '{template}' did not resolve to an id")
        target_id = to_text(value).strip()
        if not target_id:
            raise ResolutionError(f"Target id '{template}' resolved to an empty value")
        return target_id


STRATEGY_TASK_TYPES = {
    StepType.STRATEGY_UPDATE: StrategyUpdateTask,
}
