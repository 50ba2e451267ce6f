"""Workflow definition loading and validation.

Two levels of checking:

- load time (`load_definition`): structure only. Every step has an id, a
  known type and a mapping config; ids are unique across the whole tree,
  including for_each children; loops do not nest deeper than allowed.
  Legacy definitions are repaired here, once.
- run time (`validate_for_run`): the workflow can actually start, i.e. it
  has steps and its trigger config is usable.

Per-step config validation happens later, right before the step runs
(`workflow.models.parse_step_config`).
"""

import copy
from typing import Any, Iterator, Optional

from pydantic import ValidationError as PydanticValidationError

from core.constants import StepType, StrategyTarget, TriggerType
from core.exceptions import ValidationError
from triggers.handlers.schedule import ScheduleTriggerHandler
from triggers.handlers.webhook import WebhookTriggerHandler
from workflow.models import WorkflowDefinition, format_validation_errors

DEFAULT_MAX_LOOP_NESTING = 3

_TRIGGER_HANDLERS = {
    TriggerType.SCHEDULE: ScheduleTriggerHandler(),
    TriggerType.WEBHOOK: WebhookTriggerHandler(),
}


def child_steps_of(step: dict) -> list:
    """Raw child list of a for_each step (either key spelling)."""
    config = step.get("config") or {}
    if not isinstance(config, dict):
        return []
    children = config.get("childSteps", config.get("child_steps"))
    return children if isinstance(children, list) else []


def repair_legacy_steps(steps: list[dict]) -> list[dict]:
    """Return a repaired deep copy of a raw step list.

    strategy_update steps saved before the target type existed get
    `config.type = "key_result"`.
    """
    repaired = copy.deepcopy(steps)
    for step in _walk(repaired):
        if step.get("type") != StepType.STRATEGY_UPDATE.value:
            continue
        config = step.get("config")
        if not isinstance(config, dict):
            continue
        if not config.get("type") and not config.get("targetType"):
            config["type"] = StrategyTarget.KEY_RESULT.value
    return repaired


def _walk(steps: list) -> Iterator[dict]:
    for step in steps:
        if not isinstance(step, dict):
            continue
        yield step
        if step.get("type") == StepType.FOR_EACH.value:
            yield from _walk(child_steps_of(step))


def check_structure(
    steps: Any,
    max_nesting: int = DEFAULT_MAX_LOOP_NESTING,
    _depth: int = 0,
    _seen: Optional[set] = None,
    _path: str = "steps",
) -> None:
    """Recursively check a raw step list.

    Raises:
        ValidationError: On the first structural problem found
    """
    seen = set() if _seen is None else _seen
    if not isinstance(steps, list):
        raise ValidationError(f"{_path} must be a list")
    known_types = {t.value for t in StepType}

    for position, step in enumerate(steps, start=1):
        where = f"{_path}[{position}]"
        if not isinstance(step, dict):
            raise ValidationError(f"{where} must be an object")
        step_id = step.get("id")
        if step_id is None or str(step_id).strip() == "":
            raise ValidationError(f"{where} is missing an id")
        step_id = str(step_id)
        if step_id in seen:
            raise ValidationError(f"Duplicate step id '{step_id}'")
        seen.add(step_id)
        step_type = step.get("type")
        if step_type not in known_types:
            raise ValidationError(f"{where} ({step_id}) has unknown type '{step_type}'")
        if not isinstance(step.get("config", {}), dict):
            raise ValidationError(f"{where} ({step_id}) config must be an object")

        if step_type == StepType.FOR_EACH.value:
            if _depth + 1 > max_nesting:
                raise ValidationError(
                    f"for_each step '{step_id}' exceeds the maximum loop nesting of {max_nesting}"
                )
            check_structure(
                child_steps_of(step),
                max_nesting=max_nesting,
                _depth=_depth + 1,
                _seen=seen,
                _path=f"{where}.childSteps",
            )


def load_definition(raw: dict, max_nesting: int = DEFAULT_MAX_LOOP_NESTING) -> WorkflowDefinition:
    """Repair, structurally validate and parse a stored workflow.

    Raises:
        ValidationError: If the definition is structurally invalid
    """
    if not isinstance(raw, dict):
        raise ValidationError("Workflow definition must be an object")
    data = dict(raw)
    steps = data.get("steps") or []
    check_structure(steps, max_nesting=max_nesting)
    data["steps"] = repair_legacy_steps(steps)
    try:
        return WorkflowDefinition.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid workflow definition: {format_validation_errors(e)}") from e


def validate_trigger(trigger_type: TriggerType, trigger_config: dict) -> None:
    """Raise ValidationError if the trigger config cannot drive its trigger type."""
    handler = _TRIGGER_HANDLERS.get(TriggerType(trigger_type))
    if handler is None:
        return
    is_valid, error = handler.validate_config(trigger_config or {})
    if not is_valid:
        raise ValidationError(error or "Invalid trigger configuration")


def validate_for_run(definition: WorkflowDefinition) -> None:
    """Checks that must pass before a run of `definition` may start."""
    if not definition.steps:
        raise ValidationError(f"Workflow '{definition.name}' has no steps")
    validate_trigger(definition.trigger_type, definition.trigger_config)
