"""
Base task interface for all step executors.

Every step type (integration action, strategy update, for_each, ...)
inherits from BaseTask and implements execute(). The runner calls run(),
which validates the step's config, times the call, converts engine errors
into a failed TaskResult and stores the result variable on success.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog

from core.constants import INTERNAL_ENGINE_ERROR, StepType
from core.exceptions import EngineError, FatalEngineError
from workflow.context import StepContext
from workflow.models import STEP_CONFIG_MODELS, StepConfigModel, StepLogEntry, parse_step_config

logger = structlog.get_logger(__name__)

_UNSET = object()


class TaskResult:
    """Standardized result from a step execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
        value: Any = _UNSET,
        children: Optional[List[StepLogEntry]] = None,
        fatal: bool = False,
        blocking: bool = True,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        # Value stored under the step's resultVariable; defaults to output
        self.value = output if value is _UNSET else value
        self.children = children or []
        self.fatal = fatal
        # A non-blocking failure is recorded but does not stop the run
        self.blocking = blocking


class BaseTask(ABC):
    """
    Abstract base class for all step executors.

    Subclasses must implement:
    - execute(config, ctx) -> TaskResult
    - task_type (class property)
    - display_name (class property)
    """

    task_type: StepType
    display_name: str = "Base Task"
    description: str = "Abstract base task"

    @abstractmethod
    async def execute(self, config: StepConfigModel, ctx: StepContext) -> TaskResult:
        """
        Execute the step with its validated configuration.

        Args:
            config: Typed config model for this step type
            ctx: Execution context (variable store, collaborators, timing)

        Returns:
            TaskResult with output or error
        """
        pass

    async def run(self, ctx: StepContext) -> TaskResult:
        """
        Run the step with validation, timing and error handling.

        This is the main entry point called by the workflow engine.
        """
        start = time.monotonic()
        step = ctx.step
        try:
            config = parse_step_config(step)
            result = await self.execute(config, ctx)
            if result.success and config.result_variable:
                ctx.store.set(config.result_variable, result.value, step_index=ctx.step_index)
        except FatalEngineError as e:
            logger.error("Step aborted by engine error", step_id=step.id, error=e.message)
            result = TaskResult(success=False, error=INTERNAL_ENGINE_ERROR, fatal=True)
        except EngineError as e:
            result = TaskResult(
                success=False,
                error=e.message,
                metadata={"error_type": type(e).__name__},
            )
        except Exception:
            logger.exception("Step crashed", step_id=step.id, step_type=step.type.value)
            result = TaskResult(success=False, error=INTERNAL_ENGINE_ERROR, fatal=True)

        result.duration_ms = (time.monotonic() - start) * 1000
        log = logger.info if result.success else logger.warning
        log(
            "Step finished",
            step_id=step.id,
            step_type=step.type.value,
            success=result.success,
            error=result.error,
            duration_ms=round(result.duration_ms, 2),
        )
        return result

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """Return JSON schema of this step type's configuration."""
        return STEP_CONFIG_MODELS[cls.task_type].model_json_schema(by_alias=True)
