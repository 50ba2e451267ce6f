"""Execution context handed to step executors."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from app.config import Settings
from integrations.base import AdapterProvider
from workflow.interfaces import AuditContext, DataSource, Notifier, StrategyStore, WorkItemStore
from workflow.models import StepDefinition, StepLogEntry
from workflow.variables import VariableStore


@dataclass
class EngineSettings:
    """Runtime limits and policies of the runner."""

    integration_timeout_seconds: float = 30.0
    notification_timeout_seconds: float = 15.0
    run_timeout_seconds: float = 900.0
    notifications_best_effort: bool = False
    max_loop_nesting: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineSettings":
        return cls(
            integration_timeout_seconds=settings.INTEGRATION_ACTION_TIMEOUT_SECONDS,
            notification_timeout_seconds=settings.NOTIFICATION_TIMEOUT_SECONDS,
            run_timeout_seconds=settings.RUN_TIMEOUT_SECONDS,
            notifications_best_effort=settings.NOTIFICATIONS_BEST_EFFORT,
            max_loop_nesting=settings.MAX_LOOP_NESTING,
        )


@dataclass
class RunServices:
    """External collaborators a run may touch."""

    strategy_store: Optional[StrategyStore] = None
    work_item_store: Optional[WorkItemStore] = None
    data_source: Optional[DataSource] = None
    integrations: Optional[AdapterProvider] = None
    notifier: Optional[Notifier] = None


@dataclass
class ChildRunOutcome:
    """Result of running one for_each iteration's child steps."""

    entries: list[StepLogEntry] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None
    fatal: bool = False


ChildRunner = Callable[[list[StepDefinition], VariableStore, int], Awaitable[ChildRunOutcome]]


@dataclass
class StepContext:
    """Everything one step execution can see.

    `store` is the scope the step reads from and writes its result into;
    for steps inside a for_each iteration that is the iteration's scope.
    """

    run_id: str
    workflow_id: str
    workflow_name: str
    trigger_source: str
    step: StepDefinition
    step_index: int
    store: VariableStore
    services: RunServices
    settings: EngineSettings
    now: datetime
    run_child_steps: Optional[ChildRunner] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def audit(self) -> AuditContext:
        return AuditContext(
            workflow_id=self.workflow_id,
            workflow_name=self.workflow_name,
            run_id=self.run_id,
            trigger_source=self.trigger_source,
            step_name=self.step.display_name,
        )
