"""Boundaries between the runner and the systems it changes.

The engine only talks to these abstractions. SQLAlchemy-backed
implementations live in services/, the integration adapters in
integrations/, notification delivery in notifications/; tests pass
in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from core.constants import Aggregation, FilterOperator, NotificationChannelType, StrategyTarget, UpdateType
from core.exceptions import NotFoundError, ValidationError


# ─── Strategy (OKR) Store ─────────────────────────────────────

@dataclass
class StrategyTargetState:
    """Current numbers of a key result or objective."""
    target_type: StrategyTarget
    target_id: str
    title: str
    current_value: Optional[float]
    target_value: Optional[float]


@dataclass
class AuditContext:
    """Who changed a strategy value, recorded in the activity log."""
    workflow_id: str
    workflow_name: str
    run_id: str
    trigger_source: str
    step_name: Optional[str] = None


@dataclass
class StrategyUpdateOutcome:
    target_type: StrategyTarget
    target_id: str
    update_type: UpdateType
    old_value: Optional[float]
    new_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated": True,
            "type": self.target_type.value,
            "targetId": self.target_id,
            "updateType": self.update_type.value,
            "oldValue": self.old_value,
            "newValue": self.new_value,
        }


def compute_new_value(
    update_type: UpdateType,
    value: float,
    current_value: Optional[float],
    target_value: Optional[float],
) -> float:
    """Apply an update rule to a strategy value.

    - set_value: the value itself
    - increment: current (0 when unset) plus the value
    - percentage: value percent of the target value
    """
    if update_type == UpdateType.SET_VALUE:
        return value
    if update_type == UpdateType.INCREMENT:
        return (current_value or 0.0) + value
    if target_value is None:
        raise ValidationError("Percentage update requires the target to have a target value")
    return target_value * value / 100


class StrategyStore(ABC):
    """Reads and writes key result / objective progress."""

    @abstractmethod
    async def get_target(
        self, target_type: StrategyTarget, target_id: str
    ) -> Optional[StrategyTargetState]:
        ...

    @abstractmethod
    async def write_value(
        self,
        state: StrategyTargetState,
        new_value: float,
        update_type: UpdateType,
        audit: AuditContext,
    ) -> None:
        """Persist `new_value` and record the change in the activity log."""
        ...

    async def apply_update(
        self,
        target_type: StrategyTarget,
        target_id: str,
        update_type: UpdateType,
        value: float,
        audit: AuditContext,
    ) -> StrategyUpdateOutcome:
        state = await self.get_target(target_type, target_id)
        if state is None:
            label = "Key Result" if target_type == StrategyTarget.KEY_RESULT else "Objective"
            raise NotFoundError(f"{label} {target_id} not found")
        new_value = compute_new_value(update_type, value, state.current_value, state.target_value)
        await self.write_value(state, new_value, update_type, audit)
        return StrategyUpdateOutcome(
            target_type=target_type,
            target_id=target_id,
            update_type=update_type,
            old_value=state.current_value,
            new_value=new_value,
        )

    async def update_key_result(
        self, key_result_id: str, update_type: UpdateType, value: float, audit: AuditContext
    ) -> StrategyUpdateOutcome:
        return await self.apply_update(StrategyTarget.KEY_RESULT, key_result_id, update_type, value, audit)

    async def update_objective(
        self, objective_id: str, update_type: UpdateType, value: float, audit: AuditContext
    ) -> StrategyUpdateOutcome:
        return await self.apply_update(StrategyTarget.OBJECTIVE, objective_id, update_type, value, audit)


# ─── Work Items ───────────────────────────────────────────────

@dataclass
class WorkItemDraft:
    title: str
    status: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    external_reference: Optional[str] = None
    assignee_id: Optional[str] = None
    workflow_id: Optional[str] = None
    run_id: Optional[str] = None


class WorkItemStore(ABC):
    @abstractmethod
    async def create_work_item(self, draft: WorkItemDraft) -> str:
        """Persist a work item and return its id."""
        ...


# ─── Data Sources ─────────────────────────────────────────────

@dataclass
class ResolvedFilter:
    """A data_source_query filter with its value already interpolated."""
    field: str
    operator: FilterOperator
    value: Any = None


@dataclass
class DataQuery:
    source_table: str
    filters: list[ResolvedFilter] = field(default_factory=list)
    aggregation: Aggregation = Aggregation.COUNT
    aggregation_field: Optional[str] = None
    limit: int = 1000


class DataSource(ABC):
    @abstractmethod
    async def query(self, query: DataQuery) -> Any:
        """Run a query. Returns a count, an aggregate or a list of records."""
        ...


# ─── Notifications ────────────────────────────────────────────

class Notifier(ABC):
    @abstractmethod
    async def send(
        self,
        channel: NotificationChannelType,
        recipient: str,
        message: str,
        title: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Deliver a notification.

        Raises:
            AdapterError: If the channel reports a delivery failure
        """
        ...
