"""Workflow definition and execution-run models.

Definitions arrive from the workflow builder in camelCase
(`resultVariable`, `childSteps`, ...); every model here accepts both the
camelCase alias and the snake_case field name.

Step configs form a closed tagged union keyed by `StepDefinition.type`.
A step's raw `config` dict is only parsed into its typed model right before
that step runs (see `parse_step_config`), so a half-configured step fails at
its own position instead of rejecting the whole workflow.
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.constants import (
    DEFAULT_FORMULA_PRECISION,
    DEFAULT_QUERY_LIMIT,
    DEFAULT_WORK_ITEM_STATUS,
    Aggregation,
    FilterOperator,
    LogLevel,
    NotificationChannelType,
    OnItemError,
    RunStatus,
    StepType,
    StrategyTarget,
    TriggerType,
    UpdateType,
)
from core.exceptions import ValidationError


class CamelModel(BaseModel):
    """Base for builder-facing models: camelCase aliases, snake_case fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ─── Definitions ──────────────────────────────────────────────

class StepDefinition(CamelModel):
    """One step of a workflow. `config` stays raw until the step runs."""

    id: str = Field(min_length=1)
    type: StepType
    name: str = ""
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @property
    def display_name(self) -> str:
        return self.name or self.id


class WorkflowDefinition(CamelModel):
    """A persisted workflow as the runner sees it."""

    id: str
    name: str
    description: Optional[str] = None
    is_enabled: bool = True
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    steps: list[StepDefinition] = Field(default_factory=list)
    last_successful_run_at: Optional[datetime] = None


# ─── Typed Step Configs ───────────────────────────────────────

class StepConfig(CamelModel):
    result_variable: Optional[str] = None


class IntegrationActionConfig(StepConfig):
    integration_id: str
    action: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("integration_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class StrategyUpdateConfig(StepConfig):
    target_type: StrategyTarget = Field(
        validation_alias=AliasChoices("type", "targetType", "target_type")
    )
    target_id: Optional[str] = None
    use_dynamic_target: bool = False
    target_id_variable: Optional[str] = None
    update_type: UpdateType = UpdateType.SET_VALUE
    value: Any = None

    @field_validator("target_id", mode="before")
    @classmethod
    def _stringify_target(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @model_validator(mode="after")
    def _check_target(self) -> "StrategyUpdateConfig":
        if not self.target_id and not self.target_id_variable:
            raise ValueError("targetId or targetIdVariable is required")
        if self.value is None or self.value == "":
            raise ValueError("value is required")
        return self


class QueryFilter(CamelModel):
    field: str = Field(min_length=1)
    operator: FilterOperator = FilterOperator.EQUALS
    value: Any = None


class DataSourceQueryConfig(StepConfig):
    source_table: str = Field(min_length=1)
    filters: list[QueryFilter] = Field(default_factory=list)
    aggregation: Aggregation = Aggregation.COUNT
    aggregation_field: Optional[str] = None
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1, le=10000)

    @model_validator(mode="after")
    def _check_aggregation_field(self) -> "DataSourceQueryConfig":
        needs_field = self.aggregation in (
            Aggregation.SUM, Aggregation.AVG, Aggregation.MIN, Aggregation.MAX,
        )
        if needs_field and not self.aggregation_field:
            raise ValueError(f"aggregationField is required for '{self.aggregation.value}'")
        return self


class DataTransformationConfig(StepConfig):
    formula: str = Field(min_length=1)
    precision: int = Field(default=DEFAULT_FORMULA_PRECISION, ge=0, le=10)


class LogEventConfig(StepConfig):
    message: str
    level: LogLevel = LogLevel.INFO


class NotificationConfig(StepConfig):
    channel: NotificationChannelType = Field(
        default=NotificationChannelType.EMAIL,
        validation_alias=AliasChoices("channel", "type"),
    )
    recipient: str = Field(min_length=1)
    title: Optional[str] = Field(default=None, validation_alias=AliasChoices("title", "subject"))
    message: str = Field(validation_alias=AliasChoices("message", "template"))


class CreateWorkItemConfig(StepConfig):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: str = DEFAULT_WORK_ITEM_STATUS
    due_date: Optional[str] = None
    external_reference: Optional[str] = None
    assignee_id: Optional[str] = None


class ForEachConfig(StepConfig):
    source_variable: str = Field(min_length=1)
    child_steps: list[StepDefinition] = Field(default_factory=list)
    on_item_error: OnItemError = OnItemError.ABORT

    @field_validator("source_variable")
    @classmethod
    def _strip_braces(cls, value: str) -> str:
        # The builder sometimes stores the variable as "{name}"
        return value.strip().strip("{}").strip()


StepConfigModel = Union[
    IntegrationActionConfig,
    StrategyUpdateConfig,
    DataSourceQueryConfig,
    DataTransformationConfig,
    LogEventConfig,
    NotificationConfig,
    CreateWorkItemConfig,
    ForEachConfig,
]

STEP_CONFIG_MODELS: dict[StepType, type[StepConfig]] = {
    StepType.INTEGRATION_ACTION: IntegrationActionConfig,
    StepType.STRATEGY_UPDATE: StrategyUpdateConfig,
    StepType.DATA_SOURCE_QUERY: DataSourceQueryConfig,
    StepType.DATA_TRANSFORMATION: DataTransformationConfig,
    StepType.LOG_EVENT: LogEventConfig,
    StepType.NOTIFICATION: NotificationConfig,
    StepType.CREATE_WORK_ITEM: CreateWorkItemConfig,
    StepType.FOR_EACH: ForEachConfig,
}


def format_validation_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def parse_step_config(step: StepDefinition) -> StepConfigModel:
    """Validate a step's raw config into its typed model.

    Raises:
        ValidationError: If a required field is missing or malformed
    """
    model = STEP_CONFIG_MODELS[step.type]
    try:
        return model.model_validate(step.config)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {step.type.value} config: {format_validation_errors(e)}"
        ) from e


# ─── Execution Runs ───────────────────────────────────────────

class StepLogEntry(BaseModel):
    """Outcome of one executed step. for_each entries nest their children."""

    step: int
    step_id: str
    name: str
    type: StepType
    duration_ms: int = 0
    success: bool
    output: Any = None
    error: Optional[str] = None
    item_index: Optional[int] = None
    children: list["StepLogEntry"] = Field(default_factory=list)


class ExecutionRunRecord(BaseModel):
    """Read model of a persisted execution run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    status: RunStatus
    trigger_source: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    execution_duration: Optional[int] = None
    execution_log: list[StepLogEntry] = Field(default_factory=list)
    result_data: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    total_steps: int = 0
    steps_completed: int = 0

    @property
    def is_finalized(self) -> bool:
        return self.status.is_terminal
