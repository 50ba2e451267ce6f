"""Constants and enums for the workflow automation engine."""

from enum import Enum


class RunStatus(str, Enum):
    """Execution run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class TriggerType(str, Enum):
    """How a workflow is started."""

    MANUAL = "manual"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"


class StepType(str, Enum):
    """Closed set of step types a workflow may contain."""

    INTEGRATION_ACTION = "integration_action"
    STRATEGY_UPDATE = "strategy_update"
    DATA_SOURCE_QUERY = "data_source_query"
    DATA_TRANSFORMATION = "data_transformation"
    LOG_EVENT = "log_event"
    NOTIFICATION = "notification"
    CREATE_WORK_ITEM = "create_work_item"
    FOR_EACH = "for_each"


class StrategyTarget(str, Enum):
    """Kind of strategy entity a strategy_update step writes to."""

    KEY_RESULT = "key_result"
    OBJECTIVE = "objective"


class UpdateType(str, Enum):
    """How a strategy_update step computes the new value."""

    SET_VALUE = "set_value"
    INCREMENT = "increment"
    PERCENTAGE = "percentage"


class Aggregation(str, Enum):
    """Aggregation applied by a data_source_query step."""

    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    LIST = "list"


class FilterOperator(str, Enum):
    """Comparison operators accepted in data_source_query filters."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"
    IN = "in"
    NOT_IN = "not_in"


class LogLevel(str, Enum):
    """Level for log_event steps."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class NotificationChannelType(str, Enum):
    """Delivery channels for notification steps."""

    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"


class OnItemError(str, Enum):
    """Policy for a failing child step inside a for_each iteration."""

    ABORT = "abort"
    CONTINUE = "continue"


class ScheduleFrequency(str, Enum):
    """Frequency model used by the workflow builder for schedule triggers."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Loop-local variable names bound inside a for_each iteration
CURRENT_ITEM = "currentItem"
CURRENT_INDEX = "currentIndex"

# Message recorded on a run that failed because of an engine defect
INTERNAL_ENGINE_ERROR = "Internal engine error"

# Message recorded on a run left `running` by a process that stopped mid-run
ABANDONED_RUN_ERROR = "Run abandoned: the engine stopped before it finished"

DEFAULT_WORK_ITEM_STATUS = "Planning"
DEFAULT_QUERY_LIMIT = 1000
DEFAULT_FORMULA_PRECISION = 2
