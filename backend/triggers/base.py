"""Base trigger classes shared by the trigger handlers and the dispatcher."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from core.constants import TriggerType
from core.utils import utc_now


@dataclass
class TriggerEvent:
    """A single trigger firing.

    This is what a trigger hands to the dispatcher; the handler for its type
    turns it into the initial variables of the run.
    """

    workflow_id: str
    trigger_type: TriggerType
    timestamp: datetime = field(default_factory=utc_now)
    payload: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def trigger_source(self) -> str:
        return self.trigger_type.value


@dataclass
class TriggerResult:
    """Outcome of dispatching a trigger."""

    success: bool
    message: str
    workflow_id: str
    run_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


class BaseTriggerHandler(ABC):
    """Abstract base class for trigger type handlers.

    Each trigger type validates its own `trigger_config` and decides which
    variables a run started by it sees.
    """

    trigger_type: TriggerType

    @abstractmethod
    def build_context(self, event: TriggerEvent) -> dict[str, Any]:
        """Variables seeded into the run's store for this event."""
        ...

    def validate_config(self, config: dict) -> tuple[bool, Optional[str]]:
        """Validate trigger configuration.

        Args:
            config: Configuration dict to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        return True, None
