"""Manual trigger handler (API "Run now")."""

from typing import Any

from core.constants import TriggerType
from triggers.base import BaseTriggerHandler, TriggerEvent


class ManualTriggerHandler(BaseTriggerHandler):
    trigger_type = TriggerType.MANUAL

    def build_context(self, event: TriggerEvent) -> dict[str, Any]:
        context = {
            "trigger": {"type": "manual", "startedAt": event.timestamp.isoformat()},
            "manualData": event.payload,
        }
        for key, value in event.payload.items():
            if isinstance(key, str) and key not in context:
                context[key] = value
        return context
