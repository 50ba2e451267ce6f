"""ActivityLog model: audit trail of changes made by workflows."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import TimestampedModel


class ActivityLog(TimestampedModel):
    """One recorded change.

    Attributes:
        entity_type: key_result, objective, work_item, ...
        entity_id: Id of the changed entity
        action: What happened (updated, created)
        old_value / new_value: Numeric values before and after, if any
        workflow_id / workflow_name / run_id: The run that made the change
        details: Extra JSON (update type, trigger source, step name)
    """

    __tablename__ = "activity_logs"

    entity_type: Mapped[str] = mapped_column(nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(nullable=False, index=True)
    action: Mapped[str] = mapped_column(nullable=False, default="updated")
    old_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    new_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    workflow_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    workflow_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    run_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
