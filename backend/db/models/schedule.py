"""Schedule state of schedule-triggered workflows."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import TimestampedModel


class WorkflowSchedule(TimestampedModel):
    """When a schedule-triggered workflow fires next.

    Attributes:
        workflow_id: Foreign key to Workflow (one schedule per workflow)
        cron_expression: Resolved 5-field cron expression
        timezone: IANA timezone the expression is evaluated in
        is_enabled: Mirrors the workflow's enabled flag
        next_run_at: Next fire time (UTC)
        last_fired_at: Last time the poller fired the workflow
        last_status: started or skipped
    """

    __tablename__ = "workflow_schedules"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    cron_expression: Mapped[str] = mapped_column(nullable=False)
    timezone: Mapped[str] = mapped_column(nullable=False, default="UTC")
    is_enabled: Mapped[bool] = mapped_column(default=True, index=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_fired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_status: Mapped[Optional[str]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="schedule", lazy="raise"
    )
