"""Workflow model for the workflow automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import TriggerType
from db.base import BaseModel


class Workflow(BaseModel):
    """A saved workflow definition.

    Attributes:
        name: Workflow name
        description: Free-text description
        is_enabled: Whether triggers may start the workflow
        trigger_type: manual, schedule or webhook
        trigger_config: Trigger settings ({cron} / {frequency, time, day} / {identifier, secret})
        steps: Ordered list of step definitions (JSON, camelCase as sent by the builder)
        last_run_at: When the latest run finished
        last_run_status: Status of the latest run
        last_successful_run_at: Start of the latest completed run, seeded into the next run
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_enabled: Mapped[bool] = mapped_column(default=True, index=True)
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value, index=True)
    trigger_config: Mapped[dict] = mapped_column(JSON, default=dict)
    steps: Mapped[list] = mapped_column(JSON, default=list)
    webhook_identifier: Mapped[Optional[str]] = mapped_column(nullable=True, unique=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_status: Mapped[Optional[str]] = mapped_column(nullable=True)
    last_successful_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships raise on lazy access; services load related rows explicitly.
    runs: Mapped[list["ExecutionRun"]] = relationship(
        "ExecutionRun",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    schedule: Mapped[Optional["WorkflowSchedule"]] = relationship(
        "WorkflowSchedule",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
        lazy="raise",
    )
