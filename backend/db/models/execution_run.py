"""Execution run model: one end-to-end invocation of a workflow."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RunStatus
from db.base import TimestampedModel


class ExecutionRun(TimestampedModel):
    """Execution run with its ordered step log.

    Attributes:
        workflow_id: Foreign key to Workflow
        status: running, completed or failed
        trigger_source: What started the run (manual, schedule, webhook)
        started_at / completed_at: Run timestamps
        execution_duration: Run duration in milliseconds
        execution_log: Ordered step log entries (JSON)
        result_data: Final variable snapshot of a completed run
        error_message: "Step N (<name>) failed: <error>" for failed runs
        total_steps / steps_completed: Progress counters
    """

    __tablename__ = "execution_runs"
    __table_args__ = (
        # At most one running run per workflow, across every engine sharing the database
        Index(
            "uq_execution_runs_one_running",
            "workflow_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(default=RunStatus.RUNNING.value, index=True)
    trigger_source: Mapped[str] = mapped_column(nullable=False, default="manual")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    execution_duration: Mapped[Optional[int]] = mapped_column(nullable=True)
    execution_log: Mapped[list] = mapped_column(JSON, default=list)
    result_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    total_steps: Mapped[int] = mapped_column(default=0)
    steps_completed: Mapped[int] = mapped_column(default=0)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="runs", lazy="raise"
    )
