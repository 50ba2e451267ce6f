"""Execution run schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.constants import RunStatus
from workflow.models import StepLogEntry


class ExecuteRequest(BaseModel):
    """Optional payload for a manual run; seeded into the run's variables."""

    payload: Dict[str, Any] = Field(default_factory=dict, description="Initial variables")


class RunStartedResponse(BaseModel):
    """A run was created and is executing in the background."""

    run_id: str = Field(description="Execution run ID")


class ExecutionResponse(BaseModel):
    """Execution run summary."""

    id: str = Field(description="Execution run ID")
    workflow_id: str = Field(description="Workflow ID")
    status: RunStatus = Field(description="pending, running, completed or failed")
    trigger_source: str = Field(description="How the run was triggered (manual, schedule, webhook)")
    started_at: datetime = Field(description="Run start timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Run completion timestamp")
    execution_duration: Optional[int] = Field(default=None, description="Duration in milliseconds")
    error_message: Optional[str] = Field(default=None, description="Why the run failed")
    total_steps: int = Field(description="Number of top-level steps")
    steps_completed: int = Field(description="Top-level steps processed, including a failing one")

    class Config:
        from_attributes = True


class ExecutionDetailResponse(ExecutionResponse):
    """Execution run with its step log and final variables."""

    execution_log: List[StepLogEntry] = Field(default_factory=list, description="Ordered step log")
    result_data: Optional[Dict[str, Any]] = Field(default=None, description="Final variables of a completed run")


class ExecutionListResponse(BaseModel):
    """Run history of a workflow."""

    executions: List[ExecutionResponse] = Field(description="Runs, newest first")
    total: int = Field(description="Number of runs returned")
