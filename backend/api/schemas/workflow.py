"""Workflow schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any

from core.constants import TriggerType


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: Optional[str] = Field(default="", description="Workflow description")
    is_enabled: bool = Field(default=True, description="Whether triggers may start the workflow")
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL, description="manual, schedule or webhook")
    trigger_config: Dict[str, Any] = Field(default_factory=dict, description="Trigger settings")
    steps: List[Dict[str, Any]] = Field(default_factory=list, description="Ordered step definitions")


class WorkflowUpdate(BaseModel):
    """Request to update a workflow. Omitted fields are kept."""

    name: Optional[str] = Field(default=None, min_length=1, description="Workflow name")
    description: Optional[str] = Field(default=None, description="Workflow description")
    is_enabled: Optional[bool] = Field(default=None, description="Whether workflow is enabled")
    trigger_type: Optional[TriggerType] = Field(default=None, description="manual, schedule or webhook")
    trigger_config: Optional[Dict[str, Any]] = Field(default=None, description="Trigger settings")
    steps: Optional[List[Dict[str, Any]]] = Field(default=None, description="Replaces all steps")


class StepReorderRequest(BaseModel):
    """New order of the top-level steps, by step id."""

    step_ids: List[str] = Field(min_length=1, description="Every top-level step id exactly once")


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    is_enabled: bool = Field(description="Whether workflow is enabled")
    trigger_type: str = Field(description="manual, schedule or webhook")
    trigger_config: Dict[str, Any] = Field(description="Trigger settings")
    steps: List[Dict[str, Any]] = Field(description="Ordered step definitions")
    last_run_at: Optional[datetime] = Field(default=None, description="When the latest run finished")
    last_run_status: Optional[str] = Field(default=None, description="Status of the latest run")
    last_successful_run_at: Optional[datetime] = Field(default=None, description="Start of the latest completed run")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    class Config:
        from_attributes = True


class WorkflowListResponse(BaseModel):
    """Paginated list of workflows."""

    workflows: List[WorkflowResponse] = Field(description="List of workflows")
    total: int = Field(description="Total number of workflows")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")
