"""Workflow endpoints — list, create, get, update, delete, reorder steps, execute, run history."""

from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import PaginationParams
from api.schemas.execution import (
    ExecuteRequest,
    ExecutionListResponse,
    ExecutionResponse,
    RunStartedResponse,
)
from api.schemas.workflow import (
    StepReorderRequest,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowUpdate,
)
from app.dependencies import get_db, get_dispatcher, get_run_recorder
from core.utils import calculate_offset
from services.workflow_service import WorkflowService
from triggers.dispatcher import TriggerDispatcher
from workflow.recorder import RunRecorder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


def _workflow_to_response(wf) -> WorkflowResponse:
    """Convert a Workflow ORM object to response schema."""
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description or "",
        is_enabled=wf.is_enabled,
        trigger_type=wf.trigger_type,
        trigger_config=wf.trigger_config or {},
        steps=wf.steps or [],
        last_run_at=wf.last_run_at,
        last_run_status=wf.last_run_status,
        last_successful_run_at=wf.last_successful_run_at,
        created_at=wf.created_at,
        updated_at=wf.updated_at,
    )


async def _get_or_404(svc: WorkflowService, workflow_id: str):
    wf = await svc.get_by_id(workflow_id)
    if not wf:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )
    return wf


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """
    List workflows (paginated, newest first).
    """
    svc = WorkflowService(db)
    offset = calculate_offset(pagination.page, pagination.per_page)
    workflows, total = await svc.list(offset=offset, limit=pagination.per_page)

    return WorkflowListResponse(
        workflows=[_workflow_to_response(wf) for wf in workflows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Create a workflow. Steps and trigger config are validated up front.
    """
    svc = WorkflowService(db)
    wf = await svc.create_workflow(
        name=request.name,
        description=request.description or "",
        is_enabled=request.is_enabled,
        trigger_type=request.trigger_type.value,
        trigger_config=request.trigger_config,
        steps=request.steps,
    )
    return _workflow_to_response(wf)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Get workflow details by ID.
    """
    wf = await _get_or_404(WorkflowService(db), workflow_id)
    return _workflow_to_response(wf)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Update workflow fields. A `steps` list replaces all steps.
    """
    update_data = request.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )
    if request.trigger_type is not None:
        update_data["trigger_type"] = request.trigger_type.value

    wf = await WorkflowService(db).update_workflow(workflow_id, update_data)
    return _workflow_to_response(wf)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Soft-delete a workflow. Its run history is kept.
    """
    deleted = await WorkflowService(db).delete_workflow(workflow_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )


@router.post("/{workflow_id}/steps/reorder", response_model=WorkflowResponse)
async def reorder_steps(
    workflow_id: str,
    request: StepReorderRequest,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Reorder top-level steps explicitly by id.
    """
    wf = await WorkflowService(db).reorder_steps(workflow_id, request.step_ids)
    return _workflow_to_response(wf)


@router.post("/{workflow_id}/execute", response_model=RunStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteRequest] = None,
    dispatcher: TriggerDispatcher = Depends(get_dispatcher),
) -> RunStartedResponse:
    """
    Start a manual run. Returns 409 while another run of the workflow is active.
    """
    payload = request.payload if request else {}
    run_id = await dispatcher.dispatch_manual(workflow_id, payload)
    return RunStartedResponse(run_id=run_id)


@router.get("/{workflow_id}/runs", response_model=ExecutionListResponse)
async def list_workflow_runs(
    workflow_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    recorder: RunRecorder = Depends(get_run_recorder),
) -> ExecutionListResponse:
    """
    Run history of a workflow, newest first.
    """
    await _get_or_404(WorkflowService(db), workflow_id)
    runs = await recorder.list_runs(workflow_id, limit=limit)
    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(run) for run in runs],
        total=len(runs),
    )
