"""Execution run endpoints — run details and step log."""

from typing import List

from fastapi import APIRouter, Depends
import logging

from api.schemas.execution import ExecutionDetailResponse
from app.dependencies import get_run_recorder
from workflow.models import StepLogEntry
from workflow.recorder import RunRecorder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


@router.get("/{run_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    run_id: str,
    recorder: RunRecorder = Depends(get_run_recorder),
) -> ExecutionDetailResponse:
    """
    Get a run with its status, step log and final variables.
    Poll this endpoint until the status is completed or failed.
    """
    run = await recorder.get_run(run_id)
    return ExecutionDetailResponse.model_validate(run)


@router.get("/{run_id}/log", response_model=List[StepLogEntry])
async def get_execution_log(
    run_id: str,
    recorder: RunRecorder = Depends(get_run_recorder),
) -> List[StepLogEntry]:
    """
    Get only the ordered step log of a run.
    """
    run = await recorder.get_run(run_id)
    return run.execution_log
