"""Step Types API routes.

Exposes the available step types and their config schemas to the workflow builder.
"""

from fastapi import APIRouter, HTTPException, status

from core.constants import StepType
from tasks.registry import get_task_registry

router = APIRouter()


@router.get("/", summary="List all available step types")
async def list_step_types():
    """Get all registered step types with their config schemas.

    Used by the workflow builder to populate the step palette.
    """
    registry = get_task_registry()
    return {
        "step_types": registry.list_all(),
        "count": len(registry.available_types),
    }


@router.get("/{step_type}", summary="Get step type details")
async def get_step_type(step_type: str):
    """Get details and config schema for a specific step type."""
    registry = get_task_registry()
    try:
        task_class = registry.get(StepType(step_type))
    except ValueError:
        task_class = None
    if not task_class:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown step type: {step_type}",
        )
    return {
        "step_type": task_class.task_type.value,
        "display_name": task_class.display_name,
        "description": task_class.description,
        "config_schema": task_class.get_config_schema(),
    }
