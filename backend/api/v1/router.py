"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import executions, health, integrations, step_types, webhooks, workflows

api_v1_router = APIRouter()

# Health
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflows
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Executions
api_v1_router.include_router(
    executions.router,
    prefix="/executions",
    tags=["Executions"],
)

# Inbound webhooks
api_v1_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"],
)

# Integration connections
api_v1_router.include_router(
    integrations.router,
    prefix="/integrations",
    tags=["Integrations"],
)

# Step palette for the workflow builder
api_v1_router.include_router(
    step_types.router,
    prefix="/step-types",
    tags=["Step Types"],
)
