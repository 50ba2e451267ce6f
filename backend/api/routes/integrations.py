"""Integration connection endpoints — platforms, register, list, activate, delete."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.integration import (
    IntegrationActiveRequest,
    IntegrationCreate,
    IntegrationListResponse,
    IntegrationResponse,
    PlatformInfo,
)
from app.dependencies import get_db
from integrations.registry import BUILTIN_ADAPTERS
from services.integration_service import IntegrationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])


def _to_response(row) -> IntegrationResponse:
    return IntegrationResponse(
        id=row.id,
        name=row.name,
        platform_type=row.platform_type,
        base_url=row.base_url or "",
        settings=row.settings or {},
        is_active=row.is_active,
        has_credentials=bool(row.credentials_encrypted),
        created_at=row.created_at,
    )


@router.get("/platforms", response_model=list[PlatformInfo])
async def list_platforms() -> list[PlatformInfo]:
    """Platforms with a built-in adapter."""
    return [
        PlatformInfo(platform_type=key, display_name=cls.display_name, actions=list(cls.actions))
        for key, cls in sorted(BUILTIN_ADAPTERS.items())
    ]


@router.get("/", response_model=IntegrationListResponse)
async def list_integrations(db: AsyncSession = Depends(get_db)) -> IntegrationListResponse:
    rows = await IntegrationService(db).list_connections()
    return IntegrationListResponse(integrations=[_to_response(r) for r in rows], total=len(rows))


@router.post("/", response_model=IntegrationResponse, status_code=status.HTTP_201_CREATED)
async def create_integration(
    request: IntegrationCreate,
    db: AsyncSession = Depends(get_db),
) -> IntegrationResponse:
    """
    Register a connection. Credentials are encrypted at rest and never returned.
    """
    row = await IntegrationService(db).create_connection(
        name=request.name,
        platform_type=request.platform_type,
        base_url=request.base_url,
        credentials=request.credentials,
        settings=request.settings,
        is_active=request.is_active,
    )
    return _to_response(row)


@router.put("/{integration_id}/active", response_model=IntegrationResponse)
async def set_integration_active(
    integration_id: str,
    request: IntegrationActiveRequest,
    db: AsyncSession = Depends(get_db),
) -> IntegrationResponse:
    row = await IntegrationService(db).set_active(integration_id, request.is_active)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
    logger.info(f"Integration {integration_id} active={request.is_active} ({request.reason or 'no reason'})")
    return _to_response(row)


@router.delete("/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(
    integration_id: str,
    db: AsyncSession = Depends(get_db),
) -> None:
    if not await IntegrationService(db).soft_delete(integration_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
