"""Integration connection service."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ValidationError
from core.security import get_vault
from db.models import IntegrationConnection as IntegrationConnectionRow
from integrations.base import IntegrationConnection
from integrations.registry import BUILTIN_ADAPTERS
from services.base import BaseService

logger = logging.getLogger(__name__)


def to_connection(row: IntegrationConnectionRow) -> IntegrationConnection:
    """Runtime view of a stored connection, credentials decrypted."""
    credentials = get_vault().decrypt_json(row.credentials_encrypted) if row.credentials_encrypted else {}
    return IntegrationConnection(
        id=row.id,
        name=row.name,
        platform_type=row.platform_type,
        base_url=row.base_url or "",
        credentials=credentials,
        settings=dict(row.settings or {}),
        is_active=row.is_active,
    )


class IntegrationService(BaseService[IntegrationConnectionRow]):
    """CRUD for integration connections."""

    def __init__(self, db: AsyncSession):
        super().__init__(IntegrationConnectionRow, db)

    async def create_connection(
        self,
        name: str,
        platform_type: str,
        base_url: str = "",
        credentials: Optional[dict[str, Any]] = None,
        settings: Optional[dict[str, Any]] = None,
        is_active: bool = True,
    ) -> IntegrationConnectionRow:
        """Store a connection; credentials are encrypted before they reach the database.

        Raises:
            ValidationError: Unknown platform type or missing ENCRYPTION_KEY
        """
        if platform_type not in BUILTIN_ADAPTERS:
            raise ValidationError(
                f"Unknown platform type '{platform_type}'. Available: {', '.join(sorted(BUILTIN_ADAPTERS))}"
            )
        row = await self.create({
            "name": name,
            "platform_type": platform_type,
            "base_url": base_url or "",
            "credentials_encrypted": get_vault().encrypt_json(credentials) if credentials else None,
            "settings": settings or {},
            "is_active": is_active,
        })
        logger.info(f"Integration {row.id} created ({platform_type})")
        return row

    async def set_active(self, integration_id: str, is_active: bool) -> Optional[IntegrationConnectionRow]:
        return await self.update(integration_id, {"is_active": is_active})

    async def list_connections(self) -> Sequence[IntegrationConnectionRow]:
        result = await self.db.execute(
            select(IntegrationConnectionRow)
            .where(IntegrationConnectionRow.is_deleted == False)
            .order_by(IntegrationConnectionRow.created_at)
        )
        return result.scalars().all()

    async def get_connection(self, integration_id: str) -> Optional[IntegrationConnection]:
        row = await self.get_by_id(integration_id)
        return to_connection(row) if row else None


def connection_loader(session_factory: async_sessionmaker):
    """Async loader used by the IntegrationRegistry."""

    async def load(integration_id: str) -> Optional[IntegrationConnection]:
        async with session_factory() as session:
            return await IntegrationService(session).get_connection(integration_id)

    return load
