"""Connection settings of external systems used by integration actions."""

from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class IntegrationConnection(BaseModel):
    """A configured integration.

    Attributes:
        name: Display name
        platform_type: Adapter key (splynx, data_table)
        base_url: API root of the external system
        credentials_encrypted: Fernet token of the adapter credentials
            (apiKey/apiSecret, authHeader, ...) as a JSON object
        settings: Adapter-specific options
        is_active: Inactive connections cannot be used by workflows
    """

    __tablename__ = "integration_connections"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    platform_type: Mapped[str] = mapped_column(nullable=False, index=True)
    base_url: Mapped[str] = mapped_column(nullable=False, default="")
    credentials_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    settings: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
