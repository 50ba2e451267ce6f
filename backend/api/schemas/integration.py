"""Integration connection schemas. Credentials are write-only."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IntegrationCreate(BaseModel):
    """Request to register an integration connection."""

    name: str = Field(min_length=1, description="Display name")
    platform_type: str = Field(min_length=1, description="Adapter key, e.g. splynx or data_table")
    base_url: str = Field(default="", description="API root of the external system")
    credentials: Dict[str, Any] = Field(default_factory=dict, description="Stored encrypted")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Adapter options")
    is_active: bool = Field(default=True, description="Whether workflows may use it")


class IntegrationResponse(BaseModel):
    """Integration connection without its credentials."""

    id: str
    name: str
    platform_type: str
    base_url: str
    settings: Dict[str, Any]
    is_active: bool
    has_credentials: bool = Field(description="Whether credentials are stored")
    created_at: datetime


class IntegrationListResponse(BaseModel):
    integrations: List[IntegrationResponse]
    total: int


class PlatformInfo(BaseModel):
    """A supported platform and the actions its adapter offers."""

    platform_type: str
    display_name: str
    actions: List[str]


class IntegrationActiveRequest(BaseModel):
    is_active: bool
    reason: Optional[str] = Field(default=None, description="Logged only")
