"""
Integration adapter contract.

An adapter talks to one external platform (Splynx, the internal data
tables, ...). The engine never knows which; it asks an AdapterProvider for
the adapter of an integration id and calls `invoke(action, parameters)`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from core.exceptions import AdapterError


@dataclass
class IntegrationConnection:
    """Stored connection details of one configured integration."""

    id: str
    name: str
    platform_type: str
    base_url: str = ""
    credentials: Dict[str, Any] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True


class IntegrationResult:
    """Normalized adapter response: a count, records, or both."""

    def __init__(
        self,
        count: Optional[int] = None,
        records: Optional[List[Dict[str, Any]]] = None,
        record: Optional[Dict[str, Any]] = None,
    ):
        self.count = count
        self.records = records
        self.record = record

    @property
    def value(self) -> Any:
        """What a step's resultVariable receives.

        Count-only results store the number, list results the records,
        single-record results the record itself.
        """
        if self.record is not None:
            return self.record
        if self.records is not None:
            return self.records
        return self.count

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.count is not None:
            data["count"] = self.count
        if self.records is not None:
            data["records"] = self.records
        if self.record is not None:
            data["record"] = self.record
        return data


class IntegrationAdapter(ABC):
    """
    Abstract base class for platform adapters.

    Subclasses set `platform_type`, list their actions in `actions` and
    implement `invoke()`. Failures must surface as AdapterError with a
    message fit for the step log.
    """

    platform_type: str = "base"
    display_name: str = "Base Adapter"
    actions: tuple = ()

    def __init__(self, connection: IntegrationConnection, client: Optional[httpx.AsyncClient] = None):
        self.connection = connection
        self._client = client
        self._owns_client = client is None

    @abstractmethod
    async def invoke(self, action: str, parameters: Dict[str, Any]) -> IntegrationResult:
        ...

    def ensure_action(self, action: str) -> None:
        if action not in self.actions:
            raise AdapterError(
                f"{self.display_name} does not support action '{action}'. "
                f"Available: {', '.join(self.actions)}"
            )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class AdapterProvider(ABC):
    """Looks up the adapter serving an integration id."""

    @abstractmethod
    async def get_adapter(self, integration_id: str) -> IntegrationAdapter:
        """
        Raises:
            NotFoundError: If no active integration has this id
            AdapterError: If no adapter serves its platform type
        """
        ...
