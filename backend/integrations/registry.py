"""
Integration Registry.

Maps a platform type (`splynx`, `data_table`, ...) to its adapter class and
builds the adapter for a stored integration connection on demand.
"""

from typing import Awaitable, Callable, Dict, Optional, Type

import httpx
import structlog

from core.exceptions import AdapterError, NotFoundError
from integrations.base import AdapterProvider, IntegrationAdapter, IntegrationConnection
from integrations.data_tables import DataTableAdapter
from integrations.splynx import SplynxAdapter
from workflow.interfaces import DataSource

logger = structlog.get_logger(__name__)

ConnectionLoader = Callable[[str], Awaitable[Optional[IntegrationConnection]]]

BUILTIN_ADAPTERS: Dict[str, Type[IntegrationAdapter]] = {
    SplynxAdapter.platform_type: SplynxAdapter,
    DataTableAdapter.platform_type: DataTableAdapter,
}


class IntegrationRegistry(AdapterProvider):
    """Resolves integration ids to ready-to-use adapters.

    Args:
        load_connection: Async lookup of a connection by id (None if missing)
        data_source: Backing data source for the data_table adapter
        http_client: Optional shared client for HTTP adapters (tests pass a
            client with httpx.MockTransport)
    """

    def __init__(
        self,
        load_connection: ConnectionLoader,
        data_source: Optional[DataSource] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._load_connection = load_connection
        self._data_source = data_source
        self._http_client = http_client
        self._adapters: Dict[str, Type[IntegrationAdapter]] = dict(BUILTIN_ADAPTERS)

    def register(self, platform_type: str, adapter_class: Type[IntegrationAdapter]) -> None:
        self._adapters[platform_type] = adapter_class

    @property
    def platform_types(self) -> list:
        return sorted(self._adapters)

    def create_adapter(self, connection: IntegrationConnection) -> IntegrationAdapter:
        adapter_class = self._adapters.get(connection.platform_type)
        if adapter_class is None:
            raise AdapterError(
                f"No adapter for platform type '{connection.platform_type}'. "
                f"Available: {', '.join(self.platform_types)}"
            )
        if issubclass(adapter_class, DataTableAdapter):
            return adapter_class(connection, data_source=self._data_source)
        return adapter_class(connection, client=self._http_client)

    async def get_adapter(self, integration_id: str) -> IntegrationAdapter:
        connection = await self._load_connection(integration_id)
        if connection is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        if not connection.is_active:
            raise AdapterError(f"Integration '{connection.name}' is inactive")
        logger.debug(
            "Resolved integration",
            integration_id=integration_id,
            platform_type=connection.platform_type,
        )
        return self.create_adapter(connection)
