"""Wire SQL-backed collaborators into the engine's RunServices."""

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from integrations.registry import IntegrationRegistry
from notifications.manager import NotificationManager, get_notification_manager
from services.data_source_service import SqlDataSource
from services.integration_service import connection_loader
from services.strategy_service import SqlStrategyStore
from services.work_item_service import SqlWorkItemStore
from workflow.context import RunServices


def build_run_services(
    session_factory: async_sessionmaker,
    http_client: Optional[httpx.AsyncClient] = None,
    notifier: Optional[NotificationManager] = None,
) -> RunServices:
    data_source = SqlDataSource(session_factory)
    return RunServices(
        strategy_store=SqlStrategyStore(session_factory),
        work_item_store=SqlWorkItemStore(session_factory),
        data_source=data_source,
        integrations=IntegrationRegistry(
            connection_loader(session_factory),
            data_source=data_source,
            http_client=http_client,
        ),
        notifier=notifier or get_notification_manager(),
    )
