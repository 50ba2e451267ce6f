"""
Data Table Adapter — expose internal tables through integration actions.

Lets a workflow count or list rows of an internal table with the same
integration_action step used for external systems. Queries go through the
engine's DataSource, so filters and table names follow data_source_query.
"""

from typing import Any, Dict, Optional

from core.constants import Aggregation, FilterOperator
from core.exceptions import AdapterError, ValidationError
from integrations.base import IntegrationAdapter, IntegrationConnection, IntegrationResult
from workflow.interfaces import DataQuery, DataSource, ResolvedFilter


class DataTableAdapter(IntegrationAdapter):
    platform_type = "data_table"
    display_name = "Data Tables"
    actions = ("count", "list")

    def __init__(self, connection: IntegrationConnection, data_source: Optional[DataSource] = None):
        super().__init__(connection)
        if data_source is None:
            raise AdapterError("Data table integration needs a data source")
        self._data_source = data_source

    def _query(self, aggregation: Aggregation, parameters: Dict[str, Any]) -> DataQuery:
        table = parameters.get("table") or self.connection.settings.get("table")
        if not table:
            raise AdapterError("Data table action requires a 'table' parameter")

        filters = []
        for raw in parameters.get("filters") or []:
            if not isinstance(raw, dict) or not raw.get("field"):
                raise AdapterError(f"Invalid filter: {raw!r}")
            try:
                operator = FilterOperator(raw.get("operator", FilterOperator.EQUALS.value))
            except ValueError:
                raise AdapterError(f"Unknown filter operator '{raw.get('operator')}'") from None
            filters.append(ResolvedFilter(field=raw["field"], operator=operator, value=raw.get("value")))

        return DataQuery(
            source_table=table,
            filters=filters,
            aggregation=aggregation,
            limit=int(parameters.get("limit") or 1000),
        )

    async def invoke(self, action: str, parameters: Dict[str, Any]) -> IntegrationResult:
        self.ensure_action(action)
        aggregation = Aggregation.COUNT if action == "count" else Aggregation.LIST
        try:
            result: Any = await self._data_source.query(self._query(aggregation, parameters))
        except ValidationError as e:
            raise AdapterError(e.message) from e
        if action == "count":
            return IntegrationResult(count=int(result))
        return IntegrationResult(count=len(result), records=result)
