"""Data source backed by internal tables.

`data_source_query` steps (and the data_table integration) read through
here. Tables are looked up in TABLES; a filter field is either a column
name or a dotted path into a JSON column (`data.region`).
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, cast, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.constants import Aggregation, FilterOperator
from core.exceptions import ValidationError
from core.utils import safe_serialize
from db.models import DataRecord, KeyResult, Objective, WorkItem
from workflow.interfaces import DataQuery, DataSource, ResolvedFilter

logger = logging.getLogger(__name__)

TABLES = {
    "work_items": WorkItem,
    "key_results": KeyResult,
    "objectives": Objective,
    "data_records": DataRecord,
}

_NUMERIC_OPERATORS = {
    FilterOperator.GREATER_THAN,
    FilterOperator.LESS_THAN,
    FilterOperator.GREATER_THAN_OR_EQUAL,
    FilterOperator.LESS_THAN_OR_EQUAL,
}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
            return True
        except ValueError:
            return False
    return False


def _split_list(value: Any) -> list:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if value is None:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


class _Field:
    """A filterable column or JSON path with value coercion."""

    def __init__(self, model, name: str):
        parts = name.split(".")
        if parts[0] not in model.__table__.columns:
            raise ValidationError(f"Unknown field '{name}' for table {model.__tablename__}")
        column = getattr(model, parts[0])
        self.name = name
        self.column = column
        self.json_path = tuple(parts[1:])
        if self.json_path and not isinstance(column.type, JSON):
            raise ValidationError(f"Field '{parts[0]}' is not a JSON column; cannot address '{name}'")

    def expression(self, value: Any = None, numeric: bool = False):
        if not self.json_path:
            return self.column
        element = self.column[self.json_path if len(self.json_path) > 1 else self.json_path[0]]
        if numeric or (_is_number(value) and not isinstance(value, str)):
            return element.as_float()
        return element.as_string()

    def text_expression(self):
        if self.json_path:
            return self.expression(numeric=False)
        if isinstance(self.column.type, String):
            return self.column
        return cast(self.column, String)

    def coerce(self, value: Any) -> Any:
        """Convert a resolved filter value to the column's Python type."""
        if value is None:
            return None
        if self.json_path:
            return float(value) if _is_number(value) and not isinstance(value, str) else str(value)
        column_type = self.column.type
        try:
            if isinstance(column_type, DateTime) and isinstance(value, str):
                return datetime.fromisoformat(value)
            if isinstance(column_type, Date) and isinstance(value, str):
                return date.fromisoformat(value[:10])
            if isinstance(column_type, (Float, Integer)) and not isinstance(value, (int, float)):
                return float(value)
            if isinstance(column_type, Boolean) and isinstance(value, str):
                return value.strip().lower() in ("true", "1", "yes")
        except ValueError:
            raise ValidationError(f"Value '{value}' does not fit field '{self.name}'") from None
        return value


def build_condition(model, flt: ResolvedFilter):
    """Translate one resolved filter into a SQLAlchemy condition."""
    field = _Field(model, flt.field)
    op = flt.operator
    value = flt.value

    if op == FilterOperator.IS_NULL:
        return field.expression().is_(None)
    if op == FilterOperator.NOT_NULL:
        return field.expression().is_not(None)

    if op in (FilterOperator.IN, FilterOperator.NOT_IN):
        values = [field.coerce(v) for v in _split_list(value)]
        condition = field.expression(values[0] if values else None).in_(values)
        return condition if op == FilterOperator.IN else ~condition

    if op in (
        FilterOperator.CONTAINS,
        FilterOperator.NOT_CONTAINS,
        FilterOperator.STARTS_WITH,
        FilterOperator.ENDS_WITH,
    ):
        text = field.text_expression()
        needle = "" if value is None else str(value)
        if op == FilterOperator.CONTAINS:
            return text.contains(needle, autoescape=True)
        if op == FilterOperator.NOT_CONTAINS:
            return ~text.contains(needle, autoescape=True)
        if op == FilterOperator.STARTS_WITH:
            return text.startswith(needle, autoescape=True)
        return text.endswith(needle, autoescape=True)

    if op in _NUMERIC_OPERATORS:
        numeric = field.json_path and _is_number(value)
        target = float(value) if numeric else field.coerce(value)
        expr = field.expression(target, numeric=bool(numeric))
        if op == FilterOperator.GREATER_THAN:
            return expr > target
        if op == FilterOperator.LESS_THAN:
            return expr < target
        if op == FilterOperator.GREATER_THAN_OR_EQUAL:
            return expr >= target
        return expr <= target

    target = field.coerce(value)
    expr = field.expression(target)
    if op == FilterOperator.EQUALS:
        return expr.is_(None) if target is None else expr == target
    return expr.is_not(None) if target is None else expr != target


def row_to_dict(row) -> dict[str, Any]:
    return {
        column.key: safe_serialize(getattr(row, column.key))
        for column in row.__table__.columns
        if column.key not in ("is_deleted", "deleted_at")
    }


class SqlDataSource(DataSource):
    """Runs DataQuery objects against the internal tables."""

    def __init__(self, session_factory: async_sessionmaker, tables: Optional[dict] = None):
        self._session_factory = session_factory
        self._tables = tables or TABLES

    def _model(self, table: str):
        model = self._tables.get(table)
        if model is None:
            raise ValidationError(
                f"Unknown source table '{table}'. Available: {', '.join(sorted(self._tables))}"
            )
        return model

    def _conditions(self, model, query: DataQuery) -> list:
        conditions = [build_condition(model, f) for f in query.filters]
        if hasattr(model, "is_deleted"):
            conditions.append(model.is_deleted == False)
        return conditions

    async def query(self, query: DataQuery) -> Any:
        model = self._model(query.source_table)
        conditions = self._conditions(model, query)

        if query.aggregation == Aggregation.COUNT:
            statement = select(func.count()).select_from(model).where(*conditions)
        elif query.aggregation == Aggregation.LIST:
            statement = select(model).where(*conditions).order_by(model.created_at).limit(query.limit)
        else:
            field = _Field(model, query.aggregation_field)
            expr = field.expression(numeric=True)
            aggregate = {
                Aggregation.SUM: func.sum,
                Aggregation.AVG: func.avg,
                Aggregation.MIN: func.min,
                Aggregation.MAX: func.max,
            }[query.aggregation]
            statement = select(aggregate(expr)).select_from(model).where(*conditions)

        async with self._session_factory() as session:
            result = await session.execute(statement)
            if query.aggregation == Aggregation.LIST:
                rows = [row_to_dict(r) for r in result.scalars().all()]
                logger.debug(f"Query {query.source_table}: {len(rows)} rows")
                return rows
            value = result.scalar()

        if query.aggregation == Aggregation.COUNT:
            return int(value or 0)
        if value is None:
            # Empty sum/avg is 0; empty min/max has no value
            return 0.0 if query.aggregation in (Aggregation.SUM, Aggregation.AVG) else None
        return float(value)
