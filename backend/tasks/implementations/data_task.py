"""
Data Tasks — Query internal tables and compute derived numbers.
"""

from core.constants import StepType
from core.exceptions import FatalEngineError
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.expressions import evaluate_formula, resolve_value
from workflow.interfaces import DataQuery, ResolvedFilter
from workflow.models import DataSourceQueryConfig, DataTransformationConfig


class DataSourceQueryTask(BaseTask):
    """Count, aggregate or list rows of an internal table."""

    task_type = StepType.DATA_SOURCE_QUERY
    display_name = "Query Data Source"
    description = "Filter an internal table and return a count, an aggregate or the rows"

    async def execute(self, config: DataSourceQueryConfig, ctx: StepContext) -> TaskResult:
        source = ctx.services.data_source
        if source is None:
            raise FatalEngineError("No data source configured")

        filters = [
            ResolvedFilter(
                field=f.field,
                operator=f.operator,
                value=resolve_value(f.value, ctx.store, ctx.now),
            )
            for f in config.filters
        ]
        query = DataQuery(
            source_table=config.source_table,
            filters=filters,
            aggregation=config.aggregation,
            aggregation_field=config.aggregation_field,
            limit=config.limit,
        )
        result = await source.query(query)
        return TaskResult(
            success=True,
            output=result,
            metadata={
                "source_table": config.source_table,
                "aggregation": config.aggregation.value,
                "filters": len(filters),
            },
        )


class DataTransformationTask(BaseTask):
    """Evaluate an arithmetic formula over workflow variables."""

    task_type = StepType.DATA_TRANSFORMATION
    display_name = "Transform Data"
    description = "Compute a number from variables, e.g. {won} / {total} * 100"

    async def execute(self, config: DataTransformationConfig, ctx: StepContext) -> TaskResult:
        value = evaluate_formula(config.formula, ctx.store, ctx.now, precision=config.precision)
        return TaskResult(success=True, output=value, metadata={"formula": config.formula})


DATA_TASK_TYPES = {
    StepType.DATA_SOURCE_QUERY: DataSourceQueryTask,
    StepType.DATA_TRANSFORMATION: DataTransformationTask,
}
