"""
Create Work Item Task — Open a task in the work tracker.
"""

from core.constants import StepType
from core.exceptions import FatalEngineError, ValidationError
from tasks.base_task import BaseTask, TaskResult
from workflow.context import StepContext
from workflow.dates import parse_due_date
from workflow.expressions import resolve_text
from workflow.interfaces import WorkItemDraft
from workflow.models import CreateWorkItemConfig


class CreateWorkItemTask(BaseTask):
    task_type = StepType.CREATE_WORK_ITEM
    display_name = "Create Work Item"
    description = "Create a work item with an interpolated title and an optional due date"

    async def execute(self, config: CreateWorkItemConfig, ctx: StepContext) -> TaskResult:
        store = ctx.services.work_item_store
        if store is None:
            raise FatalEngineError("No work item store configured")

        title = resolve_text(config.title, ctx.store, ctx.now).strip()
        if not title:
            raise ValidationError("Work item title resolved to an empty value")

        due_date = None
        if config.due_date:
            text = resolve_text(config.due_date, ctx.store, ctx.now, strict=True)
            due_date = parse_due_date(text, ctx.now)

        draft = WorkItemDraft(
            title=title,
            status=resolve_text(config.status, ctx.store, ctx.now),
            description=(
                resolve_text(config.description, ctx.store, ctx.now)
                if config.description else None
            ),
            due_date=due_date,
            external_reference=(
                resolve_text(config.external_reference, ctx.store, ctx.now)
                if config.external_reference else None
            ),
            assignee_id=(
                resolve_text(config.assignee_id, ctx.store, ctx.now)
                if config.assignee_id else None
            ),
            workflow_id=ctx.workflow_id,
            run_id=ctx.run_id,
        )
        work_item_id = await store.create_work_item(draft)
        return TaskResult(
            success=True,
            output={
                "workItemId": work_item_id,
                "title": title,
                "status": draft.status,
                "dueDate": due_date.isoformat() if due_date else None,
            },
            value=work_item_id,
        )


WORK_ITEM_TASK_TYPES = {
    StepType.CREATE_WORK_ITEM: CreateWorkItemTask,
}
