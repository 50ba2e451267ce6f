"""Work item store backed by the work_items table."""

import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models import ActivityLog, WorkItem
from workflow.interfaces import WorkItemDraft, WorkItemStore

logger = logging.getLogger(__name__)


class SqlWorkItemStore(WorkItemStore):
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create_work_item(self, draft: WorkItemDraft) -> str:
        async with self._session_factory() as session:
            item = WorkItem(
                title=draft.title,
                description=draft.description,
                status=draft.status,
                due_date=draft.due_date,
                external_reference=draft.external_reference,
                assignee_id=draft.assignee_id,
                workflow_id=draft.workflow_id,
                run_id=draft.run_id,
                data={},
            )
            session.add(item)
            await session.flush()
            session.add(ActivityLog(
                entity_type="work_item",
                entity_id=item.id,
                action="created",
                workflow_id=draft.workflow_id,
                run_id=draft.run_id,
                details={"title": draft.title, "status": draft.status},
            ))
            await session.commit()
            logger.info(f"Work item {item.id} created by run {draft.run_id}: {draft.title}")
            return item.id
