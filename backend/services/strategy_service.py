"""Strategy (OKR) store backed by the key_results / objectives tables.

Every write also records an ActivityLog row naming the workflow run that
made the change.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.constants import StrategyTarget, UpdateType
from db.models import ActivityLog, KeyResult, Objective
from workflow.interfaces import AuditContext, StrategyStore, StrategyTargetState

logger = logging.getLogger(__name__)

_MODELS = {
    StrategyTarget.KEY_RESULT: KeyResult,
    StrategyTarget.OBJECTIVE: Objective,
}


class SqlStrategyStore(StrategyStore):
    """StrategyStore writing through short-lived SQLAlchemy sessions."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_target(
        self, target_type: StrategyTarget, target_id: str
    ) -> Optional[StrategyTargetState]:
        model = _MODELS[target_type]
        async with self._session_factory() as session:
            row = await session.get(model, target_id)
            if row is None or row.is_deleted:
                return None
            return StrategyTargetState(
                target_type=target_type,
                target_id=row.id,
                title=row.title,
                current_value=row.current_value,
                target_value=row.target_value,
            )

    async def write_value(
        self,
        state: StrategyTargetState,
        new_value: float,
        update_type: UpdateType,
        audit: AuditContext,
    ) -> None:
        model = _MODELS[state.target_type]
        async with self._session_factory() as session:
            row = await session.get(model, state.target_id)
            old_value = row.current_value
            row.current_value = new_value
            session.add(ActivityLog(
                entity_type=state.target_type.value,
                entity_id=state.target_id,
                action="updated",
                old_value=old_value,
                new_value=new_value,
                workflow_id=audit.workflow_id,
                workflow_name=audit.workflow_name,
                run_id=audit.run_id,
                details={
                    "update_type": update_type.value,
                    "trigger_source": audit.trigger_source,
                    "step_name": audit.step_name,
                    "title": state.title,
                },
            ))
            await session.commit()
        logger.info(
            f"{state.target_type.value} {state.target_id} updated "
            f"{old_value} -> {new_value} by run {audit.run_id}"
        )
