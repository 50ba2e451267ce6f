"""At-most-one running execution per workflow.

The lock is taken before the run row is created and released when the run
finalizes. A trigger that finds the lock held is skipped; it never queues
and never creates a run.
"""

from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class RunLock:
    """In-process lock table keyed by workflow id.

    Acquire and release never await, so check-and-set is atomic within the
    event loop.
    """

    def __init__(self):
        self._holders: dict[str, str] = {}

    def try_acquire(self, workflow_id: str, owner: str) -> bool:
        if workflow_id in self._holders:
            logger.info(
                "Workflow already running, trigger skipped",
                workflow_id=workflow_id,
                holder=self._holders[workflow_id],
            )
            return False
        self._holders[workflow_id] = owner
        return True

    def release(self, workflow_id: str, owner: Optional[str] = None) -> None:
        holder = self._holders.get(workflow_id)
        if holder is None:
            return
        if owner is not None and holder != owner:
            logger.warning("Run lock release by non-holder ignored", workflow_id=workflow_id, owner=owner)
            return
        del self._holders[workflow_id]

    def transfer(self, workflow_id: str, owner: str) -> None:
        """Re-key a held lock (e.g. from a placeholder to the created run id)."""
        if workflow_id in self._holders:
            self._holders[workflow_id] = owner

    def is_locked(self, workflow_id: str) -> bool:
        return workflow_id in self._holders

    def holder(self, workflow_id: str) -> Optional[str]:
        return self._holders.get(workflow_id)


# ─── Singleton ─────────────────────────────────────────────────

_run_lock: Optional[RunLock] = None


def get_run_lock() -> RunLock:
    global _run_lock
    if _run_lock is None:
        _run_lock = RunLock()
    return _run_lock
