"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.activity_log import ActivityLog
from db.models.data_record import DataRecord
from db.models.execution_run import ExecutionRun
from db.models.integration_connection import IntegrationConnection
from db.models.schedule import WorkflowSchedule
from db.models.strategy import KeyResult, Objective
from db.models.work_item import WorkItem
from db.models.workflow import Workflow

__all__ = [
    "ActivityLog",
    "DataRecord",
    "ExecutionRun",
    "IntegrationConnection",
    "KeyResult",
    "Objective",
    "WorkItem",
    "Workflow",
    "WorkflowSchedule",
]
