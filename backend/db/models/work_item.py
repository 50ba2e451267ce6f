"""Work items created by people or by workflows."""

from datetime import date
from typing import Optional

from sqlalchemy import JSON, Date
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import DEFAULT_WORK_ITEM_STATUS
from db.base import BaseModel


class WorkItem(BaseModel):
    """A task in the work tracker.

    Attributes:
        title: Work item title
        description: Free-text description
        status: Board column (Planning, In Progress, Done, ...)
        due_date: Optional due date
        external_reference: Id of the record in an external system (e.g. a Splynx customer)
        assignee_id: Optional assignee
        workflow_id / run_id: Set when a workflow created the item
        data: Extra attributes, addressable by data_source_query as data.<key>
    """

    __tablename__ = "work_items"

    title: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default=DEFAULT_WORK_ITEM_STATUS, index=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    external_reference: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    workflow_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    run_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
