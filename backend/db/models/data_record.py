"""Generic data rows imported into internal data tables."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import TimestampedModel


class DataRecord(TimestampedModel):
    """A row of a named dataset.

    Attributes:
        dataset: Name of the dataset the row belongs to
        category: Optional grouping column
        status: Optional status column
        amount: Optional numeric column for aggregations
        data: Row payload, addressable by data_source_query as data.<key>
    """

    __tablename__ = "data_records"

    dataset: Mapped[str] = mapped_column(nullable=False, index=True)
    category: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    amount: Mapped[Optional[float]] = mapped_column(nullable=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
