"""Strategy (OKR) models: objectives and their key results."""

from typing import Optional

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class Objective(BaseModel):
    """A strategic objective.

    Attributes:
        title: Objective title
        description: Free-text description
        current_value: Current progress value
        target_value: Value that counts as fully achieved
        unit: Display unit (%, EUR, customers, ...)
    """

    __tablename__ = "objectives"

    title: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    current_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    target_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(nullable=True)

    key_results: Mapped[list["KeyResult"]] = relationship(
        "KeyResult",
        back_populates="objective",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )


class KeyResult(BaseModel):
    """A measurable key result, usually updated by workflows."""

    __tablename__ = "key_results"

    objective_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("objectives.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(nullable=False, index=True)
    start_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    current_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    target_value: Mapped[Optional[float]] = mapped_column(nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(nullable=True)

    objective: Mapped[Optional["Objective"]] = relationship(
        "Objective", back_populates="key_results", lazy="raise"
    )
