"""
Homework Models

Assignments set for a class and the per-child submissions made by parents.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel


class HomeworkStatus(str, Enum):
    """Status of a homework item for one child. Derived, not stored."""

    PENDING = "pending"
    OVERDUE = "overdue"
    SUBMITTED = "submitted"
    GRADED = "graded"


class Homework(BaseModel):
    __tablename__ = "homework"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    attachment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    class_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    teacher_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Homework(id={self.id}, title={self.title})>"


class HomeworkSubmission(BaseModel):
    __tablename__ = "homework_submissions"
    __table_args__ = (
        UniqueConstraint("homework_id", "child_id", name="uq_homework_submission_child"),
    )

    homework_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("homework.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    child_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("children.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    graded_by: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
    )
