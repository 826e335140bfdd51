"""
Class Models

A preschool class (group of children) with an assigned teacher.
"""

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel

DEFAULT_MAX_STUDENTS = 20


class SchoolClass(BaseModel):
    __tablename__ = "classes"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    age_group: Mapped[str | None] = mapped_column(String(50), nullable=True)
    room: Mapped[str | None] = mapped_column(String(50), nullable=True)
    schedule: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_students: Mapped[int] = mapped_column(Integer, default=DEFAULT_MAX_STUDENTS, nullable=False)

    # ON DELETE SET NULL: removing a teacher leaves the class unassigned
    teacher_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<SchoolClass(id={self.id}, name={self.name})>"
