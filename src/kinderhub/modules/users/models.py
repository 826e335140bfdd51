"""
User Models

Account tables. Parents are stored in ``users``; teachers and admins in
``staff``. Password hashes may be bcrypt or legacy PBKDF2 ``salt:hash``.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel, pg_enum


class UserRole(str, Enum):
    """Roles known to the platform."""

    PARENT = "parent"
    TEACHER = "teacher"
    ADMIN = "admin"


class StaffRole(str, Enum):
    TEACHER = "teacher"
    ADMIN = "admin"


class User(BaseModel):
    """A parent account."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Billing
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def role(self) -> UserRole:
        return UserRole.PARENT

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Staff(BaseModel):
    """A teacher or admin account."""

    __tablename__ = "staff"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    role: Mapped[StaffRole] = mapped_column(
        pg_enum(StaffRole, "staff_role"),
        nullable=False,
        default=StaffRole.TEACHER,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Staff(id={self.id}, email={self.email}, role={self.role.value})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
