"""
User Repository

Database operations for parent and staff accounts.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.users.models import Staff, StaffRole, User, UserRole

logger = logging.getLogger(__name__)

Account = User | Staff


class UserRepository:
    """Repository for parent accounts."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        address: str | None = None,
    ) -> User:
        user = User(
            email=email.lower(),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            address=address,
        )

        db.add(user)
        await db.flush()
        await db.refresh(user)

        logger.info(f"Created parent account: {user.id} - {user.email}")
        return user

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: str) -> User | None:
        result = await db.execute(select(User).where(User.id == str(user_id)))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
        return result.scalar_one_or_none()

    @staticmethod
    async def email_exists(db: AsyncSession, email: str) -> bool:
        return await UserRepository.get_by_email(db, email) is not None

    @staticmethod
    async def list_active(db: AsyncSession) -> list[User]:
        result = await db.execute(
            select(User).where(User.is_active.is_(True)).order_by(User.first_name, User.last_name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_all(db: AsyncSession) -> list[User]:
        result = await db.execute(select(User).order_by(User.first_name, User.last_name))
        return list(result.scalars().all())

    @staticmethod
    async def get_many(db: AsyncSession, user_ids: list[str]) -> list[User]:
        if not user_ids:
            return []
        result = await db.execute(select(User).where(User.id.in_(user_ids)))
        return list(result.scalars().all())


class StaffRepository:
    """Repository for teacher and admin accounts."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: StaffRole,
        phone: str | None = None,
    ) -> Staff:
        staff = Staff(
            email=email.lower(),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
            phone=phone,
        )

        db.add(staff)
        await db.flush()
        await db.refresh(staff)

        logger.info(f"Created staff account: {staff.id} - {staff.email} ({staff.role.value})")
        return staff

    @staticmethod
    async def get_by_id(db: AsyncSession, staff_id: str) -> Staff | None:
        result = await db.execute(select(Staff).where(Staff.id == str(staff_id)))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str, role: StaffRole) -> Staff | None:
        result = await db.execute(
            select(Staff).where(func.lower(Staff.email) == email.lower(), Staff.role == role)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_role(
        db: AsyncSession, role: StaffRole, include_inactive: bool = False
    ) -> list[Staff]:
        stmt = select(Staff).where(Staff.role == role)
        if not include_inactive:
            stmt = stmt.where(Staff.is_active.is_(True))
        result = await db.execute(stmt.order_by(Staff.first_name, Staff.last_name))
        return list(result.scalars().all())

    @staticmethod
    async def email_taken(db: AsyncSession, email: str, exclude_id: str | None = None) -> bool:
        """True if any staff account other than ``exclude_id`` uses this email."""
        stmt = select(Staff.id).where(func.lower(Staff.email) == email.lower())
        if exclude_id is not None:
            stmt = stmt.where(Staff.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_many(db: AsyncSession, staff_ids: list[str]) -> list[Staff]:
        if not staff_ids:
            return []
        result = await db.execute(select(Staff).where(Staff.id.in_(staff_ids)))
        return list(result.scalars().all())


async def get_account(db: AsyncSession, role: str, account_id: str) -> Account | None:
    """
    Load an account by role and id.

    Parents resolve against ``users``; teachers and admins against ``staff``
    and must hold that role.
    """
    if role == UserRole.PARENT.value:
        return await UserRepository.get_by_id(db, account_id)

    staff = await StaffRepository.get_by_id(db, account_id)
    if staff is None or staff.role.value != role:
        return None
    return staff


async def get_account_by_email(db: AsyncSession, role: str, email: str) -> Account | None:
    if role == UserRole.PARENT.value:
        return await UserRepository.get_by_email(db, email)
    return await StaffRepository.get_by_email(db, email, StaffRole(role))


async def update_account(db: AsyncSession, account: Account, fields: dict) -> Account:
    for key, value in fields.items():
        setattr(account, key, value)
    await db.flush()
    return account


async def delete_account(db: AsyncSession, account: Account) -> None:
    await db.delete(account)
    await db.flush()
    logger.info(f"Deleted {account.role.value} account: {account.id}")


async def update_password_hash(db: AsyncSession, account: Account, password_hash: str) -> None:
    account.password_hash = password_hash
    await db.flush()


async def record_login(db: AsyncSession, account: Account) -> None:
    model = type(account)
    await db.execute(
        update(model).where(model.id == account.id).values(last_login_at=datetime.now(UTC))
    )


async def get_display_names(
    db: AsyncSession,
    participants: list[tuple[str, str]],
) -> dict[tuple[str, str], str]:
    """
    Resolve display names for (id, role) pairs.

    Returns:
        Mapping of (id, role) to "First Last"; unknown accounts are omitted
    """
    parent_ids = sorted({pid for pid, role in participants if role == UserRole.PARENT.value})
    staff_ids = sorted({pid for pid, role in participants if role != UserRole.PARENT.value})

    names: dict[tuple[str, str], str] = {}
    for user in await UserRepository.get_many(db, parent_ids):
        names[(user.id, UserRole.PARENT.value)] = user.full_name
    for staff in await StaffRepository.get_many(db, staff_ids):
        names[(staff.id, staff.role.value)] = staff.full_name
    return names
