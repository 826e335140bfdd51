"""
Account Management Service

Admin operations on teacher and parent accounts. Setting a password,
deactivating or deleting an account signs out all of its sessions.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core import sessions
from kinderhub.core.exceptions import ConflictError, NotFoundError
from kinderhub.core.security import hash_password
from kinderhub.modules.users import repository
from kinderhub.modules.users.models import Staff, StaffRole, User
from kinderhub.modules.users.repository import Account, StaffRepository, UserRepository
from kinderhub.modules.users.schemas import AccountCreate, AccountUpdate, ParentCreate, ParentUpdate

logger = logging.getLogger(__name__)

# Fields an update may clear by sending null
CLEARABLE_FIELDS = frozenset({"phone", "address"})


def _changes(data: AccountUpdate) -> dict:
    fields = data.model_dump(exclude_unset=True)
    return {k: v for k, v in fields.items() if v is not None or k in CLEARABLE_FIELDS}


def _email_in_use(email: str) -> ConflictError:
    return ConflictError(f"An account with email {email} already exists.", "EMAIL_EXISTS")


async def _apply_update(db: AsyncSession, account: Account, fields: dict) -> Account:
    password = fields.pop("password", None)
    if password is not None:
        fields["password_hash"] = hash_password(password)

    account = await repository.update_account(db, account, fields)

    if password is not None or fields.get("is_active") is False:
        await sessions.revoke_all_sessions(account.role.value, str(account.id))
    return account


# ============================================
# Teachers
# ============================================


async def list_teachers(db: AsyncSession) -> list[Staff]:
    return await StaffRepository.list_by_role(db, StaffRole.TEACHER, include_inactive=True)


async def get_teacher(db: AsyncSession, teacher_id: str) -> Staff:
    teacher = await StaffRepository.get_by_id(db, teacher_id)
    if teacher is None or teacher.role != StaffRole.TEACHER:
        raise NotFoundError("Teacher")
    return teacher


async def create_teacher(db: AsyncSession, data: AccountCreate) -> Staff:
    if await StaffRepository.email_taken(db, data.email):
        raise _email_in_use(data.email)

    teacher = await StaffRepository.create(
        db,
        email=data.email,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role=StaffRole.TEACHER,
        phone=data.phone,
    )
    logger.info(f"Teacher account created: {teacher.id}")
    return teacher


async def update_teacher(db: AsyncSession, teacher_id: str, data: AccountUpdate) -> Staff:
    teacher = await get_teacher(db, teacher_id)
    fields = _changes(data)

    if fields.get("email"):
        fields["email"] = fields["email"].lower()
        if await StaffRepository.email_taken(db, fields["email"], exclude_id=teacher.id):
            raise _email_in_use(fields["email"])

    return await _apply_update(db, teacher, fields)


async def reset_teacher_password(db: AsyncSession, teacher_id: str, new_password: str) -> None:
    teacher = await get_teacher(db, teacher_id)
    await repository.update_password_hash(db, teacher, hash_password(new_password))
    await sessions.revoke_all_sessions(teacher.role.value, teacher.id)
    logger.info(f"Admin reset password of teacher {teacher.id}")


async def delete_teacher(db: AsyncSession, teacher_id: str) -> None:
    teacher = await get_teacher(db, teacher_id)
    await repository.delete_account(db, teacher)
    await sessions.revoke_all_sessions(StaffRole.TEACHER.value, teacher_id)


# ============================================
# Parents
# ============================================


async def list_parents(db: AsyncSession) -> list[User]:
    return await UserRepository.list_all(db)


async def get_parent(db: AsyncSession, parent_id: str) -> User:
    parent = await UserRepository.get_by_id(db, parent_id)
    if parent is None:
        raise NotFoundError("Parent")
    return parent


async def create_parent(db: AsyncSession, data: ParentCreate) -> User:
    if await UserRepository.email_exists(db, data.email):
        raise _email_in_use(data.email)

    parent = await UserRepository.create(
        db,
        email=data.email,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        address=data.address,
    )
    logger.info(f"Parent account created by admin: {parent.id}")
    return parent


async def update_parent(db: AsyncSession, parent_id: str, data: ParentUpdate) -> User:
    parent = await get_parent(db, parent_id)
    fields = _changes(data)

    if fields.get("email"):
        fields["email"] = fields["email"].lower()
        existing = await UserRepository.get_by_email(db, fields["email"])
        if existing is not None and existing.id != parent.id:
            raise _email_in_use(fields["email"])

    return await _apply_update(db, parent, fields)


async def delete_parent(db: AsyncSession, parent_id: str) -> None:
    """Delete a parent; children and subscriptions go with the account."""
    parent = await get_parent(db, parent_id)
    await repository.delete_account(db, parent)
    await sessions.revoke_all_sessions(parent.role.value, parent_id)
