"""
Account Management Router (admin only)

Endpoints:
- GET /admin/teachers - List teachers, including deactivated ones
- POST /admin/teachers - Create a teacher
- PUT /admin/teachers/{id} - Update a teacher
- DELETE /admin/teachers/{id} - Delete a teacher
- POST /admin/teachers/{id}/reset-password - Set a teacher's password
- GET /admin/parents - List parents
- POST /admin/parents - Create a parent
- PUT /admin/parents/{id} - Update a parent
- DELETE /admin/parents/{id} - Delete a parent with their children
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_admin
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.modules.users import service
from kinderhub.modules.users.schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    ParentCreate,
    ParentResponse,
    ParentUpdate,
    PasswordResetByAdmin,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/teachers", response_model=list[AccountResponse])
async def list_teachers(
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> list[AccountResponse]:
    return [AccountResponse.model_validate(t) for t in await service.list_teachers(db)]


@router.post("/teachers", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_teacher(
    data: AccountCreate,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    try:
        teacher = await service.create_teacher(db, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return AccountResponse.model_validate(teacher)


@router.put("/teachers/{teacher_id}", response_model=AccountResponse)
async def update_teacher(
    teacher_id: str,
    data: AccountUpdate,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    try:
        teacher = await service.update_teacher(db, teacher_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return AccountResponse.model_validate(teacher)


@router.delete("/teachers/{teacher_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_teacher(
    teacher_id: str,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_teacher(db, teacher_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/teachers/{teacher_id}/reset-password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_teacher_password(
    teacher_id: str,
    data: PasswordResetByAdmin,
    admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.reset_teacher_password(db, teacher_id, data.new_password)
    except ServiceError as e:
        raise to_http_exception(e) from e
    logger.info(f"Teacher {teacher_id} password reset by admin {admin.id}")


@router.get("/parents", response_model=list[ParentResponse])
async def list_parents(
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> list[ParentResponse]:
    return [ParentResponse.model_validate(p) for p in await service.list_parents(db)]


@router.post("/parents", response_model=ParentResponse, status_code=status.HTTP_201_CREATED)
async def create_parent(
    data: ParentCreate,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> ParentResponse:
    try:
        parent = await service.create_parent(db, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return ParentResponse.model_validate(parent)


@router.put("/parents/{parent_id}", response_model=ParentResponse)
async def update_parent(
    parent_id: str,
    data: ParentUpdate,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> ParentResponse:
    try:
        parent = await service.update_parent(db, parent_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return ParentResponse.model_validate(parent)


@router.delete("/parents/{parent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_parent(
    parent_id: str,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_parent(db, parent_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
