"""
Classes Router

Endpoints:
- GET /classes - List classes with counts (any authenticated user)
- GET /classes/teachers/available - Teachers without a class (admin)
- GET /classes/{id} - Class with enrolled children (admin, class teacher)
- POST /classes - Create (admin)
- PUT /classes/{id} - Update (admin)
- DELETE /classes/{id} - Delete an empty class (admin)
- POST /classes/{id}/children - Enroll a child (admin)
- DELETE /classes/{id}/children/{child_id} - Remove a child (admin)
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_admin, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ForbiddenError, ServiceError, to_http_exception
from kinderhub.modules.children.schemas import ChildResponse
from kinderhub.modules.classes import service
from kinderhub.modules.classes.schemas import (
    ClassCreate,
    ClassDetailResponse,
    ClassResponse,
    ClassUpdate,
    EnrollChildRequest,
    TeacherSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[ClassResponse])
async def list_classes(
    _user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ClassResponse]:
    return await service.list_classes(db)


@router.get("/teachers/available", response_model=list[TeacherSummary])
async def available_teachers(
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> list[TeacherSummary]:
    teachers = await service.list_available_teachers(db)
    return [TeacherSummary(id=t.id, name=t.full_name, email=t.email) for t in teachers]


@router.get("/{class_id}", response_model=ClassDetailResponse)
async def get_class(
    class_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ClassDetailResponse:
    try:
        detail = await service.get_class_detail(db, class_id)
        if not user.is_admin and not (user.is_teacher and detail.teacher_id == user.id):
            raise ForbiddenError("Only admins and the class teacher can view class details.")
        return detail
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
async def create_class(
    data: ClassCreate,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> ClassResponse:
    try:
        school_class = await service.create_class(db, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return ClassResponse.model_validate(school_class)


@router.put("/{class_id}", response_model=ClassResponse)
async def update_class(
    class_id: str,
    data: ClassUpdate,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> ClassResponse:
    try:
        school_class = await service.update_class(db, class_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return ClassResponse.model_validate(school_class)


@router.delete("/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_class(
    class_id: str,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_class(db, class_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/{class_id}/children", response_model=ChildResponse)
async def enroll_child(
    class_id: str,
    data: EnrollChildRequest,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    try:
        child = await service.enroll_child(db, class_id, data.child_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return ChildResponse.model_validate(child)


@router.delete("/{class_id}/children/{child_id}", response_model=ChildResponse)
async def remove_child(
    class_id: str,
    child_id: str,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    try:
        child = await service.remove_child(db, class_id, child_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return ChildResponse.model_validate(child)
