"""
Children Router

Endpoints:
- GET /children - Children visible to the caller (?class_id= filter)
- GET /children/parent/{parent_id} - A parent's children (that parent, admin)
- GET /children/{id} - One child (access checked)
- POST /children - Register a child (parent for self, admin for any parent)
- PUT /children/{id} - Update (owning parent, admin)
- DELETE /children/{id} - Delete (admin)
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.modules.children import service
from kinderhub.modules.children.schemas import ChildCreate, ChildResponse, ChildUpdate

router = APIRouter()


@router.get("", response_model=list[ChildResponse])
async def list_children(
    class_id: str | None = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ChildResponse]:
    children = await service.list_children(db, user, class_id)
    return [ChildResponse.model_validate(child) for child in children]


@router.get("/parent/{parent_id}", response_model=list[ChildResponse])
async def list_parent_children(
    parent_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ChildResponse]:
    try:
        children = await service.list_parent_children(db, user, parent_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return [ChildResponse.model_validate(child) for child in children]


@router.get("/{child_id}", response_model=ChildResponse)
async def get_child(
    child_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    try:
        return ChildResponse.model_validate(await service.get_child(db, user, child_id))
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("", response_model=ChildResponse, status_code=status.HTTP_201_CREATED)
async def create_child(
    data: ChildCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    try:
        return ChildResponse.model_validate(await service.create_child(db, user, data))
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.put("/{child_id}", response_model=ChildResponse)
async def update_child(
    child_id: str,
    data: ChildUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    try:
        return ChildResponse.model_validate(await service.update_child(db, user, child_id, data))
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.delete("/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_child(
    child_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_child(db, user, child_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
