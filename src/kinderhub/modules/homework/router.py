"""
Homework Router

Endpoints:
- GET /homework/parent/{parent_id} - Homework for a parent's children (?child_id=)
- GET /homework/class/{class_id} - Homework of a class with submission counts
- GET /homework/teacher/{teacher_id} - A teacher's homework with stats
- GET /homework/{id} - Detail with submissions
- POST /homework - Create (class teacher, admin)
- PUT /homework/{id} - Update (class teacher, admin)
- DELETE /homework/{id} - Delete (class teacher, admin)
- POST /homework/{id}/submissions - Submit for a child (parent)
- PUT /homework/submissions/{submission_id}/grade - Grade (class teacher, admin)
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.modules.homework import service
from kinderhub.modules.homework.schemas import (
    ClassHomeworkItem,
    GradeRequest,
    HomeworkCreate,
    HomeworkDetailResponse,
    HomeworkResponse,
    HomeworkUpdate,
    ParentHomeworkItem,
    SubmissionCreate,
    SubmissionResponse,
    TeacherHomeworkResponse,
)

router = APIRouter()


@router.get("/parent/{parent_id}", response_model=list[ParentHomeworkItem])
async def parent_homework(
    parent_id: str,
    child_id: str | None = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ParentHomeworkItem]:
    try:
        return await service.parent_homework(db, user, parent_id, child_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/class/{class_id}", response_model=list[ClassHomeworkItem])
async def class_homework(
    class_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ClassHomeworkItem]:
    try:
        return await service.class_homework(db, user, class_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/teacher/{teacher_id}", response_model=TeacherHomeworkResponse)
async def teacher_homework(
    teacher_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TeacherHomeworkResponse:
    try:
        return await service.teacher_homework(db, user, teacher_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/{homework_id}", response_model=HomeworkDetailResponse)
async def homework_detail(
    homework_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> HomeworkDetailResponse:
    try:
        return await service.homework_detail(db, user, homework_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("", response_model=HomeworkResponse, status_code=status.HTTP_201_CREATED)
async def create_homework(
    data: HomeworkCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> HomeworkResponse:
    try:
        return HomeworkResponse.model_validate(await service.create_homework(db, user, data))
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.put("/{homework_id}", response_model=HomeworkResponse)
async def update_homework(
    homework_id: str,
    data: HomeworkUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> HomeworkResponse:
    try:
        homework = await service.update_homework(db, user, homework_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return HomeworkResponse.model_validate(homework)


@router.delete("/{homework_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_homework(
    homework_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_homework(db, user, homework_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{homework_id}/submissions",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_homework(
    homework_id: str,
    data: SubmissionCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SubmissionResponse:
    try:
        submission = await service.submit_homework(db, user, homework_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return SubmissionResponse.model_validate(submission)


@router.put("/submissions/{submission_id}/grade", response_model=SubmissionResponse)
async def grade_submission(
    submission_id: str,
    data: GradeRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SubmissionResponse:
    try:
        submission = await service.grade_submission(db, user, submission_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return SubmissionResponse.model_validate(submission)
