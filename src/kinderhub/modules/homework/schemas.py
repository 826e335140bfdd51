"""Homework schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from kinderhub.modules.homework.models import HomeworkStatus


class HomeworkCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    instructions: str | None = None
    content_type: str | None = Field(default=None, max_length=50)
    attachment_url: str | None = None
    due_date: datetime
    class_id: str


class HomeworkUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    instructions: str | None = None
    content_type: str | None = Field(default=None, max_length=50)
    attachment_url: str | None = None
    due_date: datetime | None = None


class HomeworkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    instructions: str | None = None
    content_type: str | None = None
    attachment_url: str | None = None
    due_date: datetime
    class_id: str
    teacher_id: str | None = None
    created_at: datetime | None = None


class SubmissionCreate(BaseModel):
    child_id: str
    comment: str | None = None
    file_url: str | None = None


class GradeRequest(BaseModel):
    grade: str = Field(min_length=1, max_length=20)
    feedback: str | None = None


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    homework_id: str
    child_id: str
    parent_id: str
    comment: str | None = None
    file_url: str | None = None
    submitted_at: datetime
    grade: str | None = None
    feedback: str | None = None
    graded_at: datetime | None = None


class ParentHomeworkItem(BaseModel):
    """One homework item as seen for one of the parent's children."""

    homework: HomeworkResponse
    child_id: str
    child_name: str
    status: HomeworkStatus
    submission: SubmissionResponse | None = None


class ClassHomeworkItem(HomeworkResponse):
    submission_count: int = 0
    class_size: int = 0


class TeacherHomeworkStats(BaseModel):
    total: int
    active: int
    past_due: int
    submissions: int
    graded: int


class TeacherHomeworkResponse(BaseModel):
    homework: list[ClassHomeworkItem]
    stats: TeacherHomeworkStats


class HomeworkDetailResponse(HomeworkResponse):
    submissions: list[SubmissionResponse] = []
