"""Class schemas."""

from pydantic import BaseModel, ConfigDict, Field

from kinderhub.modules.children.schemas import ChildResponse


class ClassCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    age_group: str | None = Field(default=None, max_length=50)
    room: str | None = Field(default=None, max_length=50)
    schedule: str | None = None
    max_students: int = Field(default=20, ge=1, le=200)
    teacher_id: str | None = None


class ClassUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    age_group: str | None = Field(default=None, max_length=50)
    room: str | None = Field(default=None, max_length=50)
    schedule: str | None = None
    max_students: int | None = Field(default=None, ge=1, le=200)
    teacher_id: str | None = None


class ClassResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    age_group: str | None = None
    room: str | None = None
    schedule: str | None = None
    max_students: int
    teacher_id: str | None = None
    teacher_name: str | None = None
    student_count: int = 0


class ClassDetailResponse(ClassResponse):
    children: list[ChildResponse] = []


class EnrollChildRequest(BaseModel):
    child_id: str


class TeacherSummary(BaseModel):
    id: str
    name: str
    email: str
