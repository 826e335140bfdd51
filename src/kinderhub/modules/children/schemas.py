"""Child schemas."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class ChildCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    date_of_birth: date | None = None
    age: int | None = Field(default=None, ge=0, le=18)
    gender: str | None = Field(default=None, max_length=20)
    grade: str | None = Field(default=None, max_length=50)
    allergies: str | None = None
    medical_notes: str | None = None
    emergency_contact: str | None = Field(default=None, max_length=255)
    class_id: str | None = None
    # Required when an admin registers a child; ignored for parents
    parent_id: str | None = None


class ChildUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    date_of_birth: date | None = None
    age: int | None = Field(default=None, ge=0, le=18)
    gender: str | None = Field(default=None, max_length=20)
    grade: str | None = Field(default=None, max_length=50)
    allergies: str | None = None
    medical_notes: str | None = None
    emergency_contact: str | None = Field(default=None, max_length=255)
    class_id: str | None = None


class ChildResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    date_of_birth: date | None = None
    age: int | None = None
    gender: str | None = None
    grade: str | None = None
    allergies: str | None = None
    medical_notes: str | None = None
    emergency_contact: str | None = None
    parent_id: str
    class_id: str | None = None
