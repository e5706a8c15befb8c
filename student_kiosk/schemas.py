from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class College(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    location: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    departments_count: int | None = None


class Department(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    college_id: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    students_count: int | None = None


class SubjectProfile(BaseModel):
    """A student record as returned by the registry; never mutated locally."""

    model_config = ConfigDict(extra="ignore")

    id: str
    first_name: str
    last_name: str
    email: str | None = None
    college_id: str | None = None
    department_id: str | None = None
    student_id: str | None = None
    phone: str | None = None
    date_of_birth: str | None = None
    address: str | None = None
    created_at: datetime | None = None
    college: College | None = None
    department: Department | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RecognitionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    matched: bool
    confidence: float | None = None
    student_id: str | None = None
    student: SubjectProfile | None = None


class StudentRegistration(BaseModel):
    first_name: str
    last_name: str
    email: str
    college_id: str
    department_id: str
    student_id: str | None = None
    phone: str | None = None
    date_of_birth: str | None = None
    address: str | None = None

    @field_validator("first_name", "last_name", "college_id", "department_id")
    @classmethod
    def _required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("field cannot be empty")
        return value

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("invalid email address")
        return value

    def form_fields(self) -> dict[str, str]:
        return {key: str(value) for key, value in self.model_dump().items() if value is not None}


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str | None = None


class RecognitionEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    student_id: str | None = None
    confidence: float
    timestamp: datetime
    student: SubjectProfile | None = None


class RecognitionEventPage(BaseModel):
    items: list[RecognitionEvent] = []
    total: int = 0
    page: int = 1
    limit: int = 0
    total_pages: int = 0


class HealthCheck(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    timestamp: str | None = None
