"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Field bounds mirror the rules the
services enforce, so most bad input is rejected with a 422 before any
database work happens.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def check_weights(value: Dict[int, float]) -> Dict[int, float]:
    for weight in value.values():
        if weight < 0 or weight > 1:
            raise ValueError("weights must be between 0 and 1")
    return value


class RegisterIn(BaseModel):
    """Payload for account registration."""
    email: str = Field(max_length=255)
    password: str = Field(min_length=6)
    name: str = Field(min_length=2, max_length=100)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value or "." not in value.split("@")[-1]:
            raise ValueError("Enter a valid email address")
        return value


class LoginIn(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    """Public view of a `User` (never includes the password hash)."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    school_name: Optional[str] = None
    first_day_of_school: Optional[date] = None
    grading_periods: int
    created_at: datetime
    last_login_at: Optional[datetime] = None


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    school_name: Optional[str] = None
    first_day_of_school: Optional[date] = None
    grading_periods: Optional[int] = Field(default=None, ge=1, le=12)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class AccountDelete(BaseModel):
    confirm_password: str


class StudentGroupIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class StudentIn(BaseModel):
    """Student create/update payload.

    `group_ids` wins over the legacy comma-separated `group_name`.
    """
    name: str = Field(min_length=2, max_length=100)
    birthday: Optional[date] = None
    group_ids: Optional[List[int]] = None
    group_name: Optional[str] = None


class StudentImportRow(BaseModel):
    name: str
    group: str
    birthday: str


class StudentBulkImport(BaseModel):
    students: List[StudentImportRow]


class StudentSubjectsIn(BaseModel):
    subjects: List[int]


class SubjectIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    report_card_name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    group_ids: List[int] = Field(default_factory=list)
    group_name: Optional[str] = None
    weights: Dict[int, float] = Field(default_factory=dict)

    @field_validator("weights")
    @classmethod
    def _weights_in_range(cls, value: Dict[int, float]) -> Dict[int, float]:
        return check_weights(value)


class LessonIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category_id: Optional[int] = None
    points: int = Field(default=100, ge=1, le=1000)
    order_index: Optional[int] = Field(default=None, ge=1)


class LessonUpdate(BaseModel):
    """Partial lesson update; a new `order_index` moves the lesson."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category_id: Optional[int] = None
    points: Optional[int] = Field(default=None, ge=1, le=1000)
    order_index: Optional[int] = Field(default=None, ge=1)


class LessonBulkIn(BaseModel):
    count: int = Field(ge=1, le=500)
    name_prefix: str = Field(default="Lesson", min_length=1, max_length=90)
    category_id: Optional[int] = None
    points: int = Field(default=100, ge=1, le=1000)


class MarkerIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    order_index: Optional[int] = Field(default=None, ge=1)


class MarkerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    order_index: Optional[int] = Field(default=None, ge=1)


class CategoryTypeIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")
    sort_order: Optional[int] = None
    is_active: bool = True
    is_default: bool = False


class GradeIn(BaseModel):
    """Either `percentage`, or `errors` (optionally with `points`)."""
    percentage: Optional[float] = Field(default=None, ge=0, le=100)
    errors: Optional[float] = Field(default=None, ge=0)
    points: Optional[int] = Field(default=None, ge=1)


class LessonPointsIn(BaseModel):
    lesson_id: int
    points: int = Field(ge=1, le=1000)


# Rows of an uploaded backup document. Restore works on the normalized
# dumps of these, so ids and numbers arrive with the types and bounds the
# API itself enforces.

class BackupSettingsRow(BaseModel):
    school_name: Optional[str] = None
    first_day_of_school: Optional[str] = None
    grading_periods: Optional[int] = None


class BackupGroupRow(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None


class BackupCategoryRow(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    is_default: bool = False
    is_active: bool = True
    sort_order: Optional[int] = None


class BackupSubjectRow(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    report_card_name: Optional[str] = None
    description: Optional[str] = None
    group_ids: List[int] = Field(default_factory=list)
    weights: Dict[int, float] = Field(default_factory=dict)

    @field_validator("weights")
    @classmethod
    def _weights_in_range(cls, value: Dict[int, float]) -> Dict[int, float]:
        return check_weights(value)


class BackupStudentRow(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    birthday: Optional[str] = None
    group_ids: List[int] = Field(default_factory=list)
    subject_ids: List[int] = Field(default_factory=list)


class BackupLessonRow(BaseModel):
    id: Optional[int] = None
    subject_id: Optional[int] = None
    name: Optional[str] = None
    category_id: Optional[int] = None
    points: Optional[int] = Field(default=None, ge=1, le=1000)
    order_index: Optional[int] = Field(default=None, ge=0)


class BackupMarkerRow(BaseModel):
    id: Optional[int] = None
    subject_id: Optional[int] = None
    name: Optional[str] = None
    order_index: Optional[int] = Field(default=None, ge=0)


class BackupGradeRow(BaseModel):
    student_id: Optional[int] = None
    lesson_id: Optional[int] = None
    percentage: Optional[float] = Field(default=None, ge=0, le=100)
    errors: Optional[float] = Field(default=None, ge=0)
    points: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _errors_within_points(self) -> "BackupGradeRow":
        if self.errors is not None and self.points is not None and self.errors > self.points:
            raise ValueError("errors cannot exceed points")
        return self
