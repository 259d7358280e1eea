"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Every row that belongs to a teacher account hangs off `User`, either
directly (`user_id`) or through its subject/student. Foreign keys
cascade so deleting a parent removes its dependants.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_dict(row: SQLModel, exclude: tuple = ()) -> dict:
    """Plain dict of a table row.

    Attribute access (rather than `model_dump`) reloads state that a
    commit expired.
    """
    return {name: getattr(row, name) for name in type(row).model_fields if name not in exclude}


class User(SQLModel, table=True):
    """A teacher/school account.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `grading_periods`: number of periods in the school year; a subject
      may carry at most `grading_periods - 1` period markers
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    name: str
    is_active: bool = True
    school_name: Optional[str] = None
    first_day_of_school: Optional[date] = None
    grading_periods: int = 6
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StudentGroup(SQLModel, table=True):
    __tablename__ = "student_groups"
    __table_args__ = (UniqueConstraint("user_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    name: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Student(SQLModel, table=True):
    __tablename__ = "students"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    name: str
    birthday: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StudentGroupLink(SQLModel, table=True):
    """Membership of a student in a group."""
    __tablename__ = "student_group_links"

    student_id: int = Field(foreign_key="students.id", ondelete="CASCADE", primary_key=True)
    student_group_id: int = Field(foreign_key="student_groups.id", ondelete="CASCADE", primary_key=True)


class Subject(SQLModel, table=True):
    __tablename__ = "subjects"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    name: str
    report_card_name: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SubjectGroup(SQLModel, table=True):
    """A subject taught to a student group."""
    __tablename__ = "subject_groups"

    subject_id: int = Field(foreign_key="subjects.id", ondelete="CASCADE", primary_key=True)
    student_group_id: int = Field(foreign_key="student_groups.id", ondelete="CASCADE", primary_key=True)


class StudentSubject(SQLModel, table=True):
    """Enrolment of a student in a subject."""
    __tablename__ = "student_subjects"

    student_id: int = Field(foreign_key="students.id", ondelete="CASCADE", primary_key=True)
    subject_id: int = Field(foreign_key="subjects.id", ondelete="CASCADE", primary_key=True)


class GradeCategoryType(SQLModel, table=True):
    """A per-user grade category ("Lesson", "Test", ...) used for weighting."""
    __tablename__ = "grade_category_types"
    __table_args__ = (UniqueConstraint("user_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    name: str
    description: Optional[str] = None
    color: str = "#6366f1"
    is_default: bool = False
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Lesson(SQLModel, table=True):
    """A gradable item of a subject.

    `order_index` shares one sequence with the subject's
    `GradingPeriodMarker` rows; see `gradeflow.ordering`.
    """
    __tablename__ = "lessons"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: int = Field(foreign_key="subjects.id", ondelete="CASCADE", index=True)
    name: str
    category_id: Optional[int] = Field(
        default=None, foreign_key="grade_category_types.id", ondelete="SET NULL", index=True
    )
    points: int = 100
    order_index: int = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class GradingPeriodMarker(SQLModel, table=True):
    """Separator closing a grading period inside a subject's lesson list."""
    __tablename__ = "grading_period_markers"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: int = Field(foreign_key="subjects.id", ondelete="CASCADE", index=True)
    name: str
    order_index: int = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SubjectWeight(SQLModel, table=True):
    """Weight (0..1) of a grade category inside one subject."""
    __tablename__ = "subject_weights"
    __table_args__ = (UniqueConstraint("subject_id", "category_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: int = Field(foreign_key="subjects.id", ondelete="CASCADE", index=True)
    category_id: int = Field(foreign_key="grade_category_types.id", ondelete="CASCADE", index=True)
    weight: float = 0.0


class Grade(SQLModel, table=True):
    """A student's result on a lesson.

    `points` is the point total the errors were counted against;
    `percentage` and `errors` are kept consistent by `GradeService`.
    """
    __tablename__ = "grades"
    __table_args__ = (UniqueConstraint("student_id", "lesson_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="students.id", ondelete="CASCADE", index=True)
    lesson_id: int = Field(foreign_key="lessons.id", ondelete="CASCADE", index=True)
    percentage: Optional[float] = None
    errors: Optional[float] = None
    points: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserMetadata(SQLModel, table=True):
    __tablename__ = "user_metadata"

    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", primary_key=True)
    data_version: str = "2.0.0"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserBackup(SQLModel, table=True):
    """A stored JSON snapshot of one user's data."""
    __tablename__ = "user_backups"
    __table_args__ = (UniqueConstraint("user_id", "backup_timestamp"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    backup_timestamp: str
    backup_data: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
