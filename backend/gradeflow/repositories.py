"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
groups, students, subjects, categories, lessons, markers, grades,
backups). Ownership checks live here as `get_owned` lookups: a row that
belongs to another user is reported exactly like a missing one.

Repositories only stage changes; committing is left to the calling
service so that multi-step operations share one transaction.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, select

from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email.lower())
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def list_all(self) -> List[models.User]:
        return self.session.exec(select(models.User).order_by(models.User.created_at)).all()


class StudentGroupRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int) -> List[models.StudentGroup]:
        stmt = select(models.StudentGroup).where(models.StudentGroup.user_id == user_id).order_by(models.StudentGroup.name)
        return self.session.exec(stmt).all()

    def get_owned(self, user_id: int, group_id: int) -> Optional[models.StudentGroup]:
        group = self.session.get(models.StudentGroup, group_id)
        if group is None or group.user_id != user_id:
            return None
        return group

    def get_by_name(self, user_id: int, name: str) -> Optional[models.StudentGroup]:
        stmt = select(models.StudentGroup).where(
            models.StudentGroup.user_id == user_id,
            models.StudentGroup.name == name,
        )
        return self.session.exec(stmt).first()

    def find_or_create(self, user_id: int, name: str) -> tuple[models.StudentGroup, bool]:
        """Return `(group, created)` for the group called `name`."""
        existing = self.get_by_name(user_id, name)
        if existing:
            return existing, False
        group = models.StudentGroup(user_id=user_id, name=name)
        self.session.add(group)
        self.session.flush()
        return group, True

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(models.StudentGroup).where(models.StudentGroup.user_id == user_id)
        return self.session.exec(stmt).one()

    def student_ids(self, group_id: int) -> List[int]:
        stmt = select(models.StudentGroupLink.student_id).where(models.StudentGroupLink.student_group_id == group_id)
        return self.session.exec(stmt).all()

    def subject_ids(self, group_id: int) -> List[int]:
        stmt = select(models.SubjectGroup.subject_id).where(models.SubjectGroup.student_group_id == group_id)
        return self.session.exec(stmt).all()


class StudentRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int, group_id: Optional[int] = None) -> List[models.Student]:
        stmt = select(models.Student).where(models.Student.user_id == user_id)
        if group_id is not None:
            stmt = stmt.join(
                models.StudentGroupLink, models.StudentGroupLink.student_id == models.Student.id
            ).where(models.StudentGroupLink.student_group_id == group_id)
        return self.session.exec(stmt.order_by(models.Student.name)).all()

    def get_owned(self, user_id: int, student_id: int) -> Optional[models.Student]:
        student = self.session.get(models.Student, student_id)
        if student is None or student.user_id != user_id:
            return None
        return student

    def group_names(self, student_ids: Iterable[int]) -> Dict[int, List[str]]:
        """Map each student id to the sorted names of its groups."""
        ids = list(student_ids)
        out: Dict[int, List[str]] = defaultdict(list)
        if not ids:
            return out
        stmt = (
            select(models.StudentGroupLink.student_id, models.StudentGroup.name)
            .join(models.StudentGroup, models.StudentGroup.id == models.StudentGroupLink.student_group_id)
            .where(models.StudentGroupLink.student_id.in_(ids))
            .order_by(models.StudentGroup.name)
        )
        for student_id, name in self.session.exec(stmt).all():
            out[student_id].append(name)
        return out

    def group_ids(self, student_id: int) -> List[int]:
        stmt = select(models.StudentGroupLink.student_group_id).where(models.StudentGroupLink.student_id == student_id)
        return self.session.exec(stmt).all()

    def subject_ids(self, student_ids: Iterable[int]) -> Dict[int, List[int]]:
        ids = list(student_ids)
        out: Dict[int, List[int]] = defaultdict(list)
        if not ids:
            return out
        stmt = select(models.StudentSubject.student_id, models.StudentSubject.subject_id).where(
            models.StudentSubject.student_id.in_(ids)
        )
        for student_id, subject_id in self.session.exec(stmt).all():
            out[student_id].append(subject_id)
        return out

    def replace_groups(self, student_id: int, group_ids: Iterable[int]) -> None:
        self.session.exec(delete(models.StudentGroupLink).where(models.StudentGroupLink.student_id == student_id))
        for group_id in dict.fromkeys(group_ids):
            self.session.add(models.StudentGroupLink(student_id=student_id, student_group_id=group_id))

    def link_group(self, student_id: int, group_id: int) -> None:
        if self.session.get(models.StudentGroupLink, (student_id, group_id)) is None:
            self.session.add(models.StudentGroupLink(student_id=student_id, student_group_id=group_id))

    def replace_subjects(self, student_id: int, subject_ids: Iterable[int]) -> None:
        self.session.exec(delete(models.StudentSubject).where(models.StudentSubject.student_id == student_id))
        for subject_id in dict.fromkeys(subject_ids):
            self.session.add(models.StudentSubject(student_id=student_id, subject_id=subject_id))

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(models.Student).where(models.Student.user_id == user_id)
        return self.session.exec(stmt).one()


class SubjectRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int, group_id: Optional[int] = None) -> List[models.Subject]:
        stmt = select(models.Subject).where(models.Subject.user_id == user_id)
        if group_id is not None:
            stmt = stmt.join(
                models.SubjectGroup, models.SubjectGroup.subject_id == models.Subject.id
            ).where(models.SubjectGroup.student_group_id == group_id)
        return self.session.exec(stmt.order_by(models.Subject.name)).all()

    def get_owned(self, user_id: int, subject_id: int) -> Optional[models.Subject]:
        subject = self.session.get(models.Subject, subject_id)
        if subject is None or subject.user_id != user_id:
            return None
        return subject

    def get_by_name(self, user_id: int, name: str) -> Optional[models.Subject]:
        stmt = select(models.Subject).where(models.Subject.user_id == user_id, models.Subject.name == name)
        return self.session.exec(stmt).first()

    def group_names(self, subject_id: int) -> List[str]:
        stmt = (
            select(models.StudentGroup.name)
            .join(models.SubjectGroup, models.SubjectGroup.student_group_id == models.StudentGroup.id)
            .where(models.SubjectGroup.subject_id == subject_id)
            .order_by(models.StudentGroup.name)
        )
        return self.session.exec(stmt).all()

    def group_ids(self, subject_id: int) -> List[int]:
        stmt = select(models.SubjectGroup.student_group_id).where(models.SubjectGroup.subject_id == subject_id)
        return self.session.exec(stmt).all()

    def replace_groups(self, subject_id: int, group_ids: Iterable[int]) -> None:
        self.session.exec(delete(models.SubjectGroup).where(models.SubjectGroup.subject_id == subject_id))
        for group_id in dict.fromkeys(group_ids):
            self.session.add(models.SubjectGroup(subject_id=subject_id, student_group_id=group_id))

    def weights(self, subject_id: int) -> Dict[int, float]:
        """Return `{category_id: weight}` for a subject."""
        stmt = select(models.SubjectWeight).where(models.SubjectWeight.subject_id == subject_id)
        return {w.category_id: float(w.weight) for w in self.session.exec(stmt).all()}

    def replace_weights(self, subject_id: int, weights: Dict[int, float]) -> None:
        """Store the non-zero weights; zero or missing weights are dropped."""
        self.session.exec(delete(models.SubjectWeight).where(models.SubjectWeight.subject_id == subject_id))
        for category_id, weight in weights.items():
            if weight and weight > 0:
                self.session.add(models.SubjectWeight(subject_id=subject_id, category_id=category_id, weight=weight))

    def lesson_count(self, subject_id: int) -> int:
        stmt = select(func.count()).select_from(models.Lesson).where(models.Lesson.subject_id == subject_id)
        return self.session.exec(stmt).one()

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(models.Subject).where(models.Subject.user_id == user_id)
        return self.session.exec(stmt).one()


class CategoryRepository:
    """Queries for per-user `GradeCategoryType` rows."""
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int, active_only: bool = False) -> List[models.GradeCategoryType]:
        stmt = select(models.GradeCategoryType).where(models.GradeCategoryType.user_id == user_id)
        if active_only:
            stmt = stmt.where(models.GradeCategoryType.is_active == True)  # noqa: E712
        stmt = stmt.order_by(models.GradeCategoryType.sort_order, models.GradeCategoryType.name)
        return self.session.exec(stmt).all()

    def get_owned(self, user_id: int, category_id: int) -> Optional[models.GradeCategoryType]:
        category = self.session.get(models.GradeCategoryType, category_id)
        if category is None or category.user_id != user_id:
            return None
        return category

    def get_by_name(self, user_id: int, name: str) -> Optional[models.GradeCategoryType]:
        stmt = select(models.GradeCategoryType).where(
            models.GradeCategoryType.user_id == user_id,
            models.GradeCategoryType.name == name,
        )
        return self.session.exec(stmt).first()

    def default_for_user(self, user_id: int) -> Optional[models.GradeCategoryType]:
        stmt = (
            select(models.GradeCategoryType)
            .where(models.GradeCategoryType.user_id == user_id, models.GradeCategoryType.is_default == True)  # noqa: E712
            .order_by(models.GradeCategoryType.created_at, models.GradeCategoryType.id)
        )
        return self.session.exec(stmt).first()

    def clear_defaults(self, user_id: int, except_id: Optional[int] = None) -> None:
        for category in self.list_for_user(user_id):
            if category.is_default and category.id != except_id:
                category.is_default = False
                self.session.add(category)

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(models.GradeCategoryType).where(
            models.GradeCategoryType.user_id == user_id
        )
        return self.session.exec(stmt).one()

    def next_sort_order(self, user_id: int) -> int:
        stmt = select(func.max(models.GradeCategoryType.sort_order)).where(models.GradeCategoryType.user_id == user_id)
        current = self.session.exec(stmt).one()
        return 0 if current is None else current + 1

    def lesson_usage(self, category_id: int) -> int:
        stmt = select(func.count()).select_from(models.Lesson).where(models.Lesson.category_id == category_id)
        return self.session.exec(stmt).one()

    def weight_usage(self, category_id: int) -> int:
        stmt = select(func.count()).select_from(models.SubjectWeight).where(models.SubjectWeight.category_id == category_id)
        return self.session.exec(stmt).one()


class LessonRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_subject(self, subject_id: int) -> List[models.Lesson]:
        stmt = select(models.Lesson).where(models.Lesson.subject_id == subject_id).order_by(models.Lesson.order_index)
        return self.session.exec(stmt).all()

    def get_owned(self, user_id: int, lesson_id: int) -> Optional[models.Lesson]:
        """Return the lesson when its subject belongs to `user_id`."""
        stmt = (
            select(models.Lesson)
            .join(models.Subject, models.Subject.id == models.Lesson.subject_id)
            .where(models.Lesson.id == lesson_id, models.Subject.user_id == user_id)
        )
        return self.session.exec(stmt).first()

    def category_names(self, user_id: int) -> Dict[int, models.GradeCategoryType]:
        stmt = select(models.GradeCategoryType).where(models.GradeCategoryType.user_id == user_id)
        return {c.id: c for c in self.session.exec(stmt).all()}


class MarkerRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_subject(self, subject_id: int) -> List[models.GradingPeriodMarker]:
        stmt = (
            select(models.GradingPeriodMarker)
            .where(models.GradingPeriodMarker.subject_id == subject_id)
            .order_by(models.GradingPeriodMarker.order_index)
        )
        return self.session.exec(stmt).all()

    def get_owned(self, user_id: int, marker_id: int) -> Optional[models.GradingPeriodMarker]:
        stmt = (
            select(models.GradingPeriodMarker)
            .join(models.Subject, models.Subject.id == models.GradingPeriodMarker.subject_id)
            .where(models.GradingPeriodMarker.id == marker_id, models.Subject.user_id == user_id)
        )
        return self.session.exec(stmt).first()

    def count_for_subject(self, subject_id: int) -> int:
        stmt = select(func.count()).select_from(models.GradingPeriodMarker).where(
            models.GradingPeriodMarker.subject_id == subject_id
        )
        return self.session.exec(stmt).one()


class GradeRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, student_id: int, lesson_id: int) -> Optional[models.Grade]:
        stmt = select(models.Grade).where(models.Grade.student_id == student_id, models.Grade.lesson_id == lesson_id)
        return self.session.exec(stmt).first()

    def list_for_lesson(self, lesson_id: int) -> List[models.Grade]:
        return self.session.exec(select(models.Grade).where(models.Grade.lesson_id == lesson_id)).all()

    def rows_for_user(self, user_id: int):
        """Return `(grade, student, lesson, subject)` tuples for every grade of a user."""
        stmt = (
            select(models.Grade, models.Student, models.Lesson, models.Subject)
            .join(models.Student, models.Student.id == models.Grade.student_id)
            .join(models.Lesson, models.Lesson.id == models.Grade.lesson_id)
            .join(models.Subject, models.Subject.id == models.Lesson.subject_id)
            .where(models.Student.user_id == user_id)
            .order_by(models.Subject.name, models.Student.name, models.Lesson.order_index)
        )
        return self.session.exec(stmt).all()

    def lessons_with_grades(self, student_id: int, subject_id: int):
        """Return `(lesson, grade_or_None)` for every lesson of the subject, in order."""
        stmt = (
            select(models.Lesson, models.Grade)
            .join(
                models.Grade,
                (models.Grade.lesson_id == models.Lesson.id) & (models.Grade.student_id == student_id),
                isouter=True,
            )
            .where(models.Lesson.subject_id == subject_id)
            .order_by(models.Lesson.order_index)
        )
        return self.session.exec(stmt).all()

    def for_subject(self, subject_id: int) -> List[models.Grade]:
        stmt = (
            select(models.Grade)
            .join(models.Lesson, models.Lesson.id == models.Grade.lesson_id)
            .where(models.Lesson.subject_id == subject_id)
        )
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(models.Grade)
            .join(models.Student, models.Student.id == models.Grade.student_id)
            .where(models.Student.user_id == user_id)
        )
        return self.session.exec(stmt).one()


class BackupRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int) -> List[models.UserBackup]:
        stmt = (
            select(models.UserBackup)
            .where(models.UserBackup.user_id == user_id)
            .order_by(models.UserBackup.created_at.desc(), models.UserBackup.id.desc())
        )
        return self.session.exec(stmt).all()

    def get_by_timestamp(self, user_id: int, timestamp: str) -> Optional[models.UserBackup]:
        stmt = select(models.UserBackup).where(
            models.UserBackup.user_id == user_id,
            models.UserBackup.backup_timestamp == timestamp,
        )
        return self.session.exec(stmt).first()
