"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and domain rules. Services are intentionally thin: they validate,
execute domain logic and persist via repositories, raising the
exceptions from `gradeflow.errors` for anything the caller got wrong.
Every service method that writes wraps its work in `atomic` so a failure
leaves the database untouched.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy import func
from sqlmodel import Session, select

from . import models, repositories
from .config import settings
from .database import atomic
from .errors import AuthenticationError, ConflictError, InvalidRequestError, NotFoundError
from .models import to_dict, utcnow
from .ordering import SubjectSequence
from .utils.grade_math import percentage_from_errors, resolve_grade

logger = logging.getLogger("gradeflow.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

DEFAULT_STUDENT_GROUPS = [
    ("Grade 1", "First grade students"),
    ("Grade 2", "Second grade students"),
    ("Grade 3", "Third grade students"),
    ("Grade 4", "Fourth grade students"),
    ("Grade 5", "Fifth grade students"),
    ("Grade 6", "Sixth grade students"),
    ("Grade 7", "Seventh grade students"),
    ("Grade 8", "Eighth grade students"),
    ("Grade 9", "Ninth grade students"),
    ("Grade 10", "Tenth grade students"),
]

DEFAULT_CATEGORY_TYPES = [
    {"name": "Lesson", "color": "#3b82f6", "is_default": True, "is_active": True},
    {"name": "Test", "color": "#ef4444", "is_default": False, "is_active": True},
    {"name": "Project", "color": "#10b981", "is_default": False, "is_active": False},
    {"name": "Quiz", "color": "#f59e0b", "is_default": False, "is_active": False},
]


def split_group_names(raw: Optional[str]) -> List[str]:
    """Split a legacy comma-separated group list, dropping blanks and repeats."""
    if not raw:
        return []
    return list(dict.fromkeys(n.strip() for n in raw.split(",") if n.strip()))


class DefaultsService:
    """Seed the starter groups and grade categories of an account."""
    def __init__(self, session: Session):
        self.session = session
        self.group_repo = repositories.StudentGroupRepository(session)
        self.category_repo = repositories.CategoryRepository(session)

    def seed_groups(self, user_id: int) -> bool:
        """Add the default groups if the user has none; return True if seeded."""
        if self.group_repo.count_for_user(user_id):
            return False
        for name, description in DEFAULT_STUDENT_GROUPS:
            self.session.add(models.StudentGroup(user_id=user_id, name=name, description=description))
        return True

    def seed_categories(self, user_id: int) -> bool:
        if self.category_repo.count_for_user(user_id):
            return False
        for sort_order, fields in enumerate(DEFAULT_CATEGORY_TYPES):
            self.session.add(models.GradeCategoryType(user_id=user_id, sort_order=sort_order, **fields))
        return True


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, name: str) -> models.User:
        """Create a new user with a hashed password and starter data.

        Raises `ConflictError` when the email is already registered.
        """
        if self.user_repo.get_by_email(email):
            raise ConflictError("User already exists with this email")
        hashed = PWD_CTX.hash(password)
        u = models.User(
            email=email.lower(),
            password_hash=hashed,
            name=name.strip(),
            grading_periods=settings.DEFAULT_GRADING_PERIODS,
        )
        with atomic(self.session):
            self.session.add(u)
            self.session.flush()
            defaults = DefaultsService(self.session)
            defaults.seed_groups(u.id)
            defaults.seed_categories(u.id)
            self.session.add(models.UserMetadata(user_id=u.id))
        self.session.refresh(u)
        logger.info("registered user %s", u.id)
        return u

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Verify credentials and return the user, or `None` on failure."""
        user = self.user_repo.get_by_email(email)
        if not user or not user.is_active:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        user.last_login_at = utcnow()
        with atomic(self.session):
            self.session.add(user)
        self.session.refresh(user)
        return user

    @staticmethod
    def issue_token(user: models.User) -> str:
        """Return a signed JWT carrying `user_id` and `email`."""
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "email": user.email, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class UserService:
    """Profile and account maintenance for the signed-in user."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def _load(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_profile(self, user_id: int) -> models.User:
        return self._load(user_id)

    def update_profile(self, user_id: int, changes: dict) -> models.User:
        """Apply a profile update.

        `name` and `grading_periods` keep their value when omitted;
        school name and first day are replaced (and may be cleared).
        """
        user = self._load(user_id)
        if changes.get("name"):
            user.name = changes["name"].strip()
        if changes.get("grading_periods"):
            user.grading_periods = changes["grading_periods"]
        user.school_name = changes.get("school_name") or None
        user.first_day_of_school = changes.get("first_day_of_school")
        user.updated_at = utcnow()
        with atomic(self.session):
            self.session.add(user)
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self._load(user_id)
        if not PWD_CTX.verify(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        user.password_hash = PWD_CTX.hash(new_password)
        user.updated_at = utcnow()
        with atomic(self.session):
            self.session.add(user)

    def delete_account(self, user_id: int, confirm_password: str) -> None:
        """Delete the user; foreign keys cascade to all of its data."""
        user = self._load(user_id)
        if not PWD_CTX.verify(confirm_password, user.password_hash):
            raise AuthenticationError("Invalid password")
        with atomic(self.session):
            self.session.delete(user)
        logger.info("deleted user %s", user_id)

    def list_users(self) -> List[dict]:
        return [
            {
                "id": u.id,
                "name": u.name,
                "email": u.email,
                "created_at": u.created_at,
                "last_login_at": u.last_login_at,
            }
            for u in self.user_repo.list_all()
        ]


class StudentGroupService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.StudentGroupRepository(session)

    def list(self, user_id: int) -> List[models.StudentGroup]:
        return self.repo.list_for_user(user_id)

    def get(self, user_id: int, group_id: int) -> models.StudentGroup:
        group = self.repo.get_owned(user_id, group_id)
        if not group:
            raise NotFoundError("Student group not found")
        return group

    def _ensure_unique(self, user_id: int, name: str, group_id: Optional[int] = None) -> None:
        existing = self.repo.get_by_name(user_id, name)
        if existing and existing.id != group_id:
            raise ConflictError("A group with this name already exists")

    def create(self, user_id: int, name: str, description: Optional[str]) -> models.StudentGroup:
        name = name.strip()
        self._ensure_unique(user_id, name)
        group = models.StudentGroup(user_id=user_id, name=name, description=description)
        with atomic(self.session):
            self.session.add(group)
        self.session.refresh(group)
        return group

    def update(self, user_id: int, group_id: int, name: str, description: Optional[str]) -> models.StudentGroup:
        group = self.get(user_id, group_id)
        name = name.strip()
        self._ensure_unique(user_id, name, group_id)
        group.name = name
        group.description = description
        group.updated_at = utcnow()
        with atomic(self.session):
            self.session.add(group)
        self.session.refresh(group)
        return group

    def delete(self, user_id: int, group_id: int) -> None:
        group = self.get(user_id, group_id)
        with atomic(self.session):
            self.session.delete(group)

    def resolve(self, user_id: int, group_ids: Optional[Iterable[int]], group_name: Optional[str]) -> List[int]:
        """Turn explicit ids, or legacy comma-separated names, into owned group ids.

        Names are find-or-create; ids must already belong to the user.
        """
        if group_ids is not None and (list(group_ids) or not group_name):
            out = []
            for group_id in group_ids:
                if not self.repo.get_owned(user_id, group_id):
                    raise InvalidRequestError(f"Unknown student group: {group_id}")
                out.append(group_id)
            return out
        out = []
        for name in split_group_names(group_name):
            group, _ = self.repo.find_or_create(user_id, name)
            out.append(group.id)
        return out


class StudentService:
    """Students, their group memberships and subject enrolments."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.StudentRepository(session)
        self.groups = StudentGroupService(session)

    def _out(self, students: List[models.Student]) -> List[dict]:
        ids = [s.id for s in students]
        names = self.repo.group_names(ids)
        subjects = self.repo.subject_ids(ids)
        out = []
        for s in students:
            row = to_dict(s)
            row["group_name"] = ", ".join(names.get(s.id, [])) or None
            row["group_ids"] = self.repo.group_ids(s.id)
            row["subjects"] = sorted(subjects.get(s.id, []))
            out.append(row)
        return out

    def list(self, user_id: int, group_id: Optional[int] = None) -> List[dict]:
        return self._out(self.repo.list_for_user(user_id, group_id))

    def get_owned(self, user_id: int, student_id: int) -> models.Student:
        student = self.repo.get_owned(user_id, student_id)
        if not student:
            raise NotFoundError("Student not found")
        return student

    def get(self, user_id: int, student_id: int) -> dict:
        return self._out([self.get_owned(user_id, student_id)])[0]

    def create(self, user_id: int, name: str, birthday: Optional[date] = None,
               group_ids: Optional[List[int]] = None, group_name: Optional[str] = None) -> dict:
        with atomic(self.session):
            student = models.Student(user_id=user_id, name=name.strip(), birthday=birthday)
            self.session.add(student)
            self.session.flush()
            self.repo.replace_groups(student.id, self.groups.resolve(user_id, group_ids, group_name))
        return self.get(user_id, student.id)

    def update(self, user_id: int, student_id: int, name: str, birthday: Optional[date] = None,
               group_ids: Optional[List[int]] = None, group_name: Optional[str] = None) -> dict:
        student = self.get_owned(user_id, student_id)
        with atomic(self.session):
            student.name = name.strip()
            student.birthday = birthday
            student.updated_at = utcnow()
            self.session.add(student)
            self.repo.replace_groups(student.id, self.groups.resolve(user_id, group_ids, group_name))
        return self.get(user_id, student_id)

    def delete(self, user_id: int, student_id: int) -> None:
        student = self.get_owned(user_id, student_id)
        with atomic(self.session):
            self.session.delete(student)

    def bulk_import(self, user_id: int, rows: List[dict]) -> dict:
        """Create students from pre-parsed CSV rows.

        Every row needs a name, a group and an ISO birthday; the whole
        import is refused if any row is incomplete. Unknown groups are
        created on the fly.
        """
        parsed = []
        for index, row in enumerate(rows):
            name = (row.get("name") or "").strip()
            group = (row.get("group") or "").strip()
            birthday_raw = (row.get("birthday") or "").strip()
            if not name:
                raise InvalidRequestError("Student name is required for all entries")
            if not group:
                raise InvalidRequestError("Student group is required for all entries")
            if not birthday_raw:
                raise InvalidRequestError("Student birthday is required for all entries")
            try:
                birthday = date.fromisoformat(birthday_raw)
            except ValueError:
                raise InvalidRequestError(f"Invalid birthday on row {index + 1}: {birthday_raw}")
            parsed.append((name, group, birthday))

        created_groups: List[str] = []
        students: List[models.Student] = []
        with atomic(self.session):
            for name, group_name, birthday in parsed:
                student = models.Student(user_id=user_id, name=name, birthday=birthday)
                self.session.add(student)
                self.session.flush()
                group, created = self.groups.repo.find_or_create(user_id, group_name)
                if created:
                    created_groups.append(group_name)
                self.repo.link_group(student.id, group.id)
                students.append(student)
        message = f"Successfully imported {len(students)} students"
        if created_groups:
            message += f" and created {len(created_groups)} new groups: {', '.join(created_groups)}"
        return {"message": message, "students": [to_dict(s) for s in students], "created_groups": created_groups}

    def set_subjects(self, user_id: int, student_id: int, subject_ids: List[int]) -> List[int]:
        self.get_owned(user_id, student_id)
        subject_repo = repositories.SubjectRepository(self.session)
        if any(subject_repo.get_owned(user_id, sid) is None for sid in subject_ids):
            raise InvalidRequestError("One or more subjects are invalid")
        with atomic(self.session):
            self.repo.replace_subjects(student_id, subject_ids)
        return sorted(self.repo.subject_ids([student_id]).get(student_id, []))


class CategoryService:
    """Grade-category types: at most one default per user, names unique per user."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CategoryRepository(session)

    def list(self, user_id: int, active_only: bool = False) -> List[models.GradeCategoryType]:
        return self.repo.list_for_user(user_id, active_only=active_only)

    def get(self, user_id: int, category_id: int) -> models.GradeCategoryType:
        category = self.repo.get_owned(user_id, category_id)
        if not category:
            raise NotFoundError("Grade category type not found")
        return category

    def _ensure_unique(self, user_id: int, name: str, category_id: Optional[int] = None) -> None:
        existing = self.repo.get_by_name(user_id, name)
        if existing and existing.id != category_id:
            raise ConflictError("A category with this name already exists")

    def create(self, user_id: int, data: dict) -> models.GradeCategoryType:
        name = data["name"].strip()
        if not name:
            raise InvalidRequestError("Name is required")
        self._ensure_unique(user_id, name)
        with atomic(self.session):
            if data.get("is_default"):
                self.repo.clear_defaults(user_id)
            sort_order = data.get("sort_order")
            category = models.GradeCategoryType(
                user_id=user_id,
                name=name,
                description=data.get("description"),
                color=data.get("color") or "#6366f1",
                sort_order=self.repo.next_sort_order(user_id) if sort_order is None else sort_order,
                is_active=data.get("is_active", True),
                is_default=data.get("is_default", False),
            )
            self.session.add(category)
        self.session.refresh(category)
        return category

    def update(self, user_id: int, category_id: int, data: dict) -> models.GradeCategoryType:
        category = self.get(user_id, category_id)
        name = data["name"].strip()
        if not name:
            raise InvalidRequestError("Name is required")
        self._ensure_unique(user_id, name, category_id)
        with atomic(self.session):
            if data.get("is_default"):
                self.repo.clear_defaults(user_id, except_id=category_id)
            category.name = name
            category.description = data.get("description")
            if data.get("color"):
                category.color = data["color"]
            if data.get("sort_order") is not None:
                category.sort_order = data["sort_order"]
            category.is_active = data.get("is_active", True)
            category.is_default = data.get("is_default", False)
            category.updated_at = utcnow()
            self.session.add(category)
        self.session.refresh(category)
        return category

    def delete(self, user_id: int, category_id: int) -> None:
        category = self.get(user_id, category_id)
        if self.repo.lesson_usage(category_id):
            raise InvalidRequestError("Cannot delete category that is being used by existing lessons")
        with atomic(self.session):
            self.session.delete(category)

    def usage(self, user_id: int, category_id: int) -> dict:
        self.get(user_id, category_id)
        count = self.repo.weight_usage(category_id)
        return {"in_use": count > 0, "usage_count": count, "lesson_count": self.repo.lesson_usage(category_id)}


class SubjectService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SubjectRepository(session)
        self.groups = StudentGroupService(session)
        self.categories = CategoryService(session)

    def get_owned(self, user_id: int, subject_id: int) -> models.Subject:
        subject = self.repo.get_owned(user_id, subject_id)
        if not subject:
            raise NotFoundError("Subject not found")
        return subject

    def _out(self, subject: models.Subject) -> dict:
        row = to_dict(subject)
        row["group_name"] = ", ".join(self.repo.group_names(subject.id)) or None
        row["group_ids"] = self.repo.group_ids(subject.id)
        row["weights"] = self.repo.weights(subject.id)
        return row

    def list(self, user_id: int, group_id: Optional[int] = None) -> List[dict]:
        out = []
        for subject in self.repo.list_for_user(user_id, group_id):
            row = self._out(subject)
            row["lesson_count"] = self.repo.lesson_count(subject.id)
            out.append(row)
        return out

    def get(self, user_id: int, subject_id: int) -> dict:
        """Subject with weights, groups, lessons, markers and the interleaved sequence."""
        subject = self.get_owned(user_id, subject_id)
        row = self._out(subject)
        lessons = LessonService(self.session)
        row["lessons"] = lessons.list(user_id, subject_id)
        row["markers"] = [to_dict(m) for m in repositories.MarkerRepository(self.session).list_for_subject(subject_id)]
        row["sequence"] = [e.to_dict() for e in SubjectSequence(self.session, subject_id).entries()]
        return row

    def _check_weights(self, user_id: int, weights: Dict[int, float]) -> None:
        for category_id in weights:
            if not self.categories.repo.get_owned(user_id, category_id):
                raise InvalidRequestError(f"Unknown grade category: {category_id}")

    def create(self, user_id: int, data: dict) -> dict:
        weights = data.get("weights") or {}
        self._check_weights(user_id, weights)
        with atomic(self.session):
            subject = models.Subject(
                user_id=user_id,
                name=data["name"].strip(),
                report_card_name=data.get("report_card_name"),
                description=data.get("description"),
            )
            self.session.add(subject)
            self.session.flush()
            group_ids = self.groups.resolve(user_id, data.get("group_ids") or [], data.get("group_name"))
            self.repo.replace_groups(subject.id, group_ids)
            self.repo.replace_weights(subject.id, weights)
        return self._out(subject)

    def update(self, user_id: int, subject_id: int, data: dict) -> dict:
        subject = self.get_owned(user_id, subject_id)
        weights = data.get("weights") or {}
        self._check_weights(user_id, weights)
        with atomic(self.session):
            subject.name = data["name"].strip()
            subject.report_card_name = data.get("report_card_name")
            subject.description = data.get("description")
            subject.updated_at = utcnow()
            self.session.add(subject)
            group_ids = self.groups.resolve(user_id, data.get("group_ids") or [], data.get("group_name"))
            self.repo.replace_groups(subject.id, group_ids)
            self.repo.replace_weights(subject.id, weights)
        return self._out(subject)

    def delete(self, user_id: int, subject_id: int) -> None:
        subject = self.get_owned(user_id, subject_id)
        with atomic(self.session):
            self.session.delete(subject)


class LessonService:
    """Lessons of a subject; every index change goes through `SubjectSequence`."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.LessonRepository(session)
        self.subjects = repositories.SubjectRepository(session)
        self.categories = repositories.CategoryRepository(session)

    def _subject(self, user_id: int, subject_id: int) -> models.Subject:
        subject = self.subjects.get_owned(user_id, subject_id)
        if not subject:
            raise NotFoundError("Subject not found")
        return subject

    def get_owned(self, user_id: int, lesson_id: int) -> models.Lesson:
        lesson = self.repo.get_owned(user_id, lesson_id)
        if not lesson:
            raise NotFoundError("Lesson not found")
        return lesson

    def _out(self, lesson: models.Lesson, categories: Optional[Dict[int, models.GradeCategoryType]] = None) -> dict:
        row = to_dict(lesson)
        category = None
        if lesson.category_id is not None:
            if categories is not None:
                category = categories.get(lesson.category_id)
            else:
                category = self.session.get(models.GradeCategoryType, lesson.category_id)
        row["type"] = category.name if category else None
        row["type_color"] = category.color if category else None
        return row

    def list(self, user_id: int, subject_id: int) -> List[dict]:
        self._subject(user_id, subject_id)
        categories = self.repo.category_names(user_id)
        return [self._out(lesson, categories) for lesson in self.repo.list_for_subject(subject_id)]

    def get(self, user_id: int, lesson_id: int) -> dict:
        return self._out(self.get_owned(user_id, lesson_id))

    def _category_id(self, user_id: int, category_id: Optional[int]) -> int:
        """Validate a category, or fall back to the user's default one."""
        if category_id is not None:
            if not self.categories.get_owned(user_id, category_id):
                raise InvalidRequestError(f"Unknown grade category: {category_id}")
            return category_id
        default = self.categories.default_for_user(user_id)
        if not default:
            raise InvalidRequestError("No grade categories found. Please create grade categories first.")
        return default.id

    def create(self, user_id: int, subject_id: int, name: str, category_id: Optional[int] = None,
               points: int = 100, order_index: Optional[int] = None) -> dict:
        self._subject(user_id, subject_id)
        lesson = models.Lesson(
            subject_id=subject_id,
            name=name.strip(),
            category_id=self._category_id(user_id, category_id),
            points=points,
        )
        with atomic(self.session):
            SubjectSequence(self.session, subject_id).insert(lesson, order_index)
        return self._out(lesson)

    def bulk_create(self, user_id: int, subject_id: int, count: int, name_prefix: str = "Lesson",
                    category_id: Optional[int] = None, points: int = 100) -> List[dict]:
        """Append `count` lessons named `<prefix> <n>` after the current end.

        Numbering continues from the number of lessons already in the
        subject, so a second batch does not repeat names.
        """
        self._subject(user_id, subject_id)
        category_id = self._category_id(user_id, category_id)
        existing = self.subjects.lesson_count(subject_id)
        lessons = [
            models.Lesson(name=f"{name_prefix.strip()} {existing + n}", category_id=category_id, points=points)
            for n in range(1, count + 1)
        ]
        with atomic(self.session):
            SubjectSequence(self.session, subject_id).append_many(lessons)
        categories = self.repo.category_names(user_id)
        return [self._out(lesson, categories) for lesson in lessons]

    def update(self, user_id: int, lesson_id: int, changes: dict) -> dict:
        """Apply a partial update; new points recalculate the lesson's grades.

        An explicit `category_id` of None clears the lesson's category.
        """
        lesson = self.get_owned(user_id, lesson_id)
        if changes.get("category_id") is not None:
            self._category_id(user_id, changes["category_id"])
        with atomic(self.session):
            if changes.get("name") is not None:
                lesson.name = changes["name"].strip()
            if "category_id" in changes:
                lesson.category_id = changes["category_id"]
            points_changed = changes.get("points") is not None and changes["points"] != lesson.points
            if points_changed:
                lesson.points = changes["points"]
            lesson.updated_at = utcnow()
            self.session.add(lesson)
            if changes.get("order_index") is not None:
                SubjectSequence(self.session, lesson.subject_id).move(lesson, changes["order_index"])
            if points_changed:
                GradeService(self.session).recalculate_for_lesson(lesson)
        return self._out(lesson)

    def delete(self, user_id: int, lesson_id: int) -> None:
        lesson = self.get_owned(user_id, lesson_id)
        with atomic(self.session):
            SubjectSequence(self.session, lesson.subject_id).remove(lesson)

    def sequence(self, user_id: int, subject_id: int) -> List[dict]:
        self._subject(user_id, subject_id)
        return [e.to_dict() for e in SubjectSequence(self.session, subject_id).entries()]

    def resequence(self, user_id: int, subject_id: int) -> dict:
        self._subject(user_id, subject_id)
        with atomic(self.session):
            changed = SubjectSequence(self.session, subject_id).resequence()
        return {"changed": changed, "sequence": self.sequence(user_id, subject_id)}


class MarkerService:
    """Grading-period markers: positional separators in a subject's sequence."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.MarkerRepository(session)
        self.subjects = repositories.SubjectRepository(session)

    def _subject(self, user_id: int, subject_id: int) -> models.Subject:
        subject = self.subjects.get_owned(user_id, subject_id)
        if not subject:
            raise NotFoundError("Subject not found")
        return subject

    def get_owned(self, user_id: int, marker_id: int) -> models.GradingPeriodMarker:
        marker = self.repo.get_owned(user_id, marker_id)
        if not marker:
            raise NotFoundError("Grading period marker not found")
        return marker

    def list(self, user_id: int, subject_id: int) -> List[models.GradingPeriodMarker]:
        self._subject(user_id, subject_id)
        return self.repo.list_for_subject(subject_id)

    def create(self, user_id: int, subject_id: int, name: Optional[str] = None,
               order_index: Optional[int] = None) -> models.GradingPeriodMarker:
        """Insert a marker; a subject holds at most `grading_periods - 1` of them."""
        self._subject(user_id, subject_id)
        user = self.session.get(models.User, user_id)
        grading_periods = (user.grading_periods if user else None) or settings.DEFAULT_GRADING_PERIODS
        max_markers = grading_periods - 1
        count = self.repo.count_for_subject(subject_id)
        if count >= max_markers:
            raise InvalidRequestError(
                f"Cannot add more grading period markers. Your grading periods setting ({grading_periods}) "
                f"allows a maximum of {max_markers} markers per subject."
            )
        marker = models.GradingPeriodMarker(
            subject_id=subject_id,
            name=(name or "").strip() or f"End of Grading Period {count + 1}",
        )
        with atomic(self.session):
            SubjectSequence(self.session, subject_id).insert(marker, order_index)
        self.session.refresh(marker)
        return marker

    def update(self, user_id: int, marker_id: int, name: Optional[str] = None,
               order_index: Optional[int] = None) -> models.GradingPeriodMarker:
        marker = self.get_owned(user_id, marker_id)
        with atomic(self.session):
            if name is not None and name.strip():
                marker.name = name.strip()
            marker.updated_at = utcnow()
            self.session.add(marker)
            if order_index is not None:
                SubjectSequence(self.session, marker.subject_id).move(marker, order_index)
        self.session.refresh(marker)
        return marker

    def delete(self, user_id: int, marker_id: int) -> None:
        marker = self.get_owned(user_id, marker_id)
        with atomic(self.session):
            SubjectSequence(self.session, marker.subject_id).remove(marker)


class GradeService:
    """Grade entry; keeps percentage and errors consistent with lesson points."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.GradeRepository(session)
        self.students = repositories.StudentRepository(session)
        self.lessons = repositories.LessonRepository(session)
        self.subjects = repositories.SubjectRepository(session)

    def _student_and_lesson(self, user_id: int, student_id: int, lesson_id: int):
        student = self.students.get_owned(user_id, student_id)
        lesson = self.lessons.get_owned(user_id, lesson_id)
        if not student or not lesson:
            raise NotFoundError("Student or lesson not found")
        return student, lesson

    def list_for_user(self, user_id: int) -> List[dict]:
        out = []
        for grade, student, lesson, subject in self.repo.rows_for_user(user_id):
            out.append({
                "id": grade.id,
                "student_id": student.id,
                "lesson_id": lesson.id,
                "subject_id": subject.id,
                "percentage": grade.percentage,
                "errors": grade.errors,
                "points": grade.points,
                "max_points": lesson.points,
                "created_at": grade.created_at,
                "updated_at": grade.updated_at,
            })
        return out

    def for_student_subject(self, user_id: int, student_id: int, subject_id: int) -> List[dict]:
        if not self.students.get_owned(user_id, student_id) or not self.subjects.get_owned(user_id, subject_id):
            raise NotFoundError("Student or subject not found")
        categories = self.lessons.category_names(user_id)
        out = []
        for lesson, grade in self.repo.lessons_with_grades(student_id, subject_id):
            if grade is None:
                continue
            row = to_dict(grade)
            category = categories.get(lesson.category_id)
            row.update({
                "lesson_name": lesson.name,
                "lesson_type": category.name if category else None,
                "lesson_points": lesson.points,
                "order_index": lesson.order_index,
            })
            out.append(row)
        return out

    def subject_matrix(self, user_id: int, subject_id: int) -> List[dict]:
        """Every student of the user against every lesson of the subject."""
        if not self.subjects.get_owned(user_id, subject_id):
            raise NotFoundError("Subject not found")
        lessons = self.lessons.list_for_subject(subject_id)
        categories = self.lessons.category_names(user_id)
        grades = {(g.student_id, g.lesson_id): g for g in self.repo.for_subject(subject_id)}
        out = []
        for student in self.students.list_for_user(user_id):
            cells = []
            for lesson in lessons:
                grade = grades.get((student.id, lesson.id))
                category = categories.get(lesson.category_id)
                cells.append({
                    "grade_id": grade.id if grade else None,
                    "lesson_id": lesson.id,
                    "lesson_name": lesson.name,
                    "lesson_type": category.name if category else None,
                    "lesson_points": lesson.points,
                    "order_index": lesson.order_index,
                    "percentage": grade.percentage if grade else None,
                    "errors": grade.errors if grade else None,
                    "grade_points": grade.points if grade else None,
                })
            out.append({"student_id": student.id, "student_name": student.name, "grades": cells})
        return out

    def upsert(self, user_id: int, student_id: int, lesson_id: int, percentage: Optional[float] = None,
               errors: Optional[float] = None, points: Optional[int] = None) -> models.Grade:
        """Create or replace the grade of a student on a lesson.

        Whichever of percentage/errors is missing is derived from the
        other (see `utils.grade_math.resolve_grade`).
        """
        _, lesson = self._student_and_lesson(user_id, student_id, lesson_id)
        try:
            final_percentage, final_errors, final_points = resolve_grade(lesson.points, percentage, errors, points)
        except ValueError as e:
            raise InvalidRequestError(str(e))
        grade = self.repo.get(student_id, lesson_id)
        with atomic(self.session):
            if grade is None:
                grade = models.Grade(student_id=student_id, lesson_id=lesson_id)
            grade.percentage = final_percentage
            grade.errors = final_errors
            grade.points = final_points
            grade.updated_at = utcnow()
            self.session.add(grade)
        self.session.refresh(grade)
        return grade

    def delete(self, user_id: int, student_id: int, lesson_id: int) -> None:
        self._student_and_lesson(user_id, student_id, lesson_id)
        grade = self.repo.get(student_id, lesson_id)
        if not grade:
            raise NotFoundError("Grade not found")
        with atomic(self.session):
            self.session.delete(grade)

    def recalculate_for_lesson(self, lesson: models.Lesson) -> int:
        """Re-derive percentages of grades with recorded errors after a points change.

        Errors above the new point total are capped at it, so such a grade
        ends at 0%. Stages the changes only; the caller owns the transaction.
        """
        touched = 0
        for grade in self.repo.list_for_lesson(lesson.id):
            if grade.errors is None:
                continue
            grade.errors = min(grade.errors, float(lesson.points))
            grade.points = lesson.points
            grade.percentage = max(0.0, percentage_from_errors(grade.errors, lesson.points))
            grade.updated_at = utcnow()
            self.session.add(grade)
            touched += 1
        return touched

    def update_lesson_points(self, user_id: int, subject_id: int, lesson_id: int, points: int) -> int:
        lesson = self.lessons.get_owned(user_id, lesson_id)
        if not lesson or lesson.subject_id != subject_id:
            raise NotFoundError("Lesson not found")
        with atomic(self.session):
            lesson.points = points
            lesson.updated_at = utcnow()
            self.session.add(lesson)
            touched = self.recalculate_for_lesson(lesson)
        return touched


class MetadataService:
    """Per-user metadata and whole-database statistics."""
    def __init__(self, session: Session):
        self.session = session

    def for_user(self, user_id: int) -> dict:
        meta = self.session.get(models.UserMetadata, user_id)
        if meta is None:
            meta = models.UserMetadata(user_id=user_id)
            with atomic(self.session):
                self.session.add(meta)
        row = to_dict(meta)
        row.update({
            "student_count": repositories.StudentRepository(self.session).count_for_user(user_id),
            "subject_count": repositories.SubjectRepository(self.session).count_for_user(user_id),
            "grade_count": repositories.GradeRepository(self.session).count_for_user(user_id),
        })
        return row

    def stats(self, user_id: int) -> dict:
        def count(model, *where):
            stmt = select(func.count()).select_from(model)
            for clause in where:
                stmt = stmt.where(clause)
            return self.session.exec(stmt).one()

        students = count(models.Student)
        subjects = count(models.Subject)
        grades = count(models.Grade)
        backups = repositories.BackupRepository(self.session).list_for_user(user_id)
        return {
            "total_users": count(models.User, models.User.is_active == True),  # noqa: E712
            "total_students": students,
            "total_subjects": subjects,
            "total_grades": grades,
            "storage_size": students * 100 + subjects * 50 + grades * 25,
            "last_backup": backups[0].created_at if backups else None,
        }

    def fix_defaults(self, user_id: int) -> dict:
        defaults = DefaultsService(self.session)
        with atomic(self.session):
            groups = defaults.seed_groups(user_id)
            categories = defaults.seed_categories(user_id)
        return {"groups_seeded": groups, "categories_seeded": categories}
