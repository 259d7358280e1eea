"""JSON backup and restore of one user's data.

A backup is a self-contained JSON document with the user's groups,
categories, subjects, students, lessons, markers and grades. Ids inside
the document are the ids at export time; restore maps them onto freshly
created rows, so a backup can be loaded into any account.

Two restore modes exist:

- replace (default): the user's existing groups, categories, subjects
  and students (and through cascades everything below them) are deleted
  first, then the backup is loaded in full.
- merge: rows are matched by name. Existing groups, categories, subjects
  and students are reused; lessons and markers are only loaded for
  subjects the merge creates, so existing sequences are never touched.

Both modes run in a single transaction.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import delete
from sqlmodel import Session

from . import models, repositories, schemas
from .database import atomic
from .errors import InvalidRequestError, NotFoundError
from .models import utcnow
from .ordering import SubjectSequence

logger = logging.getLogger("gradeflow.backups")

BACKUP_VERSION = "2.0.0"
LIST_SECTIONS = (
    "student_groups",
    "grade_category_types",
    "subjects",
    "students",
    "lessons",
    "grading_period_markers",
    "grades",
)
ROW_SCHEMAS = {
    "student_groups": schemas.BackupGroupRow,
    "grade_category_types": schemas.BackupCategoryRow,
    "subjects": schemas.BackupSubjectRow,
    "students": schemas.BackupStudentRow,
    "lessons": schemas.BackupLessonRow,
    "grading_period_markers": schemas.BackupMarkerRow,
    "grades": schemas.BackupGradeRow,
}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidRequestError(f"Invalid date in backup: {value}")


def _row_error(where: str, exc: ValidationError) -> InvalidRequestError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "row"
    return InvalidRequestError(
        f"Invalid backup file format: {where}.{field}: {first.get('msg', 'invalid value')}"
    )


def validate_backup(payload: Any) -> dict:
    """Check a backup document and return a normalized copy.

    Every row is validated against its schema in `schemas`, so ids are
    integers and weights, points and indices are within the bounds the API
    enforces. References between sections are resolved (and dangling ones
    skipped) during restore.
    """
    if not isinstance(payload, dict):
        raise InvalidRequestError("Invalid backup file format")
    if not payload.get("version"):
        raise InvalidRequestError("Invalid backup file format: missing version")
    out = dict(payload)
    for section, row_schema in ROW_SCHEMAS.items():
        if section not in payload:
            continue
        value = payload[section]
        if not isinstance(value, list):
            raise InvalidRequestError(f"Invalid backup file format: {section} must be a list")
        rows = []
        for index, row in enumerate(value):
            if not isinstance(row, dict):
                raise InvalidRequestError(f"Invalid backup file format: bad entry in {section}")
            try:
                rows.append(row_schema.model_validate(row).model_dump())
            except ValidationError as e:
                raise _row_error(f"{section}[{index}]", e)
        out[section] = rows
    settings_block = payload.get("school_settings")
    if settings_block is not None:
        if not isinstance(settings_block, dict):
            raise InvalidRequestError("Invalid backup file format: school_settings must be an object")
        try:
            out["school_settings"] = schemas.BackupSettingsRow.model_validate(settings_block).model_dump()
        except ValidationError as e:
            raise _row_error("school_settings", e)
    return out


def parse_backup(raw: bytes) -> dict:
    """Decode an uploaded backup file."""
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise InvalidRequestError("Backup file is not valid JSON")
    return validate_backup(payload)


class BackupService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.BackupRepository(session)
        self.groups = repositories.StudentGroupRepository(session)
        self.students = repositories.StudentRepository(session)
        self.subjects = repositories.SubjectRepository(session)
        self.categories = repositories.CategoryRepository(session)
        self.lessons = repositories.LessonRepository(session)
        self.markers = repositories.MarkerRepository(session)

    # export

    def export_user_data(self, user_id: int) -> dict:
        """Build the backup document for `user_id`."""
        user = self.session.get(models.User, user_id)
        if not user:
            raise NotFoundError("User not found")
        groups = self.groups.list_for_user(user_id)
        categories = self.categories.list_for_user(user_id)
        subjects = self.subjects.list_for_user(user_id)
        students = self.students.list_for_user(user_id)
        student_subjects = self.students.subject_ids([s.id for s in students])

        lessons: List[dict] = []
        markers: List[dict] = []
        grades: List[dict] = []
        for subject in subjects:
            for lesson in self.lessons.list_for_subject(subject.id):
                lessons.append({
                    "id": lesson.id,
                    "subject_id": subject.id,
                    "name": lesson.name,
                    "category_id": lesson.category_id,
                    "points": lesson.points,
                    "order_index": lesson.order_index,
                })
            for marker in self.markers.list_for_subject(subject.id):
                markers.append({
                    "id": marker.id,
                    "subject_id": subject.id,
                    "name": marker.name,
                    "order_index": marker.order_index,
                })
            for grade in repositories.GradeRepository(self.session).for_subject(subject.id):
                grades.append({
                    "student_id": grade.student_id,
                    "lesson_id": grade.lesson_id,
                    "percentage": grade.percentage,
                    "errors": grade.errors,
                    "points": grade.points,
                })

        meta = self.session.get(models.UserMetadata, user_id)
        return {
            "version": BACKUP_VERSION,
            "exported_at": _iso(utcnow()),
            "exported_by": {"id": user.id, "email": user.email, "name": user.name},
            "school_settings": {
                "school_name": user.school_name,
                "first_day_of_school": _iso(user.first_day_of_school),
                "grading_periods": user.grading_periods,
            },
            "student_groups": [
                {"id": g.id, "name": g.name, "description": g.description} for g in groups
            ],
            "grade_category_types": [
                {
                    "id": c.id,
                    "name": c.name,
                    "description": c.description,
                    "color": c.color,
                    "is_default": c.is_default,
                    "is_active": c.is_active,
                    "sort_order": c.sort_order,
                }
                for c in categories
            ],
            "subjects": [
                {
                    "id": s.id,
                    "name": s.name,
                    "report_card_name": s.report_card_name,
                    "description": s.description,
                    "group_ids": self.subjects.group_ids(s.id),
                    "weights": {str(k): v for k, v in self.subjects.weights(s.id).items()},
                }
                for s in subjects
            ],
            "students": [
                {
                    "id": s.id,
                    "name": s.name,
                    "birthday": _iso(s.birthday),
                    "group_ids": self.students.group_ids(s.id),
                    "subject_ids": sorted(student_subjects.get(s.id, [])),
                }
                for s in students
            ],
            "lessons": lessons,
            "grading_period_markers": markers,
            "grades": grades,
            "metadata": {
                "data_version": meta.data_version if meta else BACKUP_VERSION,
                "student_count": len(students),
                "subject_count": len(subjects),
                "grade_count": len(grades),
            },
        }

    # stored snapshots

    def create_snapshot(self, user_id: int) -> dict:
        data = self.export_user_data(user_id)
        timestamp = utcnow().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup = models.UserBackup(user_id=user_id, backup_timestamp=timestamp, backup_data=json.dumps(data))
        with atomic(self.session):
            self.session.add(backup)
        logger.info("created backup %s for user %s", timestamp, user_id)
        return {"id": backup.id, "timestamp": timestamp, "created_at": backup.created_at, **data["metadata"]}

    def list_snapshots(self, user_id: int) -> List[dict]:
        out = []
        for backup in self.repo.list_for_user(user_id):
            metadata = json.loads(backup.backup_data).get("metadata", {})
            out.append({
                "id": backup.id,
                "timestamp": backup.backup_timestamp,
                "created_at": backup.created_at,
                "metadata": metadata,
            })
        return out

    def _snapshot(self, user_id: int, timestamp: str) -> models.UserBackup:
        backup = self.repo.get_by_timestamp(user_id, timestamp)
        if not backup:
            raise NotFoundError("Backup not found")
        return backup

    def restore_snapshot(self, user_id: int, timestamp: str, merge: bool = False) -> dict:
        payload = validate_backup(json.loads(self._snapshot(user_id, timestamp).backup_data))
        return self.restore(user_id, payload, merge=merge)

    def delete_snapshot(self, user_id: int, timestamp: str) -> None:
        backup = self._snapshot(user_id, timestamp)
        with atomic(self.session):
            self.session.delete(backup)

    # restore

    def restore(self, user_id: int, payload: dict, merge: bool = False, update_settings: bool = False) -> dict:
        """Load a validated backup document into the account of `user_id`."""
        payload = validate_backup(payload)
        counts = {section: 0 for section in LIST_SECTIONS}
        counts["settings_updated"] = False
        with atomic(self.session):
            if not merge:
                self._clear(user_id)
            if update_settings and payload.get("school_settings"):
                counts["settings_updated"] = self._apply_settings(user_id, payload["school_settings"])
            group_map = self._restore_groups(user_id, payload, counts)
            category_map = self._restore_categories(user_id, payload, counts)
            subject_map, new_subjects = self._restore_subjects(user_id, payload, merge, group_map, category_map, counts)
            student_map = self._restore_students(user_id, payload, merge, group_map, subject_map, counts)
            lesson_map = self._restore_sequences(payload, subject_map, new_subjects, category_map, counts)
            self._restore_grades(payload, student_map, lesson_map, counts)
            self._touch_metadata(user_id, payload.get("version", BACKUP_VERSION))
        logger.info("restored backup for user %s (merge=%s): %s", user_id, merge, counts)
        return counts

    def _clear(self, user_id: int) -> None:
        for model in (models.Student, models.Subject, models.GradeCategoryType, models.StudentGroup):
            self.session.exec(delete(model).where(model.user_id == user_id))

    def _apply_settings(self, user_id: int, block: dict) -> bool:
        user = self.session.get(models.User, user_id)
        user.school_name = block.get("school_name") or None
        user.first_day_of_school = _parse_date(block.get("first_day_of_school"))
        periods = block.get("grading_periods")
        if isinstance(periods, int) and 1 <= periods <= 12:
            user.grading_periods = periods
        user.updated_at = utcnow()
        self.session.add(user)
        return True

    def _restore_groups(self, user_id: int, payload: dict, counts: dict) -> Dict[int, int]:
        mapping: Dict[int, int] = {}
        for row in payload.get("student_groups", []):
            name = (row.get("name") or "").strip()
            if not name:
                continue
            group = self.groups.get_by_name(user_id, name)
            if group is None:
                group = models.StudentGroup(user_id=user_id, name=name, description=row.get("description"))
                self.session.add(group)
                self.session.flush()
                counts["student_groups"] += 1
            if row.get("id") is not None:
                mapping[row["id"]] = group.id
        return mapping

    def _restore_categories(self, user_id: int, payload: dict, counts: dict) -> Dict[int, int]:
        mapping: Dict[int, int] = {}
        has_default = self.categories.default_for_user(user_id) is not None
        for row in payload.get("grade_category_types", []):
            name = (row.get("name") or "").strip()
            if not name:
                continue
            category = self.categories.get_by_name(user_id, name)
            if category is None:
                is_default = bool(row.get("is_default")) and not has_default
                has_default = has_default or is_default
                category = models.GradeCategoryType(
                    user_id=user_id,
                    name=name,
                    description=row.get("description"),
                    color=row.get("color") or "#6366f1",
                    is_default=is_default,
                    is_active=row.get("is_active", True),
                    sort_order=row.get("sort_order") or 0,
                )
                self.session.add(category)
                self.session.flush()
                counts["grade_category_types"] += 1
            if row.get("id") is not None:
                mapping[row["id"]] = category.id
        return mapping

    def _restore_subjects(self, user_id, payload, merge, group_map, category_map, counts):
        mapping: Dict[int, int] = {}
        created: set = set()
        for row in payload.get("subjects", []):
            name = (row.get("name") or "").strip()
            if not name:
                continue
            subject = self.subjects.get_by_name(user_id, name) if merge else None
            if subject is None:
                subject = models.Subject(
                    user_id=user_id,
                    name=name,
                    report_card_name=row.get("report_card_name"),
                    description=row.get("description"),
                )
                self.session.add(subject)
                self.session.flush()
                self.subjects.replace_groups(
                    subject.id, [group_map[g] for g in row.get("group_ids", []) if g in group_map]
                )
                weights = {}
                for category_id, weight in row["weights"].items():
                    mapped = category_map.get(category_id)
                    if mapped is not None:
                        weights[mapped] = weight
                self.subjects.replace_weights(subject.id, weights)
                created.add(subject.id)
                counts["subjects"] += 1
            if row.get("id") is not None:
                mapping[row["id"]] = subject.id
        return mapping, created

    def _restore_students(self, user_id, payload, merge, group_map, subject_map, counts) -> Dict[int, int]:
        mapping: Dict[int, int] = {}
        existing = {s.name: s for s in self.students.list_for_user(user_id)} if merge else {}
        for row in payload.get("students", []):
            name = (row.get("name") or "").strip()
            if not name:
                continue
            student = existing.get(name)
            if student is None:
                student = models.Student(user_id=user_id, name=name, birthday=_parse_date(row.get("birthday")))
                self.session.add(student)
                self.session.flush()
                counts["students"] += 1
            for group_id in row.get("group_ids", []):
                if group_id in group_map:
                    self.students.link_group(student.id, group_map[group_id])
            enrolled = set(self.students.subject_ids([student.id]).get(student.id, []))
            enrolled.update(subject_map[s] for s in row.get("subject_ids", []) if s in subject_map)
            self.students.replace_subjects(student.id, sorted(enrolled))
            if row.get("id") is not None:
                mapping[row["id"]] = student.id
        return mapping

    def _restore_sequences(self, payload, subject_map, new_subjects, category_map, counts) -> Dict[int, int]:
        """Load lessons and markers of newly created subjects, then renumber them densely."""
        mapping: Dict[int, int] = {}
        for row in payload.get("lessons", []):
            subject_id = subject_map.get(row.get("subject_id"))
            if subject_id not in new_subjects:
                continue
            lesson = models.Lesson(
                subject_id=subject_id,
                name=row.get("name") or "Lesson",
                category_id=category_map.get(row.get("category_id")),
                points=row.get("points") or 100,
                order_index=row.get("order_index") or 0,
            )
            self.session.add(lesson)
            self.session.flush()
            counts["lessons"] += 1
            if row.get("id") is not None:
                mapping[row["id"]] = lesson.id
        for row in payload.get("grading_period_markers", []):
            subject_id = subject_map.get(row.get("subject_id"))
            if subject_id not in new_subjects:
                continue
            self.session.add(models.GradingPeriodMarker(
                subject_id=subject_id,
                name=row.get("name") or "End of Grading Period",
                order_index=row.get("order_index") or 0,
            ))
            counts["grading_period_markers"] += 1
        self.session.flush()
        for subject_id in new_subjects:
            SubjectSequence(self.session, subject_id).resequence()
        return mapping

    def _restore_grades(self, payload, student_map, lesson_map, counts) -> None:
        grade_repo = repositories.GradeRepository(self.session)
        for row in payload.get("grades", []):
            student_id = student_map.get(row.get("student_id"))
            lesson_id = lesson_map.get(row.get("lesson_id"))
            if student_id is None or lesson_id is None:
                continue
            if grade_repo.get(student_id, lesson_id) is not None:
                continue
            self.session.add(models.Grade(
                student_id=student_id,
                lesson_id=lesson_id,
                percentage=row.get("percentage"),
                errors=row.get("errors"),
                points=row.get("points"),
            ))
            self.session.flush()
            counts["grades"] += 1

    def _touch_metadata(self, user_id: int, version: str) -> None:
        meta = self.session.get(models.UserMetadata, user_id)
        if meta is None:
            meta = models.UserMetadata(user_id=user_id)
        meta.data_version = version
        meta.updated_at = utcnow()
        self.session.add(meta)


def export_to_file(session: Session, email: str, path: str) -> dict:
    """Write the backup of the user with `email` to `path`; used by the export script."""
    user = repositories.UserRepository(session).get_by_email(email)
    if not user:
        raise NotFoundError(f"No user with email {email}")
    data = BackupService(session).export_user_data(user.id)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)
    return data["metadata"]
