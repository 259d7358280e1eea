"""Grade aggregation and reports.

The two pure functions at the top carry the weighting rule used by every
report: a subject's final grade is the weight-normalised mean of its
per-category averages, where only categories that actually have grades
take part. `ReportService` wraps them with the queries for the student,
group, dashboard and subject statistics views.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from . import models, repositories
from .errors import NotFoundError
from .models import to_dict
from .utils.grade_math import mean, round_tenth

LETTER_BANDS = [("A", 90.0), ("B", 80.0), ("C", 70.0), ("D", 60.0)]


def category_averages(rows: Iterable[Tuple[Optional[int], Optional[float]]]) -> Dict[Optional[int], float]:
    """Average the non-null percentages of `(category_id, percentage)` pairs per category."""
    buckets: Dict[Optional[int], List[float]] = defaultdict(list)
    for category_id, percentage in rows:
        if percentage is not None:
            buckets[category_id].append(percentage)
    return {category_id: sum(values) / len(values) for category_id, values in buckets.items()}


def weighted_average(averages: Dict[Optional[int], float], weights: Dict[int, float]) -> Optional[float]:
    """Weighted mean of category averages; `None` when no weight applies.

    A category without a configured weight counts with weight 0, so it
    neither adds to the sum nor dilutes the result.
    """
    weighted_sum = 0.0
    weight_sum = 0.0
    for category_id, average in averages.items():
        weight = weights.get(category_id, 0.0) if category_id is not None else 0.0
        weighted_sum += average * weight
        weight_sum += weight
    if weight_sum == 0:
        return None
    return weighted_sum / weight_sum


def letter_band(percentage: float) -> str:
    for letter, floor in LETTER_BANDS:
        if percentage >= floor:
            return letter
    return "F"


class ReportService:
    def __init__(self, session: Session):
        self.session = session
        self.students = repositories.StudentRepository(session)
        self.subjects = repositories.SubjectRepository(session)
        self.groups = repositories.StudentGroupRepository(session)
        self.lessons = repositories.LessonRepository(session)
        self.grades = repositories.GradeRepository(session)

    def subject_summary(self, user_id: int, student_id: int, subject_id: int) -> dict:
        """Graded rows, category averages and weighted average of one student in one subject."""
        categories = self.lessons.category_names(user_id)
        weights = self.subjects.weights(subject_id)
        pairs = self.grades.lessons_with_grades(student_id, subject_id)
        graded = []
        for lesson, grade in pairs:
            if grade is None or grade.percentage is None:
                continue
            category = categories.get(lesson.category_id)
            graded.append({
                "lesson_id": lesson.id,
                "lesson_name": lesson.name,
                "category_id": lesson.category_id,
                "category": category.name if category else None,
                "order_index": lesson.order_index,
                "lesson_points": lesson.points,
                "percentage": grade.percentage,
                "errors": grade.errors,
                "points": grade.points,
            })
        averages = category_averages((row["category_id"], row["percentage"]) for row in graded)
        breakdown = []
        for category_id, average in averages.items():
            category = categories.get(category_id)
            breakdown.append({
                "category_id": category_id,
                "category": category.name if category else None,
                "average": round_tenth(average),
                "weight": weights.get(category_id, 0.0) if category_id is not None else 0.0,
            })
        return {
            "subject_id": subject_id,
            "grades": graded,
            "category_averages": breakdown,
            "weighted_average": round_tenth(weighted_average(averages, weights)),
            "graded_count": len(graded),
            "lesson_count": len(pairs),
        }

    def student_report(self, user_id: int, student_id: int) -> dict:
        """Per-subject summaries for every subject of the user that has lessons."""
        student = self.students.get_owned(user_id, student_id)
        if not student:
            raise NotFoundError("Student not found")
        subjects = []
        for subject in self.subjects.list_for_user(user_id):
            if not self.subjects.lesson_count(subject.id):
                continue
            summary = self.subject_summary(user_id, student_id, subject.id)
            summary["subject_name"] = subject.name
            summary["report_card_name"] = subject.report_card_name
            subjects.append(summary)
        averages = [s["weighted_average"] for s in subjects if s["weighted_average"] is not None]
        return {
            "student": to_dict(student),
            "groups": self.students.group_names([student_id]).get(student_id, []),
            "subjects": subjects,
            "overall_average": round_tenth(mean(averages)),
        }

    def group_report(self, user_id: int, group_id: int) -> dict:
        """Weighted averages of every student of a group in every subject linked to it."""
        group = self.groups.get_owned(user_id, group_id)
        if not group:
            raise NotFoundError("Student group not found")
        students = self.students.list_for_user(user_id, group_id)
        subjects = [
            s for s in (self.session.get(models.Subject, sid) for sid in self.groups.subject_ids(group_id))
            if s is not None
        ]
        subjects.sort(key=lambda s: s.name)
        rows = []
        for student in students:
            averages = {}
            for subject in subjects:
                averages[subject.id] = self.subject_summary(user_id, student.id, subject.id)["weighted_average"]
            rows.append({
                "student_id": student.id,
                "student_name": student.name,
                "subject_averages": averages,
                "overall_average": round_tenth(mean(v for v in averages.values() if v is not None)),
            })
        return {
            "group": to_dict(group),
            "subjects": [{"id": s.id, "name": s.name} for s in subjects],
            "students": rows,
        }

    def dashboard(self, user_id: int) -> dict:
        rows = self.grades.rows_for_user(user_id)
        lesson_count = self.session.exec(
            select(func.count())
            .select_from(models.Lesson)
            .join(models.Subject, models.Subject.id == models.Lesson.subject_id)
            .where(models.Subject.user_id == user_id)
        ).one()

        per_subject: Dict[int, dict] = {}
        distribution = {"A": 0, "B": 0, "C": 0, "D": 0, "F": 0}
        for grade, _student, _lesson, subject in rows:
            entry = per_subject.setdefault(
                subject.id, {"subject_id": subject.id, "subject_name": subject.name, "values": []}
            )
            if grade.percentage is not None:
                entry["values"].append(grade.percentage)
                distribution[letter_band(grade.percentage)] += 1
        subject_rows = [
            {
                "subject_id": e["subject_id"],
                "subject_name": e["subject_name"],
                "grade_count": len(e["values"]),
                "average": round_tenth(mean(e["values"])),
            }
            for e in per_subject.values()
        ]

        recent = sorted(rows, key=lambda r: (r[0].updated_at, r[0].id), reverse=True)[:10]
        return {
            "counts": {
                "students": self.students.count_for_user(user_id),
                "groups": self.groups.count_for_user(user_id),
                "subjects": self.subjects.count_for_user(user_id),
                "lessons": lesson_count,
                "grades": len(rows),
            },
            "recent_grades": [
                {
                    "grade_id": grade.id,
                    "student_name": student.name,
                    "lesson_name": lesson.name,
                    "subject_name": subject.name,
                    "percentage": grade.percentage,
                    "updated_at": grade.updated_at,
                }
                for grade, student, lesson, subject in recent
            ],
            "subjects": subject_rows,
            "grade_distribution": distribution,
        }

    def subject_stats(self, user_id: int, subject_id: int) -> dict:
        subject = self.subjects.get_owned(user_id, subject_id)
        if not subject:
            raise NotFoundError("Subject not found")
        lessons = {lesson.id: lesson for lesson in self.lessons.list_for_subject(subject_id)}
        categories = self.lessons.category_names(user_id)
        grades = [g for g in self.grades.for_subject(subject_id) if g.percentage is not None]
        values = [g.percentage for g in grades]

        by_category: Dict[Optional[int], List[float]] = defaultdict(list)
        by_student: Dict[int, List[float]] = defaultdict(list)
        for grade in grades:
            by_category[lessons[grade.lesson_id].category_id].append(grade.percentage)
            by_student[grade.student_id].append(grade.percentage)

        student_rows = []
        for student in self.students.list_for_user(user_id):
            student_values = by_student.get(student.id, [])
            student_rows.append({
                "student_id": student.id,
                "student_name": student.name,
                "graded_count": len(student_values),
                "average": round_tenth(mean(student_values)),
            })

        return {
            "subject": {"id": subject.id, "name": subject.name},
            "overview": {
                "students": len(by_student),
                "lessons": len(lessons),
                "grades": len(values),
                "average": round_tenth(mean(values)),
                "min": min(values) if values else None,
                "max": max(values) if values else None,
            },
            "categories": [
                {
                    "category_id": category_id,
                    "category": categories[category_id].name if category_id in categories else None,
                    "grade_count": len(cat_values),
                    "average": round_tenth(mean(cat_values)),
                }
                for category_id, cat_values in by_category.items()
            ],
            "students": student_rows,
        }
