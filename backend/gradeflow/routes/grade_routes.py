"""Grade entry and retrieval."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session
from ..models import to_dict
from ..reports import ReportService
from ..schemas import GradeIn, LessonPointsIn

router = APIRouter(prefix="/api/grades", tags=["grades"])


@router.get("")
def list_grades(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.GradeService(db).list_for_user(user.id)


@router.get("/student/{student_id}/subject/{subject_id}")
def student_subject_grades(student_id: int, subject_id: int, user=Depends(get_current_user),
                           db: Session = Depends(get_session)):
    return services.GradeService(db).for_student_subject(user.id, student_id, subject_id)


@router.get("/subject/{subject_id}")
def subject_matrix(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Every student against every lesson of the subject, graded or not."""
    return services.GradeService(db).subject_matrix(user.id, subject_id)


@router.get("/subject/{subject_id}/stats")
def subject_stats(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return ReportService(db).subject_stats(user.id, subject_id)


@router.put("/subject/{subject_id}/lesson-points")
def update_lesson_points(subject_id: int, payload: LessonPointsIn, user=Depends(get_current_user),
                         db: Session = Depends(get_session)):
    """Change a lesson's point total and re-derive percentages from recorded errors."""
    updated = services.GradeService(db).update_lesson_points(user.id, subject_id, payload.lesson_id, payload.points)
    return {"message": "Lesson points updated", "grades_updated": updated}


@router.put("/student/{student_id}/lesson/{lesson_id}")
def upsert_grade(student_id: int, lesson_id: int, payload: GradeIn, user=Depends(get_current_user),
                 db: Session = Depends(get_session)):
    grade = services.GradeService(db).upsert(
        user.id, student_id, lesson_id, payload.percentage, payload.errors, payload.points
    )
    return to_dict(grade)


@router.delete("/student/{student_id}/lesson/{lesson_id}")
def delete_grade(student_id: int, lesson_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.GradeService(db).delete(user.id, student_id, lesson_id)
    return {"message": "Grade deleted successfully"}
