"""Read-only report endpoints built on `gradeflow.reports`."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session
from ..reports import ReportService

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/dashboard")
def dashboard(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return ReportService(db).dashboard(user.id)


@router.get("/student/{student_id}")
def student_report(student_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Per-subject category and weighted averages for one student."""
    return ReportService(db).student_report(user.id, student_id)


@router.get("/student/{student_id}/subject/{subject_id}")
def student_subject_report(student_id: int, subject_id: int, user=Depends(get_current_user),
                           db: Session = Depends(get_session)):
    services.StudentService(db).get_owned(user.id, student_id)
    services.SubjectService(db).get_owned(user.id, subject_id)
    return ReportService(db).subject_summary(user.id, student_id, subject_id)


@router.get("/group/{group_id}")
def group_report(group_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return ReportService(db).group_report(user.id, group_id)
