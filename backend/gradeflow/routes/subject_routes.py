"""Subjects, their lessons and grading-period markers.

Every endpoint that changes an `order_index` (lesson create, bulk
create, update, delete; marker create, update, delete; resequence)
runs through `gradeflow.ordering.SubjectSequence` inside one
transaction.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session
from ..models import to_dict
from ..schemas import LessonBulkIn, LessonIn, LessonUpdate, MarkerIn, MarkerUpdate, SubjectIn

router = APIRouter(prefix="/api", tags=["subjects"])


@router.get("/subjects")
def list_subjects(group_id: Optional[int] = None, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.SubjectService(db).list(user.id, group_id)


@router.get("/subjects/{subject_id}")
def get_subject(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Subject with weights, groups, lessons, markers and the combined sequence."""
    return services.SubjectService(db).get(user.id, subject_id)


@router.post("/subjects", status_code=201)
def create_subject(payload: SubjectIn, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.SubjectService(db).create(user.id, payload.model_dump())


@router.put("/subjects/{subject_id}")
def update_subject(subject_id: int, payload: SubjectIn, user=Depends(get_current_user),
                   db: Session = Depends(get_session)):
    return services.SubjectService(db).update(user.id, subject_id, payload.model_dump())


@router.delete("/subjects/{subject_id}")
def delete_subject(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.SubjectService(db).delete(user.id, subject_id)
    return {"message": "Subject deleted successfully"}


# lessons

@router.get("/subjects/{subject_id}/lessons")
def list_lessons(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.LessonService(db).list(user.id, subject_id)


@router.post("/subjects/{subject_id}/lessons", status_code=201)
def create_lesson(subject_id: int, payload: LessonIn, user=Depends(get_current_user),
                  db: Session = Depends(get_session)):
    """Insert a lesson at `order_index` (appended when omitted)."""
    return services.LessonService(db).create(
        user.id, subject_id, payload.name, payload.category_id, payload.points, payload.order_index
    )


@router.post("/subjects/{subject_id}/lessons/bulk", status_code=201)
def bulk_create_lessons(subject_id: int, payload: LessonBulkIn, user=Depends(get_current_user),
                        db: Session = Depends(get_session)):
    lessons = services.LessonService(db).bulk_create(
        user.id, subject_id, payload.count, payload.name_prefix, payload.category_id, payload.points
    )
    return {"message": f"Successfully created {len(lessons)} lessons", "lessons": lessons}


@router.get("/lessons/{lesson_id}")
def get_lesson(lesson_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.LessonService(db).get(user.id, lesson_id)


@router.put("/lessons/{lesson_id}")
def update_lesson(lesson_id: int, payload: LessonUpdate, user=Depends(get_current_user),
                  db: Session = Depends(get_session)):
    return services.LessonService(db).update(user.id, lesson_id, payload.model_dump(exclude_unset=True))


@router.delete("/lessons/{lesson_id}")
def delete_lesson(lesson_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.LessonService(db).delete(user.id, lesson_id)
    return {"message": "Lesson deleted successfully"}


@router.get("/subjects/{subject_id}/sequence")
def get_sequence(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.LessonService(db).sequence(user.id, subject_id)


@router.post("/subjects/{subject_id}/resequence")
def resequence(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.LessonService(db).resequence(user.id, subject_id)


# grading-period markers

@router.get("/subjects/{subject_id}/markers")
def list_markers(subject_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return [to_dict(m) for m in services.MarkerService(db).list(user.id, subject_id)]


@router.post("/subjects/{subject_id}/markers", status_code=201)
def create_marker(subject_id: int, payload: MarkerIn, user=Depends(get_current_user),
                  db: Session = Depends(get_session)):
    marker = services.MarkerService(db).create(user.id, subject_id, payload.name, payload.order_index)
    return to_dict(marker)


@router.put("/markers/{marker_id}")
def update_marker(marker_id: int, payload: MarkerUpdate, user=Depends(get_current_user),
                  db: Session = Depends(get_session)):
    marker = services.MarkerService(db).update(user.id, marker_id, payload.name, payload.order_index)
    return to_dict(marker)


@router.delete("/markers/{marker_id}")
def delete_marker(marker_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.MarkerService(db).delete(user.id, marker_id)
    return {"message": "Grading period marker deleted successfully"}
