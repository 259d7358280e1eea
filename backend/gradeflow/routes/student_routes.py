"""Student groups and students."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session
from ..models import to_dict
from ..schemas import StudentBulkImport, StudentGroupIn, StudentIn, StudentSubjectsIn

router = APIRouter(prefix="/api", tags=["students"])


@router.get("/student-groups")
def list_groups(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return [to_dict(g) for g in services.StudentGroupService(db).list(user.id)]


@router.post("/student-groups", status_code=201)
def create_group(payload: StudentGroupIn, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return to_dict(services.StudentGroupService(db).create(user.id, payload.name, payload.description))


@router.put("/student-groups/{group_id}")
def update_group(group_id: int, payload: StudentGroupIn, user=Depends(get_current_user),
                 db: Session = Depends(get_session)):
    return to_dict(services.StudentGroupService(db).update(user.id, group_id, payload.name, payload.description))


@router.delete("/student-groups/{group_id}")
def delete_group(group_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.StudentGroupService(db).delete(user.id, group_id)
    return {"message": "Student group deleted successfully"}


@router.get("/students")
def list_students(group_id: Optional[int] = None, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """List students with their group names and enrolled subject ids."""
    return services.StudentService(db).list(user.id, group_id)


@router.get("/students/{student_id}")
def get_student(student_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.StudentService(db).get(user.id, student_id)


@router.post("/students", status_code=201)
def create_student(payload: StudentIn, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.StudentService(db).create(
        user.id, payload.name, payload.birthday, payload.group_ids, payload.group_name
    )


@router.put("/students/{student_id}")
def update_student(student_id: int, payload: StudentIn, user=Depends(get_current_user),
                   db: Session = Depends(get_session)):
    return services.StudentService(db).update(
        user.id, student_id, payload.name, payload.birthday, payload.group_ids, payload.group_name
    )


@router.delete("/students/{student_id}")
def delete_student(student_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.StudentService(db).delete(user.id, student_id)
    return {"message": "Student deleted successfully"}


@router.post("/students/bulk-import", status_code=201)
def bulk_import(payload: StudentBulkImport, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Import students from parsed CSV rows; unknown groups are created."""
    rows = [row.model_dump() for row in payload.students]
    return services.StudentService(db).bulk_import(user.id, rows)


@router.put("/students/{student_id}/subjects")
def set_student_subjects(student_id: int, payload: StudentSubjectsIn, user=Depends(get_current_user),
                         db: Session = Depends(get_session)):
    subjects = services.StudentService(db).set_subjects(user.id, student_id, payload.subjects)
    return {"student_id": student_id, "subjects": subjects}
