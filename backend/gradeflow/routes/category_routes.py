"""Grade-category types ("Lesson", "Test", ...) used for subject weighting."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session
from ..models import to_dict
from ..schemas import CategoryTypeIn

router = APIRouter(prefix="/api/grade-category-types", tags=["grade-category-types"])


@router.get("")
def list_categories(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return [to_dict(c) for c in services.CategoryService(db).list(user.id)]


@router.get("/active")
def list_active_categories(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return [to_dict(c) for c in services.CategoryService(db).list(user.id, active_only=True)]


@router.post("", status_code=201)
def create_category(payload: CategoryTypeIn, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Create a category; marking it default clears the flag elsewhere."""
    return to_dict(services.CategoryService(db).create(user.id, payload.model_dump()))


@router.put("/{category_id}")
def update_category(category_id: int, payload: CategoryTypeIn, user=Depends(get_current_user),
                    db: Session = Depends(get_session)):
    return to_dict(services.CategoryService(db).update(user.id, category_id, payload.model_dump()))


@router.delete("/{category_id}")
def delete_category(category_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.CategoryService(db).delete(user.id, category_id)
    return {"message": "Grade category type deleted successfully"}


@router.get("/{category_id}/usage")
def category_usage(category_id: int, user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.CategoryService(db).usage(user.id, category_id)
