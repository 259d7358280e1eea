"""User metadata and data statistics."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session

router = APIRouter(prefix="/api/metadata", tags=["metadata"])


@router.get("")
def get_metadata(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.MetadataService(db).for_user(user.id)


@router.get("/stats")
def get_stats(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.MetadataService(db).stats(user.id)


@router.post("/fix-defaults")
def fix_defaults(user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Re-seed default groups and categories for an account that has none."""
    return services.MetadataService(db).fix_defaults(user.id)
