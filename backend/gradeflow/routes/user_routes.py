"""Profile and account endpoints for the signed-in user."""

from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import services
from ..auth import get_current_user
from ..database import get_session
from ..schemas import AccountDelete, PasswordChange, ProfileUpdate, UserOut

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[dict])
def list_users(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return services.UserService(db).list_users()


@router.get("/profile", response_model=UserOut)
def get_profile(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return UserOut.model_validate(services.UserService(db).get_profile(user.id))


@router.put("/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate, user=Depends(get_current_user), db: Session = Depends(get_session)):
    updated = services.UserService(db).update_profile(user.id, payload.model_dump())
    return UserOut.model_validate(updated)


@router.put("/password")
def change_password(payload: PasswordChange, user=Depends(get_current_user), db: Session = Depends(get_session)):
    services.UserService(db).change_password(user.id, payload.current_password, payload.new_password)
    return {"message": "Password updated successfully"}


@router.delete("/account")
def delete_account(payload: AccountDelete, user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Delete the account and, through cascades, every row it owns."""
    services.UserService(db).delete_account(user.id, payload.confirm_password)
    return {"message": "Account deleted successfully"}
