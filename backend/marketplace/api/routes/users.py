"""Users: first sign-in, registration, profile and admin approval."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_user, get_db, get_token_email
from marketplace.core.exceptions import NotFoundError
from marketplace.core.permissions import require_admin
from marketplace.models.user import User
from marketplace.schemas.user import ProfileUpdate, RegistrationRequest, RejectRequest, UserResponse
from marketplace.services import user_service

router = APIRouter()


@router.post("/initialize", response_model=UserResponse)
def initialize(db: Session = Depends(get_db), email: str = Depends(get_token_email)):
    """Create the account behind a fresh identity token, or return the existing one."""
    return user_service.initialize_user(db, email)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/register", response_model=UserResponse)
def register(data: RegistrationRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_service.complete_registration(db, current_user, data.role, data.model_dump(exclude={"role"}, exclude_none=True))


@router.patch("/me", response_model=UserResponse)
def update_me(data: ProfileUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_service.update_profile(db, current_user, data.model_dump(exclude_unset=True))


@router.get("/search", response_model=List[UserResponse])
def search(
    q: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return user_service.search_users(db, q, exclude_user_id=current_user.id, limit=limit, offset=offset)


@router.get("/lookup", response_model=UserResponse)
def lookup(email: EmailStr = Query(...), db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    require_admin(current_user)
    user = user_service.get_by_email(db, email)
    if not user:
        raise NotFoundError("User not found")
    return user


@router.get("/pending", response_model=List[UserResponse])
def pending(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_admin(current_user)
    return user_service.list_pending_approval(db, limit, offset)


@router.get("/role/{role}", response_model=List[UserResponse])
def by_role(
    role: str,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return user_service.list_by_role(db, role.lower().replace("_", "-"), limit, offset)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_service.get_user(db, user_id)


@router.post("/{user_id}/approve", response_model=UserResponse)
def approve(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_service.approve_user(db, current_user, user_id)


@router.post("/{user_id}/reject", response_model=UserResponse)
def reject(user_id: int, data: RejectRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_service.reject_user(db, current_user, user_id, data.reason)


@router.delete("/{user_id}")
def delete(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"deleted": user_service.delete_user(db, current_user, user_id)}
