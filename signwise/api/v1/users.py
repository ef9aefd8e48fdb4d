"""Admin-only user lookups."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from signwise.api.deps import get_user_store
from signwise.api.v1.auth import require_admin
from signwise.core.database import get_db
from signwise.schemas.auth import CurrentUser, UserOut, UsersListResponse
from signwise.services.errors import NotFound
from signwise.services.users import UserStore

router = APIRouter()


@router.get("", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> UsersListResponse:
    """List all users (admin only)."""
    return UsersListResponse(users=[UserOut.model_validate(u) for u in users.list_users(db)])


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> UserOut:
    try:
        user = users.get(db, user_id)
    except NotFound as e:
        raise HTTPException(status_code=e.status_code, detail="User not found") from e
    return UserOut.model_validate(user)
