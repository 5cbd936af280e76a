from fastapi import APIRouter, Depends
from sqlmodel import Session

from app import auth
from app.db import get_session
from app.deps import require_user
from app.guard import require_role
from app.models import Role, User
from app.schemas import CurrentUser, EditUserRequest, RegisterRequest, UserInfo, envelope

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/current")
def current(current_user: User = Depends(require_user)):
    return envelope(CurrentUser.of(current_user).model_dump())


@router.post("", status_code=201)
def create(
    params: RegisterRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    user = auth.create_user(session, current_user, params.email, params.username, params.password)
    return envelope(UserInfo.of(user).model_dump())


@router.patch("/{username}")
def edit(
    username: str,
    params: EditUserRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    # permission first, so probing usernames reveals nothing
    require_role(current_user, {Role.ADMIN})
    user = auth.find_by_username(session, username)
    user = auth.edit_user(
        session,
        current_user,
        user,
        displayed_name=params.displayed_name,
        password=params.password,
        role=params.role,
    )
    return envelope(UserInfo.of(user).model_dump())
