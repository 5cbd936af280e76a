from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app import auth, config
from app.db import get_session
from app.deps import get_mailer, require_user
from app.errors import ValidationFailed
from app.mailer import Mailer
from app.models import User
from app.schemas import (
    BatchSignupRequest,
    ChangePasswordRequest,
    CheckRequest,
    ForgotRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    ResetRequest,
    UserInfo,
    VerifyRequest,
    envelope,
)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register")
def register(
    params: RegisterRequest,
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    auth.signup(session, params.email, params.username, params.password, mailer)
    return envelope()


@router.post("/verify")
def verify(params: VerifyRequest, session: Session = Depends(get_session)):
    auth.consume_verification_token(session, params.token)
    return envelope()


@router.post("/login")
def login(params: LoginRequest, session: Session = Depends(get_session)):
    user = auth.login(session, params.username, params.password)
    token = auth.generate_session_token(user)
    body = LoginResponse(
        token=token,
        pid=user.pid,
        username=user.username,
        is_verified=user.email_verified_at is not None,
    )
    response = JSONResponse(envelope(body.model_dump()))
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        samesite="lax",
        max_age=config.TOKEN_TTL_SECONDS,
    )
    return response


@router.post("/logout")
def logout():
    response = JSONResponse(envelope())
    response.delete_cookie(key="access_token")
    return response


@router.post("/forgot")
def forgot(
    params: ForgotRequest,
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    auth.forgot_password(session, params.email, mailer)
    return envelope()


@router.post("/reset")
def reset(params: ResetRequest, session: Session = Depends(get_session)):
    auth.reset_password(session, params.token, params.password)
    return envelope()


@router.post("/change-password")
def change_password(
    params: ChangePasswordRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    auth.change_password(session, current_user, params.old_password, params.new_password)
    return envelope(message="Password Has Been Changed")


@router.post("/batch-signup", status_code=201)
def batch_signup(
    params: BatchSignupRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    users = auth.batch_signup(session, current_user, params.new_users, params.course)
    return envelope([UserInfo.of(u).model_dump() for u in users])


@router.get("/me")
def me(current_user: User = Depends(require_user)):
    return envelope(UserInfo.of(current_user).model_dump())


@router.post("/check/{item}")
def check(item: str, params: CheckRequest, session: Session = Depends(get_session)):
    value = getattr(params, item, None) if item in auth.CHECKABLE_ITEMS else ""
    if value is None:
        raise ValidationFailed({item: [f"missing field '{item}'"]})
    available = auth.check_available(session, item, value)
    return envelope({"valid": int(available)})
