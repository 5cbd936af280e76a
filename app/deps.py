from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from app import config
from app.auth import decode_session_token, find_by_claims_key
from app.db import get_session
from app.errors import AuthenticationFailed, NotFound
from app.mailer import LogMailer, Mailer
from app.models import User
from app.storage import LocalStorage, Storage

_storage = LocalStorage(config.STORAGE_DIR)
_mailer = LogMailer()


def get_storage() -> Storage:
    return _storage


def get_mailer() -> Mailer:
    return _mailer


def _request_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get("access_token")


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    token = _request_token(request)
    if not token:
        return None
    try:
        return find_by_claims_key(session, decode_session_token(token))
    except (AuthenticationFailed, NotFound):
        return None


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise AuthenticationFailed("not authenticated")
    return user
