import csv
import io
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError
from sqlmodel import Session, select

from app import config
from app.courses import enroll, find_course_by_name
from app.db import transaction
from app.errors import AlreadyExists, AuthenticationFailed, NotFound, ValidationFailed
from app.guard import require_role
from app.mailer import Mailer
from app.models import RegisterParams, Role, User, parse_code, utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS
)

BATCH_REQUIRED_COLUMNS = ("username", "email", "password")
BATCH_OPTIONAL_COLUMNS = ("displayed_name", "role")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(user: User, plaintext: str) -> bool:
    try:
        return pwd_context.verify(plaintext, user.password_hash)
    except (ValueError, TypeError):
        # unreadable stored hash
        return False


def _validate_registration(email: str, username: str, password: str) -> RegisterParams:
    try:
        return RegisterParams.model_validate(
            {"email": email, "username": username, "password": password}
        )
    except ValidationError as e:
        raise ValidationFailed.from_pydantic(e)


def _new_user(params: RegisterParams) -> User:
    return User(
        email=str(params.email),
        username=params.username,
        password_hash=get_password_hash(params.password),
    )


def register(session: Session, email: str, username: str, password: str) -> User:
    """Create an unverified account.

    Raises ValidationFailed listing every bad field, or AlreadyExists when the
    email or the username is taken (without saying which).
    """
    user = _new_user(_validate_registration(email, username, password))
    with transaction(session):
        session.add(user)
    session.refresh(user)
    logger.info("user %s registered", user.pid)
    return user


# lookups

def _find_by(session: Session, column, value) -> User:
    user = session.exec(select(User).where(column == value)).first()
    if user is None:
        raise NotFound("user not found")
    return user


def find_by_email(session: Session, email: str) -> User:
    return _find_by(session, User.email, email)


def find_by_username(session: Session, username: str) -> User:
    return _find_by(session, User.username, username)


def find_by_api_key(session: Session, api_key: str) -> User:
    return _find_by(session, User.api_key, api_key)


def find_by_verification_token(session: Session, token: str) -> User:
    return _find_by(session, User.email_verification_token, token)


def find_by_reset_token(session: Session, token: str) -> User:
    return _find_by(session, User.reset_token, token)


def find_by_claims_key(session: Session, key: str) -> User:
    try:
        pid = str(uuid.UUID(key))
    except (TypeError, ValueError, AttributeError):
        raise NotFound("user not found")
    return _find_by(session, User.pid, pid)


# one-shot tokens

def issue_verification_token(session: Session, user: User) -> User:
    """Rotate the verification token; links carrying an older token stop working."""
    user.email_verification_token = str(uuid.uuid4())
    user.email_verification_sent_at = utcnow()
    with transaction(session):
        session.add(user)
    session.refresh(user)
    return user


def _mark_verified(user: User):
    user.email_verified_at = utcnow()


def consume_verification_token(session: Session, token: str) -> User:
    user = find_by_verification_token(session, token)
    if user.email_verified_at is not None:
        logger.info("user %s already verified", user.pid)
        return user
    _mark_verified(user)
    with transaction(session):
        session.add(user)
    session.refresh(user)
    logger.info("user %s verified", user.pid)
    return user


def issue_reset_token(session: Session, user: User) -> User:
    user.reset_token = str(uuid.uuid4())
    user.reset_sent_at = utcnow()
    with transaction(session):
        session.add(user)
    session.refresh(user)
    return user


def _set_password(user: User, password: str):
    if not password:
        raise ValidationFailed({"password": ["password must not be empty"]})
    user.password_hash = get_password_hash(password)


def consume_reset_token(session: Session, token: str, new_password: str) -> User:
    user = find_by_reset_token(session, token)
    _set_password(user, new_password)
    user.reset_token = None
    with transaction(session):
        session.add(user)
    session.refresh(user)
    logger.info("password reset for user %s", user.pid)
    return user


# session tokens

def generate_session_token(
    user: User, secret: str = config.SECRET_KEY, ttl: int = config.TOKEN_TTL_SECONDS
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    return jwt.encode({"pid": user.pid, "exp": expire}, secret, algorithm=config.ALGORITHM)


def decode_session_token(token: str, secret: str = config.SECRET_KEY) -> str:
    """Return the claims key inside ``token``."""
    try:
        payload = jwt.decode(token, secret, algorithms=[config.ALGORITHM])
    except JWTError:
        raise AuthenticationFailed("invalid session token")
    pid = payload.get("pid")
    if not isinstance(pid, str):
        raise AuthenticationFailed("invalid session token")
    return pid


# flows that must not reveal whether an account exists

def signup(session: Session, email: str, username: str, password: str, mailer: Mailer):
    try:
        user = register(session, email, username, password)
    except AlreadyExists:
        logger.info("could not register user: account exists")
        return
    user = issue_verification_token(session, user)
    mailer.send_welcome(user)


def login(session: Session, login_id: str, password: str) -> User:
    """Authenticate by email or username; every failure looks the same."""
    try:
        user = find_by_email(session, login_id)
    except NotFound:
        try:
            user = find_by_username(session, login_id)
        except NotFound:
            raise AuthenticationFailed("login failed")
    if not verify_password(user, password):
        raise AuthenticationFailed("login failed")
    return user


def forgot_password(session: Session, email: str, mailer: Mailer):
    try:
        user = find_by_email(session, email)
    except NotFound:
        return
    user = issue_reset_token(session, user)
    mailer.send_forgot_password(user)


def reset_password(session: Session, token: str, new_password: str):
    try:
        consume_reset_token(session, token, new_password)
    except NotFound:
        logger.info("reset token not found")


CHECKABLE_ITEMS = ("username", "email")


def check_available(session: Session, item: str, value: str) -> bool:
    """Whether ``value`` is still free as a username or email.

    Taken and free answer with the same shape; a lookup miss never escapes.
    """
    if item not in CHECKABLE_ITEMS:
        raise ValidationFailed({"item": [f"invalid checking type: {item}"]})
    finder = find_by_username if item == "username" else find_by_email
    try:
        finder(session, value)
    except NotFound:
        return True
    return False


def change_password(session: Session, user: User, old_password: str, new_password: str) -> User:
    if not verify_password(user, old_password):
        raise AuthenticationFailed("wrong password")
    _set_password(user, new_password)
    with transaction(session):
        session.add(user)
    session.refresh(user)
    return user


# user management

def create_user(session: Session, actor: User, email: str, username: str, password: str) -> User:
    """Admin-created accounts skip email verification."""
    require_role(actor, {Role.ADMIN})
    user = _new_user(_validate_registration(email, username, password))
    _mark_verified(user)
    with transaction(session):
        session.add(user)
    session.refresh(user)
    logger.info("user %s created by %s", user.pid, actor.pid)
    return user


def edit_user(
    session: Session,
    actor: User,
    user: User,
    displayed_name: Optional[str] = None,
    password: Optional[str] = None,
    role: Optional[Role] = None,
) -> User:
    require_role(actor, {Role.ADMIN})
    if role is not None:
        role = parse_code(Role, role, "role")
    if password is not None and not password:
        raise ValidationFailed({"password": ["password must not be empty"]})
    if displayed_name is not None:
        user.displayed_name = displayed_name
    if password is not None:
        _set_password(user, password)
    if role is not None:
        user.role = role
    with transaction(session):
        session.add(user)
    session.refresh(user)
    return user


def parse_batch_csv(text: str) -> List[dict]:
    """Parse the batch-signup table, rejecting anything off-schema.

    Every row is checked before any is returned, so a single bad row aborts
    the whole batch.
    """
    reader = csv.DictReader(io.StringIO(text))
    header = reader.fieldnames or []
    known = BATCH_REQUIRED_COLUMNS + BATCH_OPTIONAL_COLUMNS
    errors = {}
    missing = [c for c in BATCH_REQUIRED_COLUMNS if c not in header]
    if missing:
        errors["header"] = [f"missing column: {c}" for c in missing]
    unknown = [c for c in header if c not in known]
    if unknown:
        errors.setdefault("header", []).extend(f"unknown column: {c}" for c in unknown)
    if len(set(header)) != len(header):
        errors.setdefault("header", []).append("duplicated column")
    if errors:
        raise ValidationFailed(errors)

    rows = []
    for lineno, raw in enumerate(reader, start=2):
        field = f"row {lineno}"
        if None in raw or any(raw[c] is None for c in header):
            errors[field] = ["wrong number of columns"]
            continue
        row_errors = []
        try:
            params = RegisterParams.model_validate({c: raw[c] for c in BATCH_REQUIRED_COLUMNS})
        except ValidationError as e:
            row_errors.extend(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
            params = None
        role = None
        role_text = (raw.get("role") or "").strip()
        if role_text:
            try:
                role = parse_code(Role, role_text, "role")
            except ValidationFailed as e:
                row_errors.extend(e.errors["role"])
        if row_errors:
            errors[field] = row_errors
            continue
        rows.append({
            "params": params,
            "displayed_name": (raw.get("displayed_name") or "").strip() or None,
            "role": role,
        })
    if errors:
        raise ValidationFailed(errors)
    return rows


def batch_signup(
    session: Session, actor: User, csv_text: str, course_name: Optional[str] = None
) -> List[User]:
    require_role(actor, {Role.ADMIN})
    rows = parse_batch_csv(csv_text)
    course = find_course_by_name(session, course_name) if course_name else None

    users = []
    with transaction(session):
        for row in rows:
            params = row["params"]
            existing = session.exec(
                select(User).where(
                    (User.username == params.username) | (User.email == str(params.email))
                )
            ).first()
            if existing is not None:
                users.append(existing)
                continue
            user = _new_user(params)
            user.displayed_name = row["displayed_name"]
            if row["role"] is not None:
                user.role = row["role"]
            _mark_verified(user)
            session.add(user)
            session.flush()
            users.append(user)
        if course is not None:
            enroll(session, course, users)
    for user in users:
        session.refresh(user)
    logger.info("batch signup by %s: %d users", actor.pid, len(users))
    return users
