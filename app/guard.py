from typing import Iterable, Optional

from app.errors import PermissionDenied
from app.models import Role, User

STAFF = frozenset({Role.ADMIN, Role.TEACHER})


def require_role(user: Optional[User], allowed: Iterable[Role]):
    if user is None or user.role not in frozenset(allowed):
        raise PermissionDenied()


def is_admin(user: Optional[User]) -> bool:
    return user is not None and user.role == Role.ADMIN
