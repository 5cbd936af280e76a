from typing import Dict, List, Optional


class ServiceError(Exception):
    """Base class of every error a domain service raises."""

    message = "service error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)

    @property
    def data(self):
        return None


class NotFound(ServiceError):
    message = "entity not found"


class AlreadyExists(ServiceError):
    message = "entity already exists"


class PermissionDenied(ServiceError):
    message = "user is not permitted to this operation"


class AuthenticationFailed(ServiceError):
    message = "authentication failed"


class Internal(ServiceError):
    message = "internal error"


class BadFormat(ServiceError):
    """Structural problem in an uploaded test case archive."""

    def __init__(self, reason: str):
        super().__init__(f"bad test case: {reason}")
        self.reason = reason

    @property
    def data(self):
        return {"reason": self.reason}


class ValidationFailed(ServiceError):
    """Input rejected; ``errors`` maps every failing field to its messages."""

    def __init__(self, errors: Dict[str, List[str]]):
        fields = ", ".join(sorted(errors))
        super().__init__(f"validation failed: {fields}")
        self.errors = errors

    @property
    def data(self):
        return self.errors

    @classmethod
    def from_pydantic(cls, exc, prefix: str = "") -> "ValidationFailed":
        errors: Dict[str, List[str]] = {}
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"]) or "__root__"
            errors.setdefault(prefix + field, []).append(err["msg"])
        return cls(errors)
