from typing import List, Optional
from datetime import datetime, timezone
from enum import IntEnum
from uuid import uuid4

from pydantic import EmailStr
from sqlalchemy import Column, DateTime, JSON, Text, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

from app.errors import ValidationFailed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite drops the offset on the way in, so values read back are tagged as
    UTC again.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def utc_column(nullable: bool = False, **kwargs) -> Column:
    return Column(UTCDateTime(), nullable=nullable, **kwargs)


# Enum values are the wire codes. Rows store the member name.

class Role(IntEnum):
    ADMIN = 0
    TEACHER = 1
    STUDENT = 2


class Visibility(IntEnum):
    SHOW = 0
    HIDDEN = 1


class ProblemType(IntEnum):
    NORMAL = 0
    FILL_IN_TEMPLATE = 1
    HANDWRITTEN = 2


class Language(IntEnum):
    C = 0
    CPP = 1
    PYTHON = 2

    def mask(self) -> int:
        return 1 << self.value


ALL_LANGUAGES = sum(lang.mask() for lang in Language)


class SubmissionStatus(IntEnum):
    PENDING = -1
    ACCEPTED = 0
    WRONG_ANSWER = 1
    COMPILE_ERROR = 2
    TIME_LIMIT_EXCEEDED = 3
    MEMORY_LIMIT_EXCEEDED = 4
    RUNTIME_ERROR = 5
    JUDGE_ERROR = 6
    OUTPUT_LIMIT_EXCEEDED = 7


def parse_code(enum_cls, value, field: str):
    """Map a wire integer onto ``enum_cls`` or raise ValidationFailed for ``field``."""
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError):
        raise ValidationFailed({field: [f"unknown {enum_cls.__name__} code: {value!r}"]})


def _new_pid() -> str:
    return str(uuid4())


def _new_api_key() -> str:
    return f"normal-oj-{uuid4()}"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    pid: str = Field(default_factory=_new_pid, unique=True, index=True)
    email: str = Field(unique=True, index=True)
    username: str = Field(unique=True, index=True)
    password_hash: str
    api_key: str = Field(default_factory=_new_api_key, unique=True)
    role: Role = Field(default=Role.STUDENT)
    displayed_name: Optional[str] = None
    bio: Optional[str] = None
    email_verification_token: Optional[str] = Field(default=None, index=True)
    email_verification_sent_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    email_verified_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    reset_token: Optional[str] = Field(default=None, index=True)
    reset_sent_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    def __repr__(self) -> str:
        return f"<User #{self.id} {self.username!r} {self.role.name}>"


class Course(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    teacher_id: int = Field(foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())


class CourseMember(SQLModel, table=True):
    course_id: int = Field(foreign_key="course.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True)


class ProblemDescription(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    input: str = Field(default="", sa_column=Column(Text, nullable=False))
    output: str = Field(default="", sa_column=Column(Text, nullable=False))
    hint: str = ""
    sample_input: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    sample_output: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())


class Problem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    owner_id: int = Field(foreign_key="user.id")
    status: Visibility = Field(default=Visibility.SHOW)
    type: ProblemType = Field(default=ProblemType.NORMAL)
    allowed_language: int = ALL_LANGUAGES
    quota: int = -1  # -1 means unlimited
    description_id: int = Field(foreign_key="problemdescription.id", unique=True)
    # set only after an archive passed validation and was stored
    test_case_id: Optional[str] = Field(default=None, unique=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    def allows(self, language: Language) -> bool:
        return bool(self.allowed_language & language.mask())


class ProblemTask(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("problem_id", "task_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    problem_id: int = Field(foreign_key="problem.id", index=True)
    task_index: int
    test_case_count: int
    score: int
    time_limit: int  # ms
    memory_limit: int  # KB


class Submission(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    problem_id: int = Field(foreign_key="problem.id", index=True)
    code: str = Field(default="", sa_column=Column(Text, nullable=False))
    language: Language
    timestamp: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    status: SubmissionStatus = Field(default=SubmissionStatus.PENDING, index=True)
    score: int = 0
    exec_time: int = 0
    memory_usage: int = 0
    last_send: datetime = Field(default_factory=utcnow, sa_column=utc_column())


# Input models. These validate; the table models above do not.

class RegisterParams(SQLModel):
    email: EmailStr = Field(max_length=254)
    username: str = Field(min_length=2, max_length=64)
    password: str = Field(min_length=1)


class DescriptionCreate(SQLModel):
    description: str = ""
    input: str = ""
    output: str = ""
    hint: str = Field(default="", max_length=1024)
    sample_input: List[str] = []
    sample_output: List[str] = []


class TaskCreate(SQLModel):
    test_case_count: int = Field(ge=0, le=100)
    score: int = Field(ge=0)
    time_limit: int = Field(gt=0)
    memory_limit: int = Field(gt=0)


class ProblemCreate(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    status: Visibility = Visibility.SHOW
    type: ProblemType = ProblemType.NORMAL
    allowed_language: int = Field(default=ALL_LANGUAGES, ge=1, le=ALL_LANGUAGES)
    quota: int = Field(default=-1, ge=-1)
    description: DescriptionCreate = Field(default_factory=DescriptionCreate)
    tasks: List[TaskCreate] = Field(default_factory=list, max_length=100)
