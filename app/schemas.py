from datetime import datetime
from typing import Any, List, Optional

from sqlmodel import SQLModel

from app.models import Problem, ProblemDescription, ProblemTask, Submission, User


def envelope(data: Any = None, message: str = "") -> dict:
    return {"data": data, "message": message}


# requests

class RegisterRequest(SQLModel):
    email: str
    username: str
    password: str


class LoginRequest(SQLModel):
    username: str  # email or username
    password: str


class VerifyRequest(SQLModel):
    token: str


class CheckRequest(SQLModel):
    username: Optional[str] = None
    email: Optional[str] = None


class ForgotRequest(SQLModel):
    email: str


class ResetRequest(SQLModel):
    token: str
    password: str


class ChangePasswordRequest(SQLModel):
    old_password: str
    new_password: str


class BatchSignupRequest(SQLModel):
    new_users: str  # csv text
    course: Optional[str] = None


class EditUserRequest(SQLModel):
    displayed_name: Optional[str] = None
    password: Optional[str] = None
    role: Optional[int] = None


class CreateCourseRequest(SQLModel):
    name: str
    teacher: str  # username


class CreateSubmissionRequest(SQLModel):
    problem_id: int
    language: int
    timestamp: Optional[int] = None  # unix seconds
    code: str = ""


class UpdateCodeRequest(SQLModel):
    code: str


class SandboxResultRequest(SQLModel):
    status: int
    score: int
    exec_time: int
    memory_usage: int


# responses

class UserInfo(SQLModel):
    username: str
    displayed_name: str
    role: int

    @classmethod
    def of(cls, user: User) -> "UserInfo":
        return cls(
            username=user.username,
            displayed_name=user.displayed_name or user.username,
            role=int(user.role),
        )


class CurrentUser(SQLModel):
    pid: str
    username: str
    email: str

    @classmethod
    def of(cls, user: User) -> "CurrentUser":
        return cls(pid=user.pid, username=user.username, email=user.email)


class LoginResponse(SQLModel):
    token: str
    pid: str
    username: str
    is_verified: bool


class CourseView(SQLModel):
    id: int
    name: str
    teacher: str


class ProblemListItem(SQLModel):
    id: int
    name: str
    status: int
    type: int
    quota: int

    @classmethod
    def of(cls, problem: Problem) -> "ProblemListItem":
        return cls(
            id=problem.id,
            name=problem.name,
            status=int(problem.status),
            type=int(problem.type),
            quota=problem.quota,
        )


class TaskView(SQLModel):
    test_case_count: int
    score: int
    time_limit: int
    memory_limit: int


class DescriptionView(SQLModel):
    description: str
    input: str
    output: str
    hint: str
    sample_input: List[str]
    sample_output: List[str]


class ProblemDetail(SQLModel):
    id: int
    name: str
    owner: str
    status: int
    type: int
    allowed_language: int
    quota: int
    description: DescriptionView
    tasks: List[TaskView]
    has_test_case: bool

    @classmethod
    def of(
        cls,
        problem: Problem,
        owner: User,
        description: ProblemDescription,
        tasks: List[ProblemTask],
    ) -> "ProblemDetail":
        return cls(
            id=problem.id,
            name=problem.name,
            owner=owner.username,
            status=int(problem.status),
            type=int(problem.type),
            allowed_language=problem.allowed_language,
            quota=problem.quota,
            description=DescriptionView.model_validate(description, from_attributes=True),
            tasks=[TaskView.model_validate(t, from_attributes=True) for t in tasks],
            has_test_case=problem.test_case_id is not None,
        )


class SubmissionItem(SQLModel):
    id: int
    user: UserInfo
    problem_id: int
    timestamp: int
    score: int
    exec_time: int
    memory_usage: int
    code: str
    last_send: int
    status: int
    language: int

    @classmethod
    def of(cls, submission: Submission, user: User) -> "SubmissionItem":
        return cls(
            id=submission.id,
            user=UserInfo.of(user),
            problem_id=submission.problem_id,
            timestamp=_unix(submission.timestamp),
            score=submission.score,
            exec_time=submission.exec_time,
            memory_usage=submission.memory_usage,
            code=submission.code,
            last_send=_unix(submission.last_send),
            status=int(submission.status),
            language=int(submission.language),
        )


def _unix(value: datetime) -> int:
    return int(value.timestamp())
