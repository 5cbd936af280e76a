from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlmodel import Session

from app import config, submissions
from app.db import get_session
from app.deps import get_current_user, require_user
from app.errors import AuthenticationFailed, NotFound
from app.models import User
from app.problems import can_view, find_problem
from app.schemas import (
    CreateSubmissionRequest,
    SandboxResultRequest,
    SubmissionItem,
    UpdateCodeRequest,
    envelope,
)

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _item(session: Session, submission) -> dict:
    return SubmissionItem.of(submission, session.get(User, submission.user_id)).model_dump()


def _require_sandbox(token: Optional[str]):
    if token != config.SANDBOX_TOKEN:
        raise AuthenticationFailed("invalid sandbox token")


@router.post("/", status_code=201)
def create_submission(
    params: CreateSubmissionRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    problem = find_problem(session, params.problem_id)
    if not can_view(current_user, problem):
        raise NotFound(f"problem not found: {params.problem_id}")
    timestamp = None
    if params.timestamp is not None:
        timestamp = datetime.fromtimestamp(params.timestamp, tz=timezone.utc)
    submission = submissions.create_submission(
        session, current_user, problem, params.language, timestamp=timestamp, code=params.code
    )
    return envelope(_item(session, submission))


@router.get("/")
def list_submissions(
    offset: int = 0,
    count: Optional[int] = None,
    problem: Optional[int] = None,
    user: Optional[int] = None,
    status: Optional[int] = None,
    language: Optional[int] = None,
    current_user: Optional[User] = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    found = submissions.list_visible_submissions(
        session,
        current_user,
        problem=problem,
        user=user,
        status=status,
        language=language,
        offset=offset,
        count=count,
    )
    return envelope([_item(session, s) for s in found])


# grading pipeline

@router.get("/pending")
def pending_submissions(
    limit: Optional[int] = None,
    x_sandbox_token: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
):
    _require_sandbox(x_sandbox_token)
    return envelope([_item(session, s) for s in submissions.pending_submissions(session, limit)])


@router.put("/{submission_id}/sent")
def mark_sent(
    submission_id: int,
    x_sandbox_token: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
):
    _require_sandbox(x_sandbox_token)
    submission = submissions.find_submission(session, submission_id)
    return envelope(_item(session, submissions.mark_sent(session, submission)))


@router.get("/{submission_id}")
def submission_detail(
    submission_id: int,
    current_user: Optional[User] = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    submission = submissions.find_submission(session, submission_id)
    if not can_view(current_user, find_problem(session, submission.problem_id)):
        raise NotFound(f"submission not found: {submission_id}")
    return envelope(_item(session, submission))


@router.put("/{submission_id}/code")
def update_code(
    submission_id: int,
    params: UpdateCodeRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    submission = submissions.find_submission(session, submission_id)
    submission = submissions.update_code(session, current_user, submission, params.code)
    return envelope(_item(session, submission))


@router.put("/{submission_id}")
def update_sandbox_result(
    submission_id: int,
    params: SandboxResultRequest,
    x_sandbox_token: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
):
    _require_sandbox(x_sandbox_token)
    submissions.record_result(
        session,
        submission_id,
        status=params.status,
        score=params.score,
        exec_time=params.exec_time,
        memory_usage=params.memory_usage,
    )
    return envelope()
