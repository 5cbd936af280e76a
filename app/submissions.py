import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from app.db import transaction
from app.errors import NotFound, PermissionDenied, ValidationFailed
from app.guard import is_admin
from app.models import (
    Language,
    Problem,
    Submission,
    SubmissionStatus,
    User,
    Visibility,
    parse_code,
    utcnow,
)

logger = logging.getLogger(__name__)


def create_submission(
    session: Session,
    user: User,
    problem: Problem,
    language: Language,
    timestamp: Optional[datetime] = None,
    code: str = "",
) -> Submission:
    """Queue a new submission as PENDING.

    Quota is not checked here; the grading pipeline enforces it.
    """
    language = parse_code(Language, language, "language")
    if timestamp is not None and timestamp.tzinfo is None:
        raise ValidationFailed({"timestamp": ["timestamp must carry a timezone"]})
    if not problem.allows(language):
        raise ValidationFailed({"language": [f"{language.name} is not allowed for this problem"]})

    submission = Submission(
        user_id=user.id,
        problem_id=problem.id,
        language=language,
        code=code,
        timestamp=timestamp or utcnow(),
    )
    with transaction(session):
        session.add(submission)
    session.refresh(submission)
    logger.info("submission #%s created by %s for problem #%s", submission.id, user.pid, problem.id)
    return submission


def find_submission(session: Session, submission_id: int) -> Submission:
    submission = session.get(Submission, submission_id)
    if submission is None:
        raise NotFound(f"submission not found: {submission_id}")
    return submission


def record_result(
    session: Session,
    submission_id: int,
    status: SubmissionStatus,
    score: int,
    exec_time: int,
    memory_usage: int,
) -> Submission:
    """Store a grading result reported by the sandbox.

    Status travels with the numbers so a graded submission never stays PENDING.
    """
    status = parse_code(SubmissionStatus, status, "status")
    errors = {}
    if status == SubmissionStatus.PENDING:
        errors["status"] = ["a result cannot be PENDING"]
    for field, value in (("score", score), ("exec_time", exec_time), ("memory_usage", memory_usage)):
        if value < 0:
            errors[field] = [f"{field} must not be negative"]
    if errors:
        raise ValidationFailed(errors)

    submission = find_submission(session, submission_id)
    submission.status = status
    submission.score = score
    submission.exec_time = exec_time
    submission.memory_usage = memory_usage
    with transaction(session):
        session.add(submission)
    session.refresh(submission)
    logger.info("submission #%s graded: %s", submission.id, status.name)
    return submission


def list_submissions(
    session: Session,
    problem: Optional[int] = None,
    user: Optional[int] = None,
    status: Optional[SubmissionStatus] = None,
    language: Optional[Language] = None,
    offset: int = 0,
    count: Optional[int] = None,
) -> List[Submission]:
    query = _filtered(select(Submission), problem, user, status, language)
    return _page(session, query, offset, count)


def list_visible_submissions(
    session: Session,
    viewer: Optional[User],
    problem: Optional[int] = None,
    user: Optional[int] = None,
    status: Optional[SubmissionStatus] = None,
    language: Optional[Language] = None,
    offset: int = 0,
    count: Optional[int] = None,
) -> List[Submission]:
    """Like ``list_submissions`` but drops submissions to problems ``viewer`` cannot see.

    Filtering happens in the query, so the window counts visible rows only.
    """
    query = _filtered(select(Submission), problem, user, status, language)
    if not is_admin(viewer):
        query = query.join(Problem, Problem.id == Submission.problem_id)
        shown = Problem.status == Visibility.SHOW
        if viewer is not None:
            shown = or_(shown, Problem.owner_id == viewer.id)
        query = query.where(shown)
    return _page(session, query, offset, count)


def _filtered(query, problem, user, status, language):
    if problem is not None:
        query = query.where(Submission.problem_id == problem)
    if user is not None:
        query = query.where(Submission.user_id == user)
    if status is not None:
        query = query.where(Submission.status == parse_code(SubmissionStatus, status, "status"))
    if language is not None:
        query = query.where(Submission.language == parse_code(Language, language, "language"))
    return query


def _page(session: Session, query, offset: int, count: Optional[int]) -> List[Submission]:
    if offset < 0:
        raise ValidationFailed({"offset": ["offset must not be negative"]})
    query = query.order_by(Submission.id).offset(offset)
    if count is not None and count >= 0:
        query = query.limit(count)
    return list(session.exec(query).all())


def pending_submissions(session: Session, limit: Optional[int] = None) -> List[Submission]:
    """Oldest first, as the external scheduler picks them up."""
    return list_submissions(session, status=SubmissionStatus.PENDING, count=limit)


def mark_sent(session: Session, submission: Submission) -> Submission:
    submission.last_send = utcnow()
    with transaction(session):
        session.add(submission)
    session.refresh(submission)
    return submission


def update_code(session: Session, user: User, submission: Submission, code: str) -> Submission:
    if submission.user_id != user.id:
        raise PermissionDenied("not your submission")
    if submission.status != SubmissionStatus.PENDING:
        raise ValidationFailed({"status": ["submission has already been judged"]})
    submission.code = code
    with transaction(session):
        session.add(submission)
    session.refresh(submission)
    return submission
