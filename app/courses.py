import logging
from typing import Iterable, List

from sqlmodel import Session, select

from app.db import transaction
from app.errors import NotFound, ValidationFailed
from app.guard import require_role
from app.models import Course, CourseMember, Role, User

logger = logging.getLogger(__name__)


def find_course_by_name(session: Session, name: str) -> Course:
    course = session.exec(select(Course).where(Course.name == name)).first()
    if course is None:
        raise NotFound(f"course not found: {name}")
    return course


def list_courses(session: Session) -> List[Course]:
    return list(session.exec(select(Course).order_by(Course.id)).all())


def create_course(session: Session, actor: User, name: str, teacher: User) -> Course:
    require_role(actor, {Role.ADMIN})
    errors = {}
    if not name or not name.strip():
        errors["name"] = ["course name must not be empty"]
    if teacher.role != Role.TEACHER:
        errors["teacher"] = ["course owner must be a teacher"]
    if errors:
        raise ValidationFailed(errors)

    course = Course(name=name.strip(), teacher_id=teacher.id)
    with transaction(session):
        session.add(course)
        session.flush()
        enroll(session, course, [teacher])
    session.refresh(course)
    logger.info("course %r created by %s", course.name, actor.pid)
    return course


def enroll(session: Session, course: Course, users: Iterable[User]):
    """Add memberships inside the caller's transaction; existing ones are kept."""
    current = set(session.exec(
        select(CourseMember.user_id).where(CourseMember.course_id == course.id)
    ).all())
    for user in users:
        if user.id in current:
            continue
        session.add(CourseMember(course_id=course.id, user_id=user.id))
        current.add(user.id)


def course_members(session: Session, course: Course) -> List[User]:
    return list(session.exec(
        select(User)
        .join(CourseMember, CourseMember.user_id == User.id)
        .where(CourseMember.course_id == course.id)
        .order_by(User.id)
    ).all())
