from fastapi import APIRouter, Depends
from sqlmodel import Session

from app import courses
from app.auth import find_by_username
from app.db import get_session
from app.deps import require_user
from app.guard import require_role
from app.models import Course, Role, User
from app.schemas import CourseView, CreateCourseRequest, UserInfo, envelope

router = APIRouter(prefix="/courses", tags=["courses"])


def _view(session: Session, course: Course) -> dict:
    teacher = session.get(User, course.teacher_id)
    return CourseView(id=course.id, name=course.name, teacher=teacher.username).model_dump()


@router.get("/")
def list_courses(session: Session = Depends(get_session)):
    return envelope([_view(session, c) for c in courses.list_courses(session)])


@router.post("/", status_code=201)
def create_course(
    params: CreateCourseRequest,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    require_role(current_user, {Role.ADMIN})
    teacher = find_by_username(session, params.teacher)
    course = courses.create_course(session, current_user, params.name, teacher)
    return envelope(_view(session, course))


@router.get("/{name}")
def get_course(name: str, session: Session = Depends(get_session)):
    course = courses.find_course_by_name(session, name)
    data = _view(session, course)
    data["members"] = [UserInfo.of(u).model_dump() for u in courses.course_members(session, course)]
    return envelope(data)
