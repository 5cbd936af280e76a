from typing import Optional

from fastapi import APIRouter, Body, Depends, File, UploadFile
from fastapi.responses import Response
from sqlmodel import Session

from app import problems
from app.db import get_session
from app.deps import get_current_user, get_storage, require_user
from app.errors import NotFound, PermissionDenied
from app.guard import STAFF, is_admin, require_role
from app.models import User
from app.schemas import ProblemDetail, ProblemListItem, envelope
from app.storage import Storage

router = APIRouter(prefix="/problems", tags=["problems"])


def _visible_problem(session: Session, problem_id: int, viewer: Optional[User]):
    problem = problems.find_problem(session, problem_id)
    # hidden problems look missing to those who cannot see them
    if not problems.can_view(viewer, problem):
        raise NotFound(f"problem not found: {problem_id}")
    return problem


@router.get("/")
def list_problems(
    name: Optional[str] = None,
    offset: int = 0,
    count: Optional[int] = None,
    current_user: Optional[User] = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    found = problems.list_problems(session, current_user, name=name, offset=offset, count=count)
    return envelope([ProblemListItem.of(p).model_dump() for p in found])


@router.post("/", status_code=201)
def create_problem(
    params: dict = Body(...),
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    problem = problems.create_problem(session, current_user, params)
    return envelope({"id": problem.id})


@router.get("/{problem_id}")
def problem_detail(
    problem_id: int,
    current_user: Optional[User] = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    problem = _visible_problem(session, problem_id, current_user)
    detail = ProblemDetail.of(
        problem,
        session.get(User, problem.owner_id),
        problems.problem_description(session, problem),
        problems.problem_tasks(session, problem),
    )
    return envelope(detail.model_dump())


@router.put("/{problem_id}/test-case")
async def upload_test_case(
    problem_id: int,
    case: UploadFile = File(...),
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
    storage: Storage = Depends(get_storage),
):
    require_role(current_user, STAFF)
    problem = problems.find_problem(session, problem_id)
    # the spooled upload is validated and copied in place, never read whole
    problem = await problems.upload_test_case(session, current_user, problem, case.file, storage)
    return envelope({"test_case_id": problem.test_case_id})


@router.get("/{problem_id}/test-case")
async def download_test_case(
    problem_id: int,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
    storage: Storage = Depends(get_storage),
):
    require_role(current_user, STAFF)
    problem = problems.find_problem(session, problem_id)
    if not is_admin(current_user) and problem.owner_id != current_user.id:
        raise PermissionDenied("only the owner can read test cases")
    if problem.test_case_id is None:
        raise NotFound("problem has no test case")
    data = await storage.get(problems.archive_path(problem.test_case_id))
    return Response(content=data, media_type="application/zip")
