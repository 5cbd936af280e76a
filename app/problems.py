import io
import logging
import stat
import uuid
import zipfile
from pathlib import PurePosixPath
from typing import BinaryIO, List, Optional, Sequence, Set, Union

from pydantic import ValidationError
from sqlmodel import Session, select

from app import config
from app.db import transaction
from app.errors import (
    BadFormat,
    Internal,
    NotFound,
    PermissionDenied,
    ServiceError,
    ValidationFailed,
)
from app.guard import STAFF, is_admin, require_role
from app.models import (
    Problem,
    ProblemCreate,
    ProblemDescription,
    ProblemTask,
    User,
    Visibility,
)
from app.storage import Storage

logger = logging.getLogger(__name__)

# task and case indices are rendered as two decimal digits
MAX_INDEX = 100

Archive = Union[bytes, bytearray, memoryview, BinaryIO]


def archive_path(archive_id: str) -> str:
    return f"test-case/{archive_id}.zip"


def create_problem(session: Session, owner: User, params: Union[ProblemCreate, dict]) -> Problem:
    """Create a problem with its description and tasks, all or nothing.

    The test case archive is attached later by ``upload_test_case``.
    """
    require_role(owner, STAFF)
    if not isinstance(params, ProblemCreate):
        try:
            params = ProblemCreate.model_validate(params)
        except ValidationError as e:
            raise ValidationFailed.from_pydantic(e)

    with transaction(session):
        description = ProblemDescription(**params.description.model_dump())
        session.add(description)
        session.flush()

        problem = Problem(
            name=params.name,
            owner_id=owner.id,
            status=params.status,
            type=params.type,
            allowed_language=params.allowed_language,
            quota=params.quota,
            description_id=description.id,
        )
        session.add(problem)
        session.flush()

        for i, task in enumerate(params.tasks):
            session.add(ProblemTask(problem_id=problem.id, task_index=i, **task.model_dump()))
    session.refresh(problem)
    logger.info("problem #%s %r created by %s", problem.id, problem.name, owner.pid)
    return problem


def find_problem(session: Session, problem_id: int) -> Problem:
    problem = session.get(Problem, problem_id)
    if problem is None:
        raise NotFound(f"problem not found: {problem_id}")
    return problem


def problem_tasks(session: Session, problem: Problem) -> List[ProblemTask]:
    return list(session.exec(
        select(ProblemTask)
        .where(ProblemTask.problem_id == problem.id)
        .order_by(ProblemTask.task_index)
    ).all())


def problem_description(session: Session, problem: Problem) -> ProblemDescription:
    return session.get(ProblemDescription, problem.description_id)


def can_view(viewer: Optional[User], problem: Problem) -> bool:
    if problem.status == Visibility.SHOW or is_admin(viewer):
        return True
    return viewer is not None and viewer.id == problem.owner_id


def window(items: Sequence, offset: int = 0, count: Optional[int] = None) -> list:
    """Slice ``items``; a negative ``count`` means no limit."""
    if offset < 0:
        raise ValidationFailed({"offset": ["offset must not be negative"]})
    if count is None or count < 0:
        return list(items[offset:])
    return list(items[offset:offset + count])


def list_problems(
    session: Session,
    viewer: Optional[User],
    name: Optional[str] = None,
    offset: int = 0,
    count: Optional[int] = None,
) -> List[Problem]:
    query = select(Problem).order_by(Problem.id)
    if name is not None:
        query = query.where(Problem.name == name)
    visible = [p for p in session.exec(query).all() if can_view(viewer, p)]
    if count is None:
        count = config.DEFAULT_PAGE_SIZE
    return window(visible, offset, count)


# test case archives

def expected_test_case_files(tasks: Sequence[ProblemTask]) -> Set[str]:
    if len(tasks) > MAX_INDEX:
        raise BadFormat(f"too many tasks: {len(tasks)} (at most {MAX_INDEX})")
    expected = set()
    for i, task in enumerate(tasks):
        if not 0 <= task.test_case_count <= MAX_INDEX:
            raise BadFormat(
                f"task {i} has {task.test_case_count} test cases (at most {MAX_INDEX})"
            )
        for j in range(task.test_case_count):
            expected.add(f"test-case/{i:02}{j:02}/STDIN")
            expected.add(f"test-case/{i:02}{j:02}/STDOUT")
    return expected


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _enclosed_name(name: str) -> Optional[str]:
    """Return ``name`` if it stays inside the archive root, else None."""
    if not name or "\x00" in name or "\\" in name or not name.isprintable():
        return None
    path = PurePosixPath(name)
    if path.is_absolute():
        return None
    depth = 0
    for part in path.parts:
        if part == "..":
            depth -= 1
            if depth < 0:
                return None
        elif part != ".":
            depth += 1
    return name


def _open_archive(archive: Archive) -> zipfile.ZipFile:
    if isinstance(archive, (bytes, bytearray, memoryview)):
        archive = io.BytesIO(bytes(archive))
    try:
        return zipfile.ZipFile(archive)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, UnicodeDecodeError, EOFError, OSError) as e:
        raise BadFormat(f"error reading zip file: {e}")


def check_archive(archive: Archive, expected: Set[str]):
    """Match the archive's entries against ``expected`` exactly.

    Only the central directory is read; entry contents are never inflated.
    """
    expected = set(expected)
    with _open_archive(archive) as zf:
        for info in zf.infolist():
            if _is_symlink(info):
                raise BadFormat(f"symlink is not allowed: {info.filename}")
            if info.is_dir():
                continue
            name = _enclosed_name(info.filename)
            if name is None:
                raise BadFormat(f"invalid path found in zip file: {info.filename!r}")
            if name not in expected:
                raise BadFormat(f"duplicated or extra file found: {name}")
            expected.remove(name)
    if expected:
        raise BadFormat(f"missing files: {','.join(sorted(expected))}")


def validate_test_case_archive(session: Session, problem: Problem, archive: Archive):
    check_archive(archive, expected_test_case_files(problem_tasks(session, problem)))


def _archive_size(archive: Archive) -> int:
    if isinstance(archive, (bytes, bytearray, memoryview)):
        return len(archive)
    archive.seek(0, io.SEEK_END)
    size = archive.tell()
    archive.seek(0)
    return size


async def upload_test_case(
    session: Session, actor: User, problem: Problem, archive: Archive, storage: Storage
) -> Problem:
    """Validate, store the blob, then point the problem at it.

    ``archive`` may be bytes or a seekable binary file; a file is never read
    into memory whole.

    The blob is written before the reference moves, so a crash in between
    leaves an unreferenced blob and the problem still on its previous archive.
    Earlier blobs are never deleted. Concurrent uploads: last writer wins.
    """
    require_role(actor, STAFF)
    if not is_admin(actor) and problem.owner_id != actor.id:
        raise PermissionDenied("only the owner can change test cases")
    size = _archive_size(archive)
    if size > config.MAX_TEST_CASE_BYTES:
        raise BadFormat(f"archive too large: {size} bytes (at most {config.MAX_TEST_CASE_BYTES})")
    validate_test_case_archive(session, problem, archive)
    if not isinstance(archive, (bytes, bytearray, memoryview)):
        archive.seek(0)

    archive_id = str(uuid.uuid4())
    try:
        await storage.put(archive_path(archive_id), archive)
    except ServiceError:
        raise
    except Exception as e:
        logger.error("could not store test case for problem #%s: %s", problem.id, e)
        raise Internal("could not store test case") from e

    problem.test_case_id = archive_id
    with transaction(session):
        session.add(problem)
    session.refresh(problem)
    logger.info("problem #%s now uses test case %s", problem.id, archive_id)
    return problem
