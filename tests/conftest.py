import io
import os
import stat
import zipfile

# must be set before app.config is imported
os.environ.setdefault("NOJ_BCRYPT_ROUNDS", "4")
os.environ.setdefault("NOJ_DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, func, select

from app.auth import register
from app.db import init_db, make_engine
from app.mailer import Mailer
from app.models import Role
from app.storage import MemoryStorage


class RecordingMailer(Mailer):
    def __init__(self):
        self.welcome = []
        self.forgot = []

    def send_welcome(self, user):
        self.welcome.append(user.email)

    def send_forgot_password(self, user):
        self.forgot.append(user.email)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def storage():
    return MemoryStorage()


def make_user(session, username, role=Role.STUDENT, password="password"):
    user = register(session, f"{username}@example.com", username, password)
    if role != Role.STUDENT:
        user.role = role
        session.add(user)
        session.commit()
        session.refresh(user)
    return user


def count_rows(session, model):
    return session.exec(select(func.count()).select_from(model)).one()


@pytest.fixture
def admin(session):
    return make_user(session, "first_admin", Role.ADMIN)


@pytest.fixture
def teacher(session):
    return make_user(session, "teacher1", Role.TEACHER)


@pytest.fixture
def student(session):
    return make_user(session, "student1")


def task(test_case_count, score=100, time_limit=1000, memory_limit=65536):
    return {
        "test_case_count": test_case_count,
        "score": score,
        "time_limit": time_limit,
        "memory_limit": memory_limit,
    }


def problem_params(name="A+B Problem", tasks=None, **extra):
    params = {
        "name": name,
        "description": {
            "description": "add two numbers",
            "input": "a b",
            "output": "a+b",
            "hint": "",
            "sample_input": ["1 2"],
            "sample_output": ["3"],
        },
        "tasks": [task(2)] if tasks is None else tasks,
    }
    params.update(extra)
    return params


def case_files(*counts):
    names = []
    for i, count in enumerate(counts):
        for j in range(count):
            names.append(f"test-case/{i:02}{j:02}/STDIN")
            names.append(f"test-case/{i:02}{j:02}/STDOUT")
    return names


def build_zip(names, dirs=(), symlinks=()):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for d in dirs:
            zf.writestr(d.rstrip("/") + "/", "")
        for name in names:
            zf.writestr(name, f"data of {name}\n")
        for name, target in symlinks:
            info = zipfile.ZipInfo(name)
            info.create_system = 3
            info.external_attr = (stat.S_IFLNK | 0o777) << 16
            zf.writestr(info, target)
    return buf.getvalue()
