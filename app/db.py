from contextlib import contextmanager

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app import config
from app.errors import AlreadyExists, Internal


def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    new_engine = create_engine(url, echo=False, **kwargs)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


def _enable_sqlite_foreign_keys(dbapi_connection, _record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = make_engine(config.DATABASE_URL)


def init_db(target: Engine = None):
    from app import models  # ensure models are imported
    SQLModel.metadata.create_all(target or engine)


def get_session():
    with Session(engine) as session:
        yield session


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == "23505":
        return True
    text = str(orig or exc)
    return "UNIQUE constraint failed" in text or "Duplicate entry" in text


@contextmanager
def transaction(session: Session):
    """Run the block and commit; any failure rolls back every pending row.

    Database errors are translated: unique violations become AlreadyExists,
    anything else from the driver becomes Internal.
    """
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc):
            raise AlreadyExists() from exc
        raise Internal(f"integrity error: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise Internal(f"database error: {exc}") from exc
    except BaseException:
        session.rollback()
        raise
