from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from errors import StoreBusy


# Connection execution option read by the SQLite "begin" listener.
BEGIN_MODE_OPTION = "sqlite_begin_mode"


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, *, busy_timeout_secs: Optional[float] = None) -> Engine:
    """Create an engine with the store's connection policy installed.

    SQLite connections get foreign keys and WAL enabled. Transactions opened
    by ``atomic`` begin with ``BEGIN IMMEDIATE`` so writers serialize on the
    database lock instead of failing on upgrade from a shared read lock;
    plain reads use a deferred ``BEGIN`` and never hold the write lock.
    """
    is_sqlite = database_url.startswith("sqlite")
    kwargs: dict[str, object] = {}
    if is_sqlite:
        connect_args: dict[str, object] = {"check_same_thread": False}
        if busy_timeout_secs is not None:
            connect_args["timeout"] = busy_timeout_secs
        kwargs["connect_args"] = connect_args
        if ":memory:" in database_url or database_url.rstrip("/") in {
            "sqlite:",
            "sqlite+pysqlite:",
        }:
            kwargs["poolclass"] = StaticPool

    eng = create_engine(database_url, **kwargs)
    if is_sqlite:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
        event.listen(eng, "begin", _begin)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # Driver-level transaction handling off; "begin" below emits BEGIN itself.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _begin(conn) -> None:
    mode = conn.get_execution_options().get(BEGIN_MODE_OPTION, "DEFERRED")
    conn.exec_driver_sql(f"BEGIN {mode}")


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings = get_settings()
    return build_engine(
        settings.database_url, busy_timeout_secs=settings.sqlite_busy_timeout_secs
    )


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return build_session_factory(get_engine())


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run a block as one unit of work on ``session``: commit or roll back.

    A read transaction left open on the session is ended first so the scope
    starts with the write lock taken.
    """
    if session.in_transaction():
        session.commit()
    try:
        session.connection(execution_options={BEGIN_MODE_OPTION: "IMMEDIATE"})
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        if "locked" in str(exc.orig).lower():
            raise StoreBusy("Store is busy, try again") from exc
        raise
    except Exception:
        session.rollback()
        raise


@contextmanager
def session_scope(factory: Optional[sessionmaker[Session]] = None) -> Iterator[Session]:
    session: Session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
