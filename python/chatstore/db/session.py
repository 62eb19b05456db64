"""Sessions and the transaction helper used by every store write.

Store functions never open sessions themselves: the caller passes one in.
This module owns the process-wide sessionmaker and `transaction()`, which
turns constraint violations into ConflictError and database outages into
UnavailableError.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from chatstore.db.engine import get_engine
from chatstore.errors import ConflictError, StoreErrorCode, UnavailableError

_SessionLocal: sessionmaker[Session] | None = None


def create_session_factory(engine: Any = None) -> sessionmaker[Session]:
    """Build a sessionmaker bound to engine (the process engine by default).

    Objects stay readable after commit; flushing is explicit.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide sessionmaker, built on first use.

    Raises:
        UnavailableError: If persistence is disabled (from get_engine).
    """
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory()
    return _SessionLocal


def reset_session_factory() -> None:
    global _SessionLocal
    _SessionLocal = None


def get_db() -> Generator[Session, None, None]:
    """Yield one session and close it afterwards, for dependency injection."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit the block's writes, or roll them all back.

    A return from inside the block still commits.

    Raises:
        ConflictError(E_CONFLICT): On a unique, check or foreign key violation.
        UnavailableError(E_STORE_UNAVAILABLE): If the database is locked,
            read-only or unreachable.
        Anything else raised in the block, after rollback.
    """
    try:
        yield
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(StoreErrorCode.E_CONFLICT, f"Constraint violated: {e.orig}") from e
    except OperationalError as e:
        db.rollback()
        raise UnavailableError(StoreErrorCode.E_STORE_UNAVAILABLE, f"Store unavailable: {e.orig}") from e
    except Exception:
        db.rollback()
        raise
