from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from portal.config import get_settings
from portal.models import Base, ScoringConfiguration
from portal.scoring import create_default_configuration

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DATA_DIR = Path(__file__).parent / "data"


def database_url(db_path: str | Path | None = None) -> str:
    if db_path is not None:
        return f"sqlite:///{Path(db_path)}"
    configured = get_settings().database_url
    if configured:
        return configured
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DATA_DIR / 'portal.db'}"


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        url = database_url(db_path)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args)
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    with session_scope() as session:
        seed_scoring_configuration(session)


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage (scripts, seeding, etc.)::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def seed_scoring_configuration(session: Session) -> None:
    """Create and activate the default scoring configuration if none exists."""
    if session.execute(select(ScoringConfiguration.id)).first() is not None:
        return
    config = create_default_configuration(session)
    config.is_active = True
    session.commit()
    log.info("Seeded default scoring configuration %r", config.name)


def db_session() -> Generator[Session, None, None]:
    """Request-scoped session for FastAPI ``Depends()``."""
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
