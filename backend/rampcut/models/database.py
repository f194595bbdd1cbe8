import logging
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from rampcut.config import get_settings
from rampcut.models.base import Base

settings = get_settings()
logger = logging.getLogger(__name__)


def _make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Sessions are used from FastAPI's threadpool and from background tasks
        return create_engine(
            url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        echo=settings.database_echo,
        pool_size=5,
        max_overflow=0,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


engine = _make_engine(settings.database_url)

session_maker = sessionmaker(
    engine,
    class_=Session,
    expire_on_commit=False,
)


def init_db(bind: Engine | None = None) -> None:
    """Create all tables (and the SQLite data directory if needed)."""
    bind = bind or engine

    database = bind.url.database
    if bind.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)

    Base.metadata.create_all(bind)
    logger.info(f"[DB] Tables ready on {bind.url.render_as_string(hide_password=True)}")


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that commits on success."""
    session = session_maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_sync_db() -> Generator[Session, None, None]:
    """Get a database session for background tasks and Celery workers."""
    session = session_maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
