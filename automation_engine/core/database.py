"""Database engine and session management."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from automation_engine.core.config import get_settings


def _resolve_sqlite_path(database_url: str) -> None:
    """Ensure the parent directory for a SQLite database exists."""

    parsed = urlparse(database_url)
    if parsed.scheme != "sqlite":
        return

    if parsed.path in ("", ":memory:", "/:memory:"):
        return

    # sqlite:///./data/automation.db parses to "/./data/automation.db"
    db_path = Path(parsed.path[1:] if parsed.path.startswith("/./") else parsed.path)
    db_dir = db_path.expanduser().resolve().parent
    db_dir.mkdir(parents=True, exist_ok=True)


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine with the pool settings appropriate for the URL."""

    if url.startswith("sqlite"):
        _resolve_sqlite_path(url)
        engine_kwargs: dict[str, object] = {
            "future": True,
            "echo": echo,
            "connect_args": {"check_same_thread": False},
        }
        if url.endswith(":memory:") or url == "sqlite://":
            engine_kwargs["poolclass"] = StaticPool
        return create_engine(url, **engine_kwargs)
    return create_engine(
        url,
        future=True,
        echo=echo,
        pool_pre_ping=True,
    )


def _create_engine() -> Engine:
    settings = get_settings()
    return build_engine(settings.database_url, echo=settings.sql_echo)


engine: Engine = _create_engine()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
    class_=Session,
)


def get_session() -> Iterator[Session]:
    """FastAPI dependency for acquiring a database session."""

    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Provide a transactional scope for scripts and background jobs."""

    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
