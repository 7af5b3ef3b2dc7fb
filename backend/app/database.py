"""Database connection and session management."""
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import get_settings

settings = get_settings()


def build_engine(database_url: str, timeout_seconds: float, echo: bool = False) -> Engine:
    """Create an engine whose blocking calls are bounded by ``timeout_seconds``."""
    if "sqlite" in database_url:
        # SQLite requires check_same_thread=False for FastAPI; timeout bounds lock waits
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}
        return create_engine(database_url, connect_args=connect_args, echo=echo)

    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
        connect_args={"connect_timeout": int(timeout_seconds)},
    )


engine = build_engine(
    settings.database_url,
    settings.database_timeout_seconds,
    echo=settings.debug,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC now, the reference clock for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> str:
    """Serialize a naive UTC datetime to the fixed-width ISO form used in columns.

    Fixed width keeps string comparison in SQL equivalent to time comparison.
    """
    return value.isoformat(timespec="microseconds")


def from_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def init_db(bind: Engine | None = None) -> None:
    """Create all tables registered on ``Base``."""
    from app import models  # noqa: F401

    bind = bind or engine
    if bind.url.get_backend_name() == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=bind)


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

