"""Database session management."""
import sqlalchemy
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from app.core.config import get_settings
from pathlib import Path
from typing import Generator

settings = get_settings()

# Workers, the CLI and the API share one sync engine.
connect_args = {}
pool_kwargs = {}
if "sqlite" in settings.database_url:
    connect_args = {
        "check_same_thread": False,
        "timeout": 30,  # 30 second timeout for locked database
    }
else:
    pool_kwargs = {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,  # Verify connections before using
    }

engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    connect_args=connect_args,
    **pool_kwargs,
)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Keep objects alive after commit for Celery workers
)


class Base(DeclarativeBase):
    """Base ORM model."""
    pass


def get_db() -> Generator[Session, None, None]:
    """Database session dependency."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Initialize database tables."""
    # Register models on Base.metadata
    import app.db.models  # noqa: F401

    if "sqlite" in str(engine.url) and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)

    with engine.begin() as conn:
        if "sqlite" in str(engine.url):
            conn.execute(sqlalchemy.text("PRAGMA journal_mode=WAL"))
            conn.execute(sqlalchemy.text("PRAGMA synchronous=NORMAL"))
        Base.metadata.create_all(conn)


def close_db() -> None:
    """Close database connection."""
    engine.dispose()
