"""Database connection management for the link console.

Provides synchronous database access using SQLAlchemy. SQLite is the
default backend; any SQLAlchemy URL works through DATABASE_URL.

Usage:
    from linkconsole.db.connection import SessionLocal, init_db

    init_db()  # Create tables
    with SessionLocal() as db:
        db.query(WhatsAppConnection).all()
"""

import logging
import os
from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from linkconsole.db.models import Base

logger = logging.getLogger(__name__)


# Configuration
def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. LINKCONSOLE_DB_PATH (converted to sqlite URL)
    3. sqlite:///<user data dir>/linkconsole.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("LINKCONSOLE_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from linkconsole.utils.paths import get_default_db_path
    return f"sqlite:///{get_default_db_path()}"


DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable WAL so the scheduler and request handlers can read while one writes."""
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session, closed after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables. Idempotent."""
    if DATABASE_URL.startswith("sqlite:///"):
        from pathlib import Path

        Path(DATABASE_URL.removeprefix("sqlite:///")).parent.mkdir(
            parents=True, exist_ok=True
        )
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialised at %s", DATABASE_URL)
