"""
Database configuration and session management.

Provides the SQLAlchemy engine, session factory and declarative base used by
the billing models, plus the ``get_db`` dependency for FastAPI routes.

Configuration:
- DATABASE_URL: connection string (default: a local SQLite file)
- DATABASE_POOL_SIZE / DATABASE_MAX_OVERFLOW: pool sizing for server databases
- SSL mode is disabled automatically for PostgreSQL on localhost
"""
import os
from typing import Generator, Optional
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

from dotenv import load_dotenv

from sqlalchemy import create_engine, Column, DateTime, Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.sql import func

from hcbilling.utils.logger import get_logger

# Load .env file before reading environment variables
load_dotenv()

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./var/hcbilling.db"


def get_database_url(default: str = DEFAULT_DATABASE_URL) -> str:
    """
    Read ``DATABASE_URL`` and adjust SSL mode for local PostgreSQL servers.

    Example:
        >>> os.environ["DATABASE_URL"] = "postgresql://u:p@localhost/billing"
        >>> get_database_url()
        'postgresql://u:p@localhost/billing?sslmode=disable'
    """
    database_url = os.getenv("DATABASE_URL", default)
    parsed = urlparse(database_url)
    if parsed.scheme.startswith("sqlite"):
        return database_url

    query = parse_qs(parsed.query)
    is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1") or not parsed.hostname
    if is_localhost and query.get("sslmode", ["require"]) == ["require"]:
        query["sslmode"] = ["disable"]
        database_url = urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
    return database_url


DATABASE_URL = get_database_url()

# Base class for models (must be created before models are imported)
Base = declarative_base()


class TimestampMixin:
    """Adds ``created_at``/``updated_at`` columns to a model."""

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: Optional[int] = None,
    max_overflow: Optional[int] = None,
    echo: bool = False,
) -> Engine:
    """
    Create SQLAlchemy database engine.

    Args:
        database_url: Connection URL (defaults to DATABASE_URL)
        pool_size: Pool size for server databases (DATABASE_POOL_SIZE or 5)
        max_overflow: Pool overflow (DATABASE_MAX_OVERFLOW or 10)
        echo: Enable SQL query logging

    Returns:
        Configured SQLAlchemy Engine instance
    """
    url = database_url or DATABASE_URL
    if url.startswith("sqlite"):
        if ":memory:" not in url:
            path = url.split(":///", 1)[-1]
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False}, echo=echo)

    return create_engine(
        url,
        pool_size=pool_size or int(os.getenv("DATABASE_POOL_SIZE", "5")),
        max_overflow=max_overflow or int(os.getenv("DATABASE_MAX_OVERFLOW", "10")),
        pool_pre_ping=True,
        echo=echo,
    )


engine = create_database_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session for dependency injection.

    Example:
        @router.get("/claims/unpaid")
        async def unpaid(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Create all tables that do not exist yet.

    Raises:
        Exception: If database initialization fails
    """
    # Registers every model with Base.metadata
    import hcbilling.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise
