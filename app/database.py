"""
Database Configuration and Session Management
"""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = None
SessionLocal = None

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONColumn = JSON().with_variant(JSONB(), "postgresql")


def sqlalchemy_url(url=None):
    """DATABASE_URL with the psycopg3 driver selected, or None when unset."""
    url = url or settings.database_url
    if not url:
        return None
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def init_db():
    """Initialize database connection"""
    global engine, SessionLocal

    db_url = sqlalchemy_url()
    if db_url is None:
        logger.warning("DATABASE_URL not configured - database features disabled")
        return

    logger.info("Connecting to database...")
    engine = create_engine(
        db_url,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=5,
        max_overflow=10
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Database connection established")


def get_db():
    """
    Dependency for getting database session
    Usage: db: Session = Depends(get_db)

    Yields None if DATABASE_URL is not configured; routers answer 503.
    """
    if SessionLocal is None:
        logger.warning("Database not configured")
        yield None
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Base class for all models
Base = declarative_base()
