"""Database configuration and session management."""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from worksage.config import settings


# Base class for ORM models
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def engine_options(database_url: str, timeout_seconds: int) -> dict:
    """Keyword arguments for ``create_engine`` so a stalled store fails the request.

    Key settings for PostgreSQL:
    - isolation_level="READ COMMITTED": sessions and credentials are read while
      other requests write them
    - lock_timeout / statement_timeout: store calls never wait indefinitely

    SQLite gets only its busy timeout; its in-memory pool takes no sizing arguments.
    """
    if database_url.startswith("sqlite"):
        return {
            "echo": False,
            "connect_args": {"check_same_thread": False, "timeout": timeout_seconds},
        }

    timeout_ms = timeout_seconds * 1000
    return {
        "pool_pre_ping": True,  # Enable connection health checks
        "pool_size": 10,  # Number of connections to maintain
        "max_overflow": 20,  # Maximum number of connections beyond pool_size
        "pool_timeout": timeout_seconds,
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "echo": False,  # Set to True for SQL query logging in development
        "isolation_level": "READ COMMITTED",
        "connect_args": {
            "connect_timeout": timeout_seconds,
            "options": f"-c lock_timeout={timeout_ms} -c statement_timeout={timeout_ms}",
        },
    }


engine = create_engine(
    settings.database_url,
    **engine_options(settings.database_url, settings.store_timeout_seconds),
)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Prevent lazy loading errors after commit
)


# Dependency for FastAPI routes
def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI routes.

    Yields:
        Session: SQLAlchemy database session

    Example:
        @app.get("/me")
        def me(db: Session = Depends(get_db)):
            return db.query(User).first()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
