"""Database initialization script."""

import logging

from worksage import models  # noqa: F401  (registers every table on Base.metadata)
from worksage.database import Base, engine

logger = logging.getLogger(__name__)


def create_tables() -> None:
    """Create all database tables."""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_tables()
