"""Shared plumbing for repositories."""

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError)


class BaseRepository:
    """Runs reads with a single retry on transient store errors."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def _read(self, operation: str, query: Callable[[], T]) -> T:
        for attempt in (1, 2):
            try:
                return query()
            except TRANSIENT_ERRORS as e:
                self._db.rollback()
                logger.warning(f"Transient store error in {operation} (attempt {attempt}): {e}")
        raise StoreUnavailableError(operation)
