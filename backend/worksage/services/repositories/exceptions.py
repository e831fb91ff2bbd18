"""Repository-specific exceptions.

These exceptions provide semantic meaning for data access errors,
separating them from general database errors.
"""


class RepositoryError(Exception):
    """Base exception for repository operations."""


class StoreUnavailableError(RepositoryError):
    """Store call timed out or lost its connection (after one retry)."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Credential store unavailable during {operation}")
