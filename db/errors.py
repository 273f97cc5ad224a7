from __future__ import annotations

from typing import Optional


class DatabaseError(Exception):
    """
    Storage failure classified by the operation that was attempted.
    The driver/SQLAlchemy error, when there is one, is kept on ``original``.
    """

    operation = "Database Error"

    def __init__(self, error: Exception | str, message: Optional[str] = None):
        if isinstance(error, Exception):
            self.original: Optional[Exception] = error
            message = message or str(error)
        else:
            self.original = None
            message = message or error
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.operation}: {super().__str__()}"


class InsertError(DatabaseError):
    operation = "Insert Error"


class SelectError(DatabaseError):
    operation = "Select Error"


class UpdateError(DatabaseError):
    operation = "Update Error"


class DeleteError(DatabaseError):
    operation = "Delete Error"
