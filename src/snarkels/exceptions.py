"""Application exception classes."""

from __future__ import annotations

from typing import Any


class SnarkelsError(Exception):
    """Base error. status_code is the HTTP status the API responds with."""

    status_code = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(SnarkelsError):
    """Raised when request fields are missing or malformed."""

    status_code = 400


class AuthenticationError(SnarkelsError):
    """Raised when a wallet address is required but missing."""

    status_code = 401


class NotFoundError(SnarkelsError):
    """Raised when a market, quiz, room or transaction does not exist."""

    status_code = 404


class PermissionDeniedError(SnarkelsError):
    """Raised when a caller is not allowed to perform a room action."""

    status_code = 403


class ConflictError(SnarkelsError):
    """Raised when a room's state does not allow the requested transition."""

    status_code = 409


class SchemaMismatchError(SnarkelsError):
    """Raised when a table's columns drift from its declared field mapping."""
