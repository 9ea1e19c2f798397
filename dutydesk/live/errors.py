"""
Domain errors raised by the live workflows and the exam services.

They derive from builtins so framework-free callers can catch them broadly
(`LookupError`, `PermissionError`, ...). The web adapter maps each one to a
status code.
"""
from __future__ import annotations


class DomainError(Exception):
    """Base for errors carrying a short machine-readable code."""

    def __init__(self, code: str, detail: str | None = None):
        super().__init__(code)
        self.code = code
        self.detail = detail


class NotFoundError(DomainError, LookupError):
    pass


class ForbiddenError(DomainError, PermissionError):
    pass


class ConflictError(DomainError, RuntimeError):
    pass


class ValidationFailure(DomainError, ValueError):
    pass


__all__ = ["DomainError", "NotFoundError", "ForbiddenError", "ConflictError", "ValidationFailure"]
