"""Typed helper errors with caller-facing messages."""

from __future__ import annotations


class AppError(Exception):
    """Base helper error."""

    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or message


class ConfigError(AppError):
    pass


class DecodeError(AppError):
    pass


class ValidationError(AppError):
    pass


class EnumerationError(AppError):
    pass


class ExecutionError(AppError):
    """One external command failed. Always scoped to a single service."""


class ApplyFailedError(AppError):
    """No service accepted the requested configuration."""


class SocketError(AppError):
    pass
