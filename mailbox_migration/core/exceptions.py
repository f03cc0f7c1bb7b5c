"""
Custom exceptions for the Mailbox Migration Assistant.

This module defines the exception hierarchy used throughout the
application. Gateway failures carry an ``ErrorKind`` tag so that retry
and session handling can dispatch on the tag instead of on concrete
exception classes.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Classification tag attached to every gateway failure."""
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    AUTH = "auth"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class MailboxMigrationError(Exception):
    """Base exception class for Mailbox Migration Assistant errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(MailboxMigrationError):
    """Raised when the run configuration is invalid."""
    pass


class InputFileError(ConfigurationError):
    """Raised when the mailbox input file is missing or malformed."""
    pass


class GatewayError(MailboxMigrationError):
    """Raised by directory gateways when a remote call fails."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.kind = kind
        self.operation = operation

    @property
    def is_not_found(self) -> bool:
        return self.kind == ErrorKind.NOT_FOUND


class StateFileError(MailboxMigrationError):
    """Raised when a persisted run state cannot be read."""
    pass


class InvalidTransitionError(MailboxMigrationError):
    """Raised when a run stage would move backwards."""
    pass


class StageExecutionError(MailboxMigrationError):
    """Raised when a run stage fails."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, **kwargs)
        self.stage = stage


class ValidationCancelledError(MailboxMigrationError):
    """Raised when validation is cancelled at a window boundary."""

    def __init__(self, message: str, windows_completed: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.windows_completed = windows_completed


class BatchCreationError(MailboxMigrationError):
    """Raised when a migration batch cannot be submitted."""
    pass


class BatchAlreadyExistsError(BatchCreationError):
    """Raised when a batch with the same name already exists remotely."""
    pass


class BatchCreationAbortedError(BatchCreationError):
    """Raised when the operator aborts batch creation."""
    pass
