"""Core building blocks: exceptions, session management and retry."""

from mailbox_migration.core.exceptions import (
    ErrorKind,
    MailboxMigrationError,
    ConfigurationError,
    InputFileError,
    GatewayError,
    StateFileError,
    InvalidTransitionError,
    StageExecutionError,
    ValidationCancelledError,
    BatchCreationError,
    BatchAlreadyExistsError,
    BatchCreationAbortedError,
)
from mailbox_migration.core.retry import RetryConfig, RetryExecutor, compute_backoff_delay
from mailbox_migration.core.session import SessionManager

__all__ = [
    "ErrorKind",
    "MailboxMigrationError",
    "ConfigurationError",
    "InputFileError",
    "GatewayError",
    "StateFileError",
    "InvalidTransitionError",
    "StageExecutionError",
    "ValidationCancelledError",
    "BatchCreationError",
    "BatchAlreadyExistsError",
    "BatchCreationAbortedError",
    "RetryConfig",
    "RetryExecutor",
    "compute_backoff_delay",
    "SessionManager",
]
