"""
Retry execution for remote gateway calls.

This module provides bounded retry with capped exponential backoff,
selective retry predicates, and a session-aware variant that reconnects
the gateway on authentication failures.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Pattern, Union

from mailbox_migration.core.exceptions import ErrorKind, GatewayError
from mailbox_migration.core.session import SessionManager

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0

AUTH_ERROR_PATTERNS = (
    "token",
    "unauthorized",
    "authentication",
    "401",
    "session expired",
)

NON_RETRYABLE_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.PERMISSION})

Action = Callable[[], Awaitable[Any]]
RetryPredicate = Union[str, Pattern, Callable[[BaseException], bool]]


@dataclass
class RetryConfig:
    """Configuration for retry logic."""
    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = MAX_BACKOFF_SECONDS


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float = MAX_BACKOFF_SECONDS
) -> float:
    """Delay before the attempt that follows failed attempt number ``attempt``."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def error_kind(error: BaseException) -> ErrorKind:
    """Return the gateway tag of an error, inferring one for plain exceptions."""
    if isinstance(error, GatewayError):
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, ConnectionError, OSError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def is_authentication_failure(error: BaseException) -> bool:
    """Detect authentication-class failures by tag or by message text."""
    kind = error_kind(error)
    if kind == ErrorKind.AUTH:
        return True
    if kind != ErrorKind.UNKNOWN:
        return False
    text = str(error).lower()
    return any(pattern in text for pattern in AUTH_ERROR_PATTERNS)


def is_retryable(error: BaseException) -> bool:
    return error_kind(error) not in NON_RETRYABLE_KINDS


def _predicate_matches(predicate: RetryPredicate, error: BaseException) -> bool:
    if isinstance(predicate, str):
        return re.search(predicate, str(error), re.IGNORECASE) is not None
    if isinstance(predicate, re.Pattern):
        return predicate.search(str(error)) is not None
    return bool(predicate(error))


class RetryExecutor:
    """
    Wraps gateway calls with bounded retry and session handling.
    """

    def __init__(
        self,
        session: Optional[SessionManager] = None,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize the retry executor.

        Args:
            session: Session manager used for refresh and reconnects (optional)
            config: Retry configuration
            sleep: Awaitable sleep function, replaceable in tests
        """
        self.session = session
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def execute_with_retry(
        self,
        action: Action,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        retry_predicate: Optional[RetryPredicate] = None,
        operation: str = "operation"
    ) -> Any:
        """
        Execute an action with retry logic and capped exponential backoff.

        Args:
            action: Zero-argument coroutine function to execute
            max_retries: Total number of attempts (defaults to the config)
            base_delay: Base delay in seconds (defaults to the config)
            retry_predicate: Regex or callable; when given, only matching
                errors are retried
            operation: Name used in log messages

        Returns:
            Result of the action

        Raises:
            The last exception if all retries are exhausted or the error is
            not retryable
        """
        attempts = max(1, max_retries if max_retries is not None else self.config.max_retries)
        delay_base = base_delay if base_delay is not None else self.config.base_delay

        for attempt in range(1, attempts + 1):
            try:
                result = await action()
            except Exception as e:
                if retry_predicate is not None:
                    retry = _predicate_matches(retry_predicate, e)
                else:
                    retry = is_retryable(e)

                if not retry:
                    logger.debug(f"{operation} failed with a non-retryable error: {e}")
                    raise

                if attempt >= attempts:
                    logger.warning(f"{operation} failed after {attempts} attempts: {e}")
                    raise

                delay = compute_backoff_delay(attempt, delay_base, self.config.max_delay)
                logger.info(
                    f"{operation} failed ({e}); retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{attempts})"
                )
                await self._sleep(delay)
            else:
                self._record_success()
                return result

    async def execute_with_session_retry(
        self,
        action: Action,
        max_retries: Optional[int] = None,
        operation: str = "operation"
    ) -> Any:
        """
        Execute an action, reconnecting the session on authentication failures.

        Non-authentication errors are re-raised immediately. A failed
        reconnect surfaces as a TRANSIENT gateway error.
        """
        attempts = max(1, max_retries if max_retries is not None else self.config.max_retries)

        for attempt in range(1, attempts + 1):
            generation = await self.session.ensure_fresh() if self.session else 0
            try:
                result = await action()
            except Exception as e:
                if not is_authentication_failure(e) or self.session is None:
                    raise
                if attempt >= attempts:
                    logger.warning(f"{operation} still unauthenticated after {attempts} attempts")
                    raise
                logger.warning(f"Authentication failure during {operation}; reconnecting: {e}")
                await self.session.reconnect(generation, reason=str(e))
            else:
                self._record_success()
                return result

    async def call(self, action: Action, operation: str = "operation") -> Any:
        """
        Execute an action with session handling nested inside transient retry.

        This is the composition used by the validation pipeline and the
        batch creator.
        """
        return await self.execute_with_retry(
            lambda: self.execute_with_session_retry(action, operation=operation),
            retry_predicate=lambda e: is_retryable(e) and not is_authentication_failure(e),
            operation=operation
        )

    def _record_success(self) -> None:
        if self.session is not None:
            self.session.record_success()
