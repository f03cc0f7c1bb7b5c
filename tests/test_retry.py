"""
Unit tests for retry execution and session handling.
"""

import asyncio
from datetime import datetime, timedelta, UTC

import pytest

from mailbox_migration.core.exceptions import ErrorKind, GatewayError
from mailbox_migration.core.retry import (
    MAX_BACKOFF_SECONDS,
    RetryConfig,
    RetryExecutor,
    compute_backoff_delay,
    error_kind,
    is_authentication_failure,
    is_retryable,
)
from mailbox_migration.core.session import SessionManager


def flaky(failures, result="ok"):
    """Coroutine function failing with each of ``failures`` before returning ``result``."""
    calls = {"count": 0}
    remaining = list(failures)

    async def action():
        calls["count"] += 1
        if remaining:
            raise remaining.pop(0)
        return result

    action.calls = calls
    return action


class TestBackoff:
    """Test cases for backoff computation."""

    def test_doubles_per_attempt(self):
        assert compute_backoff_delay(1, 2.0) == 2.0
        assert compute_backoff_delay(2, 2.0) == 4.0
        assert compute_backoff_delay(3, 2.0) == 8.0

    def test_capped_at_maximum(self):
        assert compute_backoff_delay(10, 2.0) == MAX_BACKOFF_SECONDS
        assert compute_backoff_delay(4, 10.0, max_delay=15.0) == 15.0


class TestErrorClassification:
    """Test cases for error tags and authentication detection."""

    def test_gateway_tag_is_used(self):
        error = GatewayError("gone", kind=ErrorKind.NOT_FOUND)
        assert error_kind(error) == ErrorKind.NOT_FOUND
        assert not is_retryable(error)

    def test_plain_network_errors_are_transient(self):
        assert error_kind(ConnectionResetError("reset")) == ErrorKind.TRANSIENT
        assert error_kind(asyncio.TimeoutError()) == ErrorKind.TRANSIENT
        assert is_retryable(TimeoutError("slow"))

    def test_permission_is_not_retryable(self):
        assert not is_retryable(GatewayError("denied", kind=ErrorKind.PERMISSION))

    def test_auth_tag(self):
        assert is_authentication_failure(GatewayError("nope", kind=ErrorKind.AUTH))

    @pytest.mark.parametrize("message", [
        "The access token has expired",
        "401 Unauthorized",
        "Authentication failed for user",
        "Session expired",
    ])
    def test_auth_message_text(self, message):
        assert is_authentication_failure(RuntimeError(message))

    def test_tag_takes_precedence_over_text(self):
        error = GatewayError("Mailbox 'user401@contoso.com' couldn't be found", kind=ErrorKind.NOT_FOUND)
        assert not is_authentication_failure(error)

    def test_unrelated_error(self):
        assert not is_authentication_failure(ValueError("bad value"))


class TestExecuteWithRetry:
    """Test cases for bounded retry."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, fake_sleep, sleeps):
        executor = RetryExecutor(config=RetryConfig(max_retries=5, base_delay=2.0), sleep=fake_sleep)
        action = flaky([GatewayError("busy", kind=ErrorKind.TRANSIENT)] * 3)

        assert await executor.execute_with_retry(action) == "ok"
        assert action.calls["count"] == 4
        assert sleeps == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, fake_sleep, sleeps):
        executor = RetryExecutor(config=RetryConfig(max_retries=5, base_delay=10.0), sleep=fake_sleep)
        action = flaky([GatewayError("busy", kind=ErrorKind.TRANSIENT)] * 4)

        assert await executor.execute_with_retry(action) == "ok"
        assert sleeps == [10.0, 20.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self, fake_sleep, sleeps):
        executor = RetryExecutor(config=RetryConfig(max_retries=3, base_delay=1.0), sleep=fake_sleep)
        errors = [GatewayError(f"busy {i}", kind=ErrorKind.TRANSIENT) for i in range(3)]
        action = flaky(errors)

        with pytest.raises(GatewayError, match="busy 2"):
            await executor.execute_with_retry(action)
        assert action.calls["count"] == 3
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, fake_sleep, sleeps):
        executor = RetryExecutor(sleep=fake_sleep)
        action = flaky([GatewayError("missing", kind=ErrorKind.NOT_FOUND)])

        with pytest.raises(GatewayError):
            await executor.execute_with_retry(action)
        assert action.calls["count"] == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_regex_predicate(self, fake_sleep):
        executor = RetryExecutor(sleep=fake_sleep)

        throttled = flaky([RuntimeError("Request was throttled")])
        assert await executor.execute_with_retry(throttled, retry_predicate=r"throttl") == "ok"

        other = flaky([RuntimeError("Bad request")])
        with pytest.raises(RuntimeError):
            await executor.execute_with_retry(other, retry_predicate=r"throttl")
        assert other.calls["count"] == 1

    @pytest.mark.asyncio
    async def test_overrides(self, fake_sleep, sleeps):
        executor = RetryExecutor(config=RetryConfig(max_retries=3, base_delay=1.0), sleep=fake_sleep)
        action = flaky([OSError("down")] * 4)

        with pytest.raises(OSError):
            await executor.execute_with_retry(action, max_retries=5, base_delay=0.5)
        assert action.calls["count"] == 5
        assert sleeps == [0.5, 1.0, 2.0, 4.0]


class TestSessionRetry:
    """Test cases for reconnecting on authentication failures."""

    @pytest.mark.asyncio
    async def test_reconnects_after_expired_session(self, gateway, session, executor):
        await session.connect()
        gateway.expire_session()

        mailbox = await executor.execute_with_session_retry(lambda: gateway.get_mailbox("alice@contoso.com"))

        assert mailbox["identity"] == "alice@contoso.com"
        assert gateway.connect_count == 2
        assert session.reconnect_count == 1
        assert session.generation == 2

    @pytest.mark.asyncio
    async def test_non_auth_errors_propagate(self, gateway, session, executor):
        await session.connect()
        with pytest.raises(GatewayError) as exc_info:
            await executor.execute_with_session_retry(lambda: gateway.get_mailbox("nobody@contoso.com"))
        assert exc_info.value.is_not_found
        assert session.reconnect_count == 0

    @pytest.mark.asyncio
    async def test_connects_lazily(self, gateway, executor):
        assert not gateway.connected
        await executor.execute_with_session_retry(gateway.get_accepted_domains)
        assert gateway.connected

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, gateway, session, fake_sleep):
        executor = RetryExecutor(session=session, config=RetryConfig(max_retries=2), sleep=fake_sleep)
        await session.connect()
        gateway.inject_failure(
            "get_mailbox", GatewayError("token rejected", kind=ErrorKind.AUTH), times=5
        )

        with pytest.raises(GatewayError, match="token rejected"):
            await executor.execute_with_session_retry(lambda: gateway.get_mailbox("alice@contoso.com"))
        assert session.reconnect_count == 1


class TestCall:
    """Test cases for the composed retry used by the pipeline."""

    @pytest.mark.asyncio
    async def test_transient_then_success(self, gateway, executor, sleeps):
        gateway.inject_failure(
            "get_mailbox_statistics", GatewayError("throttled", kind=ErrorKind.TRANSIENT), times=2
        )

        stats = await executor.call(lambda: gateway.get_mailbox_statistics("bob@contoso.com"))

        assert stats["item_count"] == 5000
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retried_by_outer_loop(self, gateway, session, executor, sleeps):
        await session.connect()
        gateway.inject_failure(
            "get_mailbox", GatewayError("token rejected", kind=ErrorKind.AUTH), times=10
        )

        with pytest.raises(GatewayError):
            await executor.call(lambda: gateway.get_mailbox("alice@contoso.com"))
        assert sleeps == []
        assert gateway.call_count("get_mailbox") == 3

    @pytest.mark.asyncio
    async def test_records_successful_call(self, gateway, session, executor):
        assert session.last_successful_connection is None
        await executor.call(gateway.get_accepted_domains)
        assert session.last_successful_connection is not None


class TestSessionManager:
    """Test cases for session lifetime handling."""

    @pytest.mark.asyncio
    async def test_reconnect_is_coalesced_per_generation(self, gateway, session):
        await session.connect()
        observed = session.generation

        await session.reconnect(observed, reason="first worker")
        await session.reconnect(observed, reason="second worker")

        assert session.reconnect_count == 1
        assert session.generation == observed + 1
        assert gateway.connect_count == 2

    @pytest.mark.asyncio
    async def test_refreshes_before_expiry(self, gateway):
        now = [datetime(2026, 1, 1, 9, 0, tzinfo=UTC)]
        session = SessionManager(
            gateway,
            lifetime=timedelta(minutes=50),
            refresh_margin=timedelta(minutes=5),
            clock=lambda: now[0],
        )
        await session.connect()
        assert await session.ensure_fresh() == 1

        now[0] += timedelta(minutes=44)
        assert await session.ensure_fresh() == 1

        now[0] += timedelta(minutes=2)
        assert await session.ensure_fresh() == 2
        assert session.reconnect_count == 1

    @pytest.mark.asyncio
    async def test_failed_reconnect_is_transient(self, gateway, session):
        await session.connect()
        gateway.inject_failure("connect", GatewayError("tenant unavailable", kind=ErrorKind.UNKNOWN))

        with pytest.raises(GatewayError) as exc_info:
            await session.reconnect(session.generation)
        assert exc_info.value.kind == ErrorKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self, gateway):
        async with SessionManager(gateway) as session:
            await session.connect()
            assert session.connected
        assert not session.connected
        assert gateway.disconnect_count == 1
