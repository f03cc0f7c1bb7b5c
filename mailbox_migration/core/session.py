"""
Session management for the remote directory gateway.

The authenticated gateway session is a single process-wide resource. The
SessionManager owns its lifecycle (connect, pre-emptive refresh, forced
reconnect, teardown) and is passed explicitly to every component that
needs to reconnect.
"""

import asyncio
import logging
from datetime import datetime, timedelta, UTC
from typing import Callable, Optional

from mailbox_migration.core.exceptions import ErrorKind, GatewayError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LIFETIME = timedelta(minutes=50)
DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)


class SessionManager:
    """
    Owns the authenticated gateway session.

    Reconnects are serialized by an asyncio lock and coalesced by a
    generation counter: a worker that observed generation N and asks for a
    reconnect does nothing if another worker already moved the session to
    N+1. In-flight calls of other workers are never cancelled; only their
    next attempt sees the new session.
    """

    def __init__(
        self,
        gateway,
        lifetime: timedelta = DEFAULT_SESSION_LIFETIME,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the session manager.

        Args:
            gateway: Directory gateway whose connection is managed
            lifetime: Lifetime of an authenticated session
            refresh_margin: How long before expiry the session is refreshed
            clock: Optional clock returning aware datetimes (tests)
        """
        self.gateway = gateway
        self.lifetime = lifetime
        self.refresh_margin = refresh_margin
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()
        self._connected_at: Optional[datetime] = None
        self._last_successful_connection: Optional[datetime] = None
        self._generation = 0
        self.reconnect_count = 0

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def connected(self) -> bool:
        return self._connected_at is not None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_successful_connection(self) -> Optional[datetime]:
        return self._last_successful_connection

    async def connect(self) -> None:
        """Establish the session if it is not already established."""
        async with self._lock:
            if self._connected_at is None:
                await self._open()

    async def reconnect(self, observed_generation: Optional[int] = None, reason: str = "") -> None:
        """
        Force a fresh session.

        Args:
            observed_generation: Generation the caller was using when it failed
            reason: Text logged with the reconnect

        Raises:
            GatewayError: Tagged TRANSIENT when the reconnect itself fails
        """
        async with self._lock:
            if observed_generation is not None and observed_generation != self._generation:
                logger.debug("Session already re-established by another worker")
                return

            logger.info(f"Reconnecting gateway session: {reason or 'forced refresh'}")
            if self._connected_at is not None:
                try:
                    await self.gateway.disconnect()
                except GatewayError as e:
                    logger.debug(f"Ignoring disconnect failure before reconnect: {e}")
                self._connected_at = None

            try:
                await self._open()
            except GatewayError as e:
                raise GatewayError(
                    f"Reconnect failed: {e.message}",
                    kind=ErrorKind.TRANSIENT,
                    operation="connect"
                ) from e
            self.reconnect_count += 1

    def needs_refresh(self) -> bool:
        """Return True when the session is absent or close to its lifetime."""
        if self._connected_at is None:
            return True
        age = self._clock() - self._connected_at
        return age >= self.lifetime - self.refresh_margin

    async def ensure_fresh(self) -> int:
        """
        Connect or pre-emptively refresh the session when needed.

        Returns:
            The session generation the caller should report on failure
        """
        if self.needs_refresh():
            if self._connected_at is None:
                await self.connect()
            else:
                await self.reconnect(self._generation, reason="session nearing its lifetime")
        return self._generation

    def record_success(self) -> None:
        """Record a successful remote call on the current session."""
        self._last_successful_connection = self._clock()

    async def close(self) -> None:
        """Tear the session down."""
        async with self._lock:
            if self._connected_at is None:
                return
            try:
                await self.gateway.disconnect()
            except GatewayError as e:
                logger.warning(f"Gateway disconnect failed: {e}")
            finally:
                self._connected_at = None

    async def _open(self) -> None:
        try:
            await self.gateway.connect()
        except GatewayError:
            raise
        except (OSError, asyncio.TimeoutError) as e:
            raise GatewayError(
                f"Gateway connection failed: {e}",
                kind=ErrorKind.TRANSIENT,
                operation="connect"
            ) from e

        now = self._clock()
        self._connected_at = now
        self._last_successful_connection = now
        self._generation += 1
        logger.debug(f"Gateway session established (generation {self._generation})")
