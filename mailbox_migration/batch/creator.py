"""
Migration batch submission.

Submits the selected mailboxes either as one bulk batch or as an empty
batch filled one mailbox at a time with individual bad-item limits, then
polls the service until the batch leaves its initial status.

Batch creation is not idempotent on the remote side: a second create
with the same name is a conflict. The creator therefore looks the batch
up before submitting and again before any retried submission or after
the session was re-established. The batch ID is reported to the caller
as soon as the batch exists remotely, so a later run can adopt it. An
adopted per-mailbox batch that was never started gets its missing
mailboxes added and is then started.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from mailbox_migration.core.exceptions import (
    BatchAlreadyExistsError,
    BatchCreationError,
    GatewayError,
    MailboxMigrationError,
)
from mailbox_migration.core.retry import RetryExecutor
from mailbox_migration.gateway.base import DirectoryGateway
from mailbox_migration.models.batch import (
    BatchCreationOutcome,
    BatchOutcomeStatus,
    BatchStrategy,
    MigrationBatchDescriptor,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 600.0
DEFAULT_POLL_INTERVAL = 5.0

# Statuses of a batch the service has not started
CREATION_STATUSES = ("Created", "Stopped")


def _error_text(error: BaseException) -> str:
    return error.message if isinstance(error, MailboxMigrationError) else str(error)


class BatchCreator:
    """
    Submits migration batches through the retry executor.
    """

    def __init__(
        self,
        gateway: DirectoryGateway,
        executor: RetryExecutor,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the batch creator.

        Args:
            gateway: Directory gateway
            executor: Retry executor (its session manager, if any, is used
                to detect re-established sessions)
            poll_timeout: Seconds to wait for the batch to leave its
                initial status
            poll_interval: Seconds between status polls
            sleep: Awaitable sleep function, replaceable in tests
            clock: Monotonic clock, replaceable in tests
        """
        self.gateway = gateway
        self.executor = executor
        self.poll_timeout = poll_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._on_submitted: Optional[Callable[[str], None]] = None

    async def create(
        self,
        descriptor: MigrationBatchDescriptor,
        strategy: BatchStrategy = BatchStrategy.BULK,
        known_batch_id: Optional[str] = None,
        on_submitted: Optional[Callable[[str], None]] = None
    ) -> BatchCreationOutcome:
        """
        Submit a batch for the descriptor's mailboxes.

        Args:
            descriptor: Batch to submit
            strategy: Bulk or per-mailbox submission
            known_batch_id: Batch ID recorded by an earlier attempt of the
                same run; a remote batch with this ID is adopted
            on_submitted: Called with the batch ID as soon as the batch
                exists remotely, before mailboxes are added, started or
                polled

        Returns:
            What was submitted and whether the service confirmed it

        Raises:
            BatchAlreadyExistsError: If another batch already uses the name
            BatchCreationError: If no mailbox could be submitted
        """
        if not descriptor.mailboxes:
            logger.info(f"No eligible mailboxes; batch {descriptor.name} is not created")
            return BatchCreationOutcome(
                status=BatchOutcomeStatus.NOTHING_ELIGIBLE,
                batch_name=descriptor.name,
                strategy=strategy,
            )

        existing = await self.find_batch(descriptor.name)
        if existing is not None:
            if known_batch_id and existing.get("id") == known_batch_id:
                return await self._adopt(descriptor, strategy, existing)
            raise BatchAlreadyExistsError(
                f"A migration batch named '{descriptor.name}' already exists",
                details={"batch_id": existing.get("id"), "status": existing.get("status")}
            )

        self._on_submitted = on_submitted
        if strategy == BatchStrategy.PER_MAILBOX:
            return await self._create_per_mailbox(descriptor)
        return await self._create_bulk(descriptor)

    async def find_batch(self, name: str) -> Optional[Dict[str, Any]]:
        """Look a batch up by name; None when it does not exist."""
        try:
            return await self.executor.call(
                lambda: self.gateway.get_migration_batch(name),
                operation=f"get_migration_batch({name})"
            )
        except GatewayError as e:
            if e.is_not_found:
                return None
            raise

    def _session_generation(self) -> int:
        session = self.executor.session
        return session.generation if session is not None else 0

    async def _submit(self, descriptor: MigrationBatchDescriptor, auto_start: bool) -> Dict[str, Any]:
        checked_generation = self._session_generation()
        attempts = 0

        async def attempt():
            nonlocal checked_generation, attempts
            attempts += 1
            generation = self._session_generation()
            if attempts > 1 or generation != checked_generation:
                checked_generation = generation
                try:
                    existing = await self.gateway.get_migration_batch(descriptor.name)
                except GatewayError as e:
                    if not e.is_not_found:
                        raise
                else:
                    logger.warning(
                        f"Batch {descriptor.name} exists after an interrupted submission; adopting it"
                    )
                    return existing
            return await self.gateway.create_migration_batch(descriptor, auto_start=auto_start)

        return await self.executor.call(attempt, operation=f"create_migration_batch({descriptor.name})")

    def _notify_submitted(self, batch: Dict[str, Any]) -> None:
        if self._on_submitted is not None and batch.get("id"):
            self._on_submitted(batch["id"])

    async def _create_bulk(self, descriptor: MigrationBatchDescriptor) -> BatchCreationOutcome:
        logger.info(f"Submitting batch {descriptor.name} with {len(descriptor.mailboxes)} mailboxes")
        try:
            batch = await self._submit(descriptor, auto_start=True)
        except Exception as e:
            raise BatchCreationError(
                f"Batch {descriptor.name} could not be created: {_error_text(e)}",
                details={"failed": {m: _error_text(e) for m in descriptor.mailboxes}}
            ) from e
        self._notify_submitted(batch)

        outcome = BatchCreationOutcome(
            status=BatchOutcomeStatus.CREATED,
            batch_name=descriptor.name,
            batch_id=batch.get("id"),
            strategy=BatchStrategy.BULK,
            submitted=list(descriptor.mailboxes),
        )
        await self._confirm(outcome, batch.get("status"))
        return outcome

    async def _create_per_mailbox(self, descriptor: MigrationBatchDescriptor) -> BatchCreationOutcome:
        name = descriptor.name
        logger.info(f"Creating batch {name} and adding {len(descriptor.mailboxes)} mailboxes individually")

        try:
            batch = await self._submit(descriptor.model_copy(update={"mailboxes": []}), auto_start=False)
        except Exception as e:
            raise BatchCreationError(f"Batch {name} could not be created: {_error_text(e)}") from e
        self._notify_submitted(batch)

        return await self._fill_and_start(descriptor, batch)

    async def _adopt(
        self,
        descriptor: MigrationBatchDescriptor,
        strategy: BatchStrategy,
        existing: Dict[str, Any]
    ) -> BatchCreationOutcome:
        name = descriptor.name
        status = existing.get("status")
        logger.info(f"Batch {name} ({existing.get('id')}) was already submitted; adopting it")

        if strategy == BatchStrategy.PER_MAILBOX and status == "Created":
            members = {m.lower() for m in existing.get("mailboxes", [])}
            logger.info(f"Batch {name} was never started; adding the missing mailboxes")
            return await self._fill_and_start(descriptor, existing, present=members, adopted=True)

        outcome = BatchCreationOutcome(
            status=BatchOutcomeStatus.CREATED,
            batch_name=name,
            batch_id=existing.get("id"),
            strategy=strategy,
            submitted=list(descriptor.mailboxes),
            adopted=True,
        )
        if status is not None and status not in CREATION_STATUSES:
            outcome.confirmed = True
            outcome.final_status = status
            logger.info(f"Batch {name} is already {status}")
            return outcome
        await self._confirm(outcome, status)
        return outcome

    async def _fill_and_start(
        self,
        descriptor: MigrationBatchDescriptor,
        batch: Dict[str, Any],
        present: Optional[Set[str]] = None,
        adopted: bool = False
    ) -> BatchCreationOutcome:
        """Add the mailboxes not yet in ``batch`` one at a time, then start it."""
        name = descriptor.name
        overrides = descriptor.tolerance_overrides or {}
        present = present or set()

        submitted: List[str] = []
        failed: Dict[str, str] = {}
        for identity in descriptor.mailboxes:
            if identity.lower() in present:
                submitted.append(identity)
                continue
            limit = overrides.get(identity)
            try:
                await self.executor.call(
                    lambda identity=identity, limit=limit: self.gateway.add_mailbox_to_batch(name, identity, limit),
                    operation=f"add_mailbox_to_batch({identity})"
                )
            except Exception as e:
                logger.warning(f"Could not add {identity} to batch {name}: {_error_text(e)}")
                failed[identity] = _error_text(e)
            else:
                submitted.append(identity)

        if not submitted:
            raise BatchCreationError(
                f"No mailbox could be added to batch {name}",
                details={"failed": failed}
            )

        try:
            await self.executor.call(
                lambda: self.gateway.start_migration_batch(name),
                operation=f"start_migration_batch({name})"
            )
        except Exception as e:
            raise BatchCreationError(
                f"Batch {name} was filled but could not be started: {_error_text(e)}",
                details={"submitted": submitted, "failed": failed}
            ) from e

        outcome = BatchCreationOutcome(
            status=BatchOutcomeStatus.CREATED,
            batch_name=name,
            batch_id=batch.get("id"),
            strategy=BatchStrategy.PER_MAILBOX,
            submitted=submitted,
            failed=failed,
            adopted=adopted,
        )
        await self._confirm(outcome, batch.get("status"))
        return outcome

    async def _confirm(self, outcome: BatchCreationOutcome, initial_status: Optional[str]) -> None:
        """Poll until the batch leaves ``initial_status`` or the timeout expires."""
        name = outcome.batch_name
        deadline = self._clock() + self.poll_timeout
        status = initial_status

        while True:
            try:
                status = await self.executor.call(
                    lambda: self.gateway.get_migration_batch_status(name),
                    operation=f"get_migration_batch_status({name})"
                )
            except Exception as e:
                logger.warning(f"Status poll for batch {name} failed: {_error_text(e)}")

            if initial_status is None:
                initial_status = status
            elif status != initial_status:
                outcome.confirmed = True
                outcome.final_status = status
                logger.info(f"Batch {name} is now {status}")
                return

            if self._clock() >= deadline:
                outcome.final_status = status
                outcome.confirmation_warning = (
                    f"Batch {name} did not leave status '{initial_status}' within {self.poll_timeout:.0f}s"
                )
                logger.warning(outcome.confirmation_warning)
                return

            await self._sleep(self.poll_interval)
