"""
Windowed parallel validation of mailboxes.

Identities are streamed from the input and processed in fixed-size
windows. Inside a window a fixed pool of worker tasks drains a bounded
queue; the window ends when every worker has finished, its results are
persisted, and only then is the next window read. Windows already on
disk from an interrupted run are reused.
"""

import asyncio
import logging
from dataclasses import dataclass
from itertools import islice
from pathlib import Path
from typing import Iterable, List, Optional

from mailbox_migration.core.exceptions import ConfigurationError, ValidationCancelledError
from mailbox_migration.execution.artifacts import ResultArtifactStore
from mailbox_migration.models.config import MAX_CONCURRENCY, ValidationDepth
from mailbox_migration.models.results import ValidationResult
from mailbox_migration.monitoring.progress import ProgressReporter
from mailbox_migration.validation.runner import CheckRunner

logger = logging.getLogger(__name__)

STAGE_NAME = "ValidatingMailboxes"


@dataclass
class ExecutorStats:
    """Counters of one validate_all call."""
    processed: int = 0
    windows_processed: int = 0
    windows_reused: int = 0
    crashed: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0


class BatchValidationExecutor:
    """
    Validates a stream of mailboxes window by window.
    """

    def __init__(
        self,
        runner: CheckRunner,
        store: ResultArtifactStore,
        depth: ValidationDepth = ValidationDepth.STANDARD,
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[asyncio.Event] = None
    ):
        """
        Initialize the executor.

        Args:
            runner: Check runner validating single mailboxes
            store: Artifact store receiving window and combined results
            depth: Validation depth passed to the runner
            progress: Progress reporter notified after every window
            cancel_event: When set, processing stops at the next window
                boundary
        """
        self.runner = runner
        self.store = store
        self.depth = depth
        self.progress = progress or ProgressReporter()
        self.cancel_event = cancel_event or asyncio.Event()
        self.stats = ExecutorStats()

    def cancel(self) -> None:
        """Request cancellation at the next window boundary."""
        self.cancel_event.set()

    async def validate_all(
        self,
        identities: Iterable[str],
        window_size: int = 100,
        concurrency: int = 5,
        total: Optional[int] = None
    ) -> Path:
        """
        Validate every identity and write the combined results file.

        Args:
            identities: Identity stream, consumed lazily
            window_size: Mailboxes per window
            concurrency: Worker tasks per window (1-20)
            total: Expected number of identities, for progress reporting

        Returns:
            Path of the combined results file

        Raises:
            ConfigurationError: If window size or concurrency are out of range
            ValidationCancelledError: If cancelled at a window boundary
        """
        if not 1 <= concurrency <= MAX_CONCURRENCY:
            raise ConfigurationError(f"Concurrency must be between 1 and {MAX_CONCURRENCY}, got {concurrency}")
        if window_size < 1:
            raise ConfigurationError(f"Window size must be at least 1, got {window_size}")

        self.stats = ExecutorStats()
        self._prepare_store(window_size)
        self.progress.start(STAGE_NAME, total or 0, message=f"depth {self.depth.value}")

        stream = iter(identities)
        index = 0
        while True:
            window = list(islice(stream, window_size))
            if not window:
                break

            if self.cancel_event.is_set():
                self.progress.cancel(f"Cancelled after {index} window(s)")
                raise ValidationCancelledError(
                    f"Validation cancelled after {index} completed window(s)",
                    windows_completed=index
                )

            persisted = self.store.load_window(index)
            if persisted is not None and [r.identity for r in persisted] == window:
                logger.info(f"Reusing persisted window {index} ({len(window)} mailboxes)")
                self.stats.windows_reused += 1
            else:
                results = await self._run_window(window, concurrency)
                self.store.save_window(index, results)
                self.stats.windows_processed += 1

            self.stats.processed += len(window)
            self.progress.update(self.stats.processed, message=f"window {index} done", window=index)
            index += 1

        path = self.store.combine(index)
        self.store.remove_windows()
        self.progress.complete(f"{self.stats.processed} mailboxes validated")
        return path

    def _prepare_store(self, window_size: int) -> None:
        manifest = {"window_size": window_size, "depth": self.depth.value}
        existing = self.store.load_manifest()
        if existing is not None and existing != manifest:
            logger.warning(
                f"Persisted windows were produced with {existing}; discarding them and validating again"
            )
            self.store.remove_windows()
        self.store.save_manifest(manifest)

    async def _run_window(self, window: List[str], concurrency: int) -> List[ValidationResult]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=concurrency)
        results: List[Optional[ValidationResult]] = [None] * len(window)

        async def worker():
            while True:
                item = await queue.get()
                try:
                    if item is None:
                        return
                    position, identity = item
                    results[position] = await self._validate_one(identity)
                finally:
                    queue.task_done()

        workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, len(window)))]
        try:
            for item in enumerate(window):
                await queue.put(item)
            for _ in workers:
                await queue.put(None)
            await queue.join()
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        return results

    async def _validate_one(self, identity: str) -> ValidationResult:
        self.stats.in_flight += 1
        self.stats.peak_in_flight = max(self.stats.peak_in_flight, self.stats.in_flight)
        try:
            return await self.runner.validate_mailbox(identity, self.depth)
        except Exception as e:
            logger.error(f"Validation of {identity} crashed: {e}", exc_info=True)
            self.stats.crashed += 1
            return ValidationResult.synthetic_failure(identity, str(e))
        finally:
            self.stats.in_flight -= 1
