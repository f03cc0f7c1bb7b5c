"""
Progress reporting for long-running run stages.

Stages report ``processed/total`` counts to a ProgressReporter, which
computes rate and ETA and forwards ProgressEvents to registered callbacks
(the CLI renders them with a Rich progress bar).
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ProgressEventType(str, Enum):
    """Types of progress events."""
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ProgressEvent:
    """Progress event data structure."""
    run_id: str
    stage: str
    event_type: ProgressEventType
    timestamp: datetime
    current: int
    total: int
    rate: Optional[float] = None  # mailboxes per second
    eta: Optional[int] = None  # seconds remaining
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(100.0, self.current / self.total * 100.0)


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """
    Tracks progress of one stage at a time and notifies callbacks.
    """

    def __init__(self, run_id: str = "", clock: Callable[[], float] = time.monotonic):
        self.run_id = run_id
        self._clock = clock
        self._callbacks: List[ProgressCallback] = []
        self._stage: Optional[str] = None
        self._total = 0
        self._current = 0
        self._baseline = 0
        self._started_at = 0.0

    def add_callback(self, callback: ProgressCallback):
        """Add a progress callback function."""
        self._callbacks.append(callback)

    @property
    def current(self) -> int:
        return self._current

    @property
    def total(self) -> int:
        return self._total

    def start(self, stage: str, total: int, current: int = 0, message: Optional[str] = None):
        """
        Start tracking a stage.

        Args:
            stage: Stage name
            total: Total number of mailboxes to process
            current: Mailboxes already processed (resumed runs)
            message: Optional descriptive message
        """
        self._stage = stage
        self._total = total
        self._current = current
        self._baseline = current
        self._started_at = self._clock()
        self._emit(ProgressEventType.STARTED, message)

    def update(self, current: int, message: Optional[str] = None, **metadata: Any):
        """Report the number of mailboxes processed so far."""
        self._current = current
        self._emit(ProgressEventType.PROGRESS, message, metadata)

    def complete(self, message: Optional[str] = None):
        self._current = self._total
        self._emit(ProgressEventType.COMPLETED, message)

    def fail(self, message: str):
        self._emit(ProgressEventType.FAILED, message)

    def cancel(self, message: Optional[str] = None):
        self._emit(ProgressEventType.CANCELLED, message)

    def _rate(self) -> Optional[float]:
        elapsed = self._clock() - self._started_at
        processed = self._current - self._baseline
        if elapsed <= 0 or processed <= 0:
            return None
        return processed / elapsed

    def _emit(
        self,
        event_type: ProgressEventType,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        rate = self._rate()
        eta = None
        if rate and self._total > self._current:
            eta = int((self._total - self._current) / rate)

        event = ProgressEvent(
            run_id=self.run_id,
            stage=self._stage or "",
            event_type=event_type,
            timestamp=datetime.now(UTC),
            current=self._current,
            total=self._total,
            rate=rate,
            eta=eta,
            message=message,
            metadata=metadata or {}
        )

        logger.info(
            f"{event.stage}: {event.current}/{event.total} processed"
            + (f" - {message}" if message else "")
        )

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")
