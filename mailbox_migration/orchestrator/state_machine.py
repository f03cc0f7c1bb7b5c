"""
Checkpointed run state machine.

Drives a run through the fixed stage order, persisting the state after
every transition. A failure halts the run in ``Failed`` with the stage it
failed in, so the run can be resumed from exactly that stage.
"""

import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from mailbox_migration.core.exceptions import (
    InvalidTransitionError,
    MailboxMigrationError,
    StageExecutionError,
)
from mailbox_migration.models.state import (
    MigrationRunState,
    RunStage,
    next_stage,
    stage_index,
)
from mailbox_migration.orchestrator.state_store import RunStateStore
from mailbox_migration.utils.logging import RunLogger

logger = logging.getLogger(__name__)

StageHandler = Callable[[MigrationRunState], Awaitable[Optional[RunStage]]]


class RunStateMachine:
    """
    Executes stage handlers in order and checkpoints after each one.

    A handler may return the stage to move to; only the default successor
    is accepted, except that ``PrepareForBatchCreation`` may end a dry run
    in ``Completed``.
    """

    def __init__(
        self,
        store: RunStateStore,
        handlers: Dict[RunStage, StageHandler],
        run_logger: Optional[RunLogger] = None
    ):
        """
        Initialize the state machine.

        Args:
            store: Store the state is persisted to
            handlers: Handler per non-terminal stage
            run_logger: Logger tagging records with the run and stage
        """
        self.store = store
        self.handlers = handlers
        self.run_logger = run_logger

    @staticmethod
    def validation_can_be_skipped(state: MigrationRunState) -> bool:
        """Validation is reused only when marked complete and its results still exist."""
        return bool(
            state.validation_complete
            and state.validation_results_location
            and Path(state.validation_results_location).is_file()
        )

    def resume_stage(self, state: MigrationRunState) -> RunStage:
        """
        The stage a resumed run re-enters.

        The last non-terminal stage, forced back to ValidatingMailboxes when
        a later stage would need validation results that are not available.
        """
        stage = state.last_active_stage()
        if stage == RunStage.COMPLETED:
            return stage
        if (stage_index(stage) > stage_index(RunStage.VALIDATING_MAILBOXES)
                and not self.validation_can_be_skipped(state)):
            logger.warning(
                f"Run {state.run_id} reached {stage.value} but its validation results are "
                f"unavailable; validating again"
            )
            stage = RunStage.VALIDATING_MAILBOXES
        return stage

    def prepare_resume(self, state: MigrationRunState) -> MigrationRunState:
        """Position a loaded state at its resume stage and persist it."""
        stage = self.resume_stage(state)
        if stage == RunStage.COMPLETED:
            return state
        if stage == RunStage.VALIDATING_MAILBOXES and not self.validation_can_be_skipped(state):
            state.validation_complete = False
        state.reenter(stage)
        self.store.save(state)
        logger.info(f"Resuming run {state.run_id} at {stage.value}")
        return state

    async def run(self, state: MigrationRunState) -> MigrationRunState:
        """
        Execute stages until the run completes.

        Returns:
            The completed state

        Raises:
            StageExecutionError: If a stage fails; the Failed state has been
                persisted before this is raised
        """
        self.store.save(state)

        while not state.is_terminal:
            stage = state.current_stage
            started = time.monotonic()
            try:
                target = await self._execute(stage, state)
                self._check_target(state, stage, target)
                if self.run_logger:
                    self.run_logger.step_complete(stage.value, time.monotonic() - started)
                state.advance_to(target)
                self.store.save(state)
            except Exception as e:
                message = e.message if isinstance(e, MailboxMigrationError) else str(e)
                if self.run_logger:
                    self.run_logger.step_failed(stage.value, message)
                state.mark_failed(stage, message)
                self.store.save(state)
                raise StageExecutionError(
                    f"Stage {stage.value} failed: {message}",
                    stage=stage.value,
                    code=getattr(e, "code", None),
                    details={"error_type": type(e).__name__}
                ) from e

        return state

    async def _execute(self, stage: RunStage, state: MigrationRunState) -> RunStage:
        if stage == RunStage.VALIDATING_MAILBOXES and self.validation_can_be_skipped(state):
            if self.run_logger:
                self.run_logger.step_skipped(stage.value, "validation results already available")
            return next_stage(stage)

        handler = self.handlers.get(stage)
        if handler is None:
            raise InvalidTransitionError(f"No handler registered for stage {stage.value}")

        if self.run_logger:
            self.run_logger.step_start(stage.value)
        target = await handler(state)
        return target or next_stage(stage)

    @staticmethod
    def _check_target(state: MigrationRunState, stage: RunStage, target: RunStage) -> None:
        if target == next_stage(stage):
            return
        if (target == RunStage.COMPLETED
                and stage == RunStage.PREPARE_FOR_BATCH_CREATION
                and state.dry_run):
            return
        raise InvalidTransitionError(f"Stage {stage.value} cannot move to {target.value}")
