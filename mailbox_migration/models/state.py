"""
Run state models for the Mailbox Migration Assistant.

MigrationRunState is the checkpoint persisted after every stage
transition. It is schema-versioned: older payloads are migrated on load,
unknown fields are ignored and missing ones take their defaults.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from mailbox_migration.core.exceptions import InvalidTransitionError

STATE_SCHEMA_VERSION = 2


class RunStage(str, Enum):
    """Stages of a migration run."""
    INITIALIZING = "Initializing"
    CHECKING_DEPENDENCIES = "CheckingDependencies"
    CONNECTING_SERVICES = "ConnectingServices"
    VALIDATING_MAILBOXES = "ValidatingMailboxes"
    GENERATING_REPORT = "GeneratingReport"
    PREPARE_FOR_BATCH_CREATION = "PrepareForBatchCreation"
    CREATING_BATCH = "CreatingBatch"
    COMPLETED = "Completed"
    FAILED = "Failed"


STAGE_ORDER: List[RunStage] = [
    RunStage.INITIALIZING,
    RunStage.CHECKING_DEPENDENCIES,
    RunStage.CONNECTING_SERVICES,
    RunStage.VALIDATING_MAILBOXES,
    RunStage.GENERATING_REPORT,
    RunStage.PREPARE_FOR_BATCH_CREATION,
    RunStage.CREATING_BATCH,
    RunStage.COMPLETED,
]

TERMINAL_STAGES = frozenset({RunStage.COMPLETED, RunStage.FAILED})


def stage_index(stage: RunStage) -> int:
    """Position of a non-failed stage in the fixed total order."""
    return STAGE_ORDER.index(stage)


def next_stage(stage: RunStage) -> RunStage:
    """The stage that follows ``stage`` in the fixed order."""
    return STAGE_ORDER[stage_index(stage) + 1]


class MigrationRunState(BaseModel):
    """Persisted progress of one migration run."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = STATE_SCHEMA_VERSION
    run_id: str
    batch_name: Optional[str] = None
    source_file_path: str
    current_stage: RunStage = RunStage.INITIALIZING
    failed_stage: Optional[RunStage] = None
    error: Optional[str] = None
    dry_run: bool = False

    total_mailboxes: int = 0
    ready_list: List[str] = Field(default_factory=list)
    warning_list: List[str] = Field(default_factory=list)
    failed_list: List[str] = Field(default_factory=list)
    validation_complete: bool = False
    validation_results_location: Optional[str] = None
    report_location: Optional[str] = None

    inclusion_policy: Optional[str] = None
    selected_identities: List[str] = Field(default_factory=list)
    batch_id: Optional[str] = None
    batch_outcome: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: Optional[datetime] = None
    stage_history: Dict[str, datetime] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.current_stage in TERMINAL_STAGES

    def last_active_stage(self) -> RunStage:
        """The last non-terminal stage the run reached."""
        if self.current_stage == RunStage.FAILED:
            return self.failed_stage or RunStage.INITIALIZING
        return self.current_stage

    def advance_to(self, stage: RunStage) -> None:
        """
        Move the run forward to ``stage``.

        Raises:
            InvalidTransitionError: If the move is not strictly forward
        """
        if stage == RunStage.FAILED or self.current_stage in TERMINAL_STAGES:
            raise InvalidTransitionError(
                f"Cannot move from {self.current_stage.value} to {stage.value}"
            )
        if stage_index(stage) <= stage_index(self.current_stage):
            raise InvalidTransitionError(
                f"Stage {stage.value} does not follow {self.current_stage.value}"
            )

        now = datetime.now(UTC)
        self.current_stage = stage
        self.stage_history[stage.value] = now
        self.updated_at = now
        if stage == RunStage.COMPLETED:
            self.completed_at = now

    def mark_failed(self, stage: RunStage, error: str) -> None:
        """Halt the run in the terminal Failed stage."""
        now = datetime.now(UTC)
        self.current_stage = RunStage.FAILED
        self.failed_stage = stage
        self.error = error
        self.stage_history[RunStage.FAILED.value] = now
        self.updated_at = now

    def reenter(self, stage: RunStage) -> None:
        """Position a resumed run at ``stage``; only the resume path calls this."""
        self.current_stage = stage
        self.failed_stage = None
        self.error = None
        self.updated_at = datetime.now(UTC)


LEGACY_FIELD_NAMES = {
    "stage": "current_stage",
    "source_file": "source_file_path",
    "results_path": "validation_results_location",
    "ready_mailboxes": "ready_list",
    "warning_mailboxes": "warning_list",
    "failed_mailboxes": "failed_list",
}


def migrate_state_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upgrade a raw state payload to the current schema version.

    Args:
        data: Decoded JSON document

    Returns:
        Payload ready for ``MigrationRunState.model_validate``
    """
    payload = dict(data)
    version = payload.get("schema_version", 1)

    if version < 2:
        for old_name, new_name in LEGACY_FIELD_NAMES.items():
            if old_name in payload and new_name not in payload:
                payload[new_name] = payload.pop(old_name)
        if "validation_complete" not in payload:
            payload["validation_complete"] = bool(payload.get("validation_results_location"))

    payload["schema_version"] = STATE_SCHEMA_VERSION
    return payload
