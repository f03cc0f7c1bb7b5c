"""Data models: configuration, validation results, run state and batches."""

from mailbox_migration.models.batch import (
    BatchCreationOutcome,
    BatchOutcomeStatus,
    BatchStrategy,
    InclusionPolicy,
    MigrationBatchDescriptor,
    RiskLevel,
    ToleranceRecommendation,
)
from mailbox_migration.models.config import RunConfig, ValidationDepth, load_run_config
from mailbox_migration.models.results import OverallStatus, ValidationIssue, ValidationResult
from mailbox_migration.models.state import MigrationRunState, RunStage, STAGE_ORDER

__all__ = [
    "BatchCreationOutcome",
    "BatchOutcomeStatus",
    "BatchStrategy",
    "InclusionPolicy",
    "MigrationBatchDescriptor",
    "RiskLevel",
    "ToleranceRecommendation",
    "RunConfig",
    "ValidationDepth",
    "load_run_config",
    "OverallStatus",
    "ValidationIssue",
    "ValidationResult",
    "MigrationRunState",
    "RunStage",
    "STAGE_ORDER",
]
