"""
Execution of mailbox validation at scale.

This module contains the input reader, the windowed batch executor and
the artifact store holding persisted validation results.
"""

from mailbox_migration.execution.artifacts import ResultArtifactStore
from mailbox_migration.execution.batch_executor import BatchValidationExecutor, ExecutorStats
from mailbox_migration.execution.input_reader import MailboxInputReader

__all__ = [
    "ResultArtifactStore",
    "BatchValidationExecutor",
    "ExecutorStats",
    "MailboxInputReader",
]
