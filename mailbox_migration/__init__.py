"""
Mailbox Migration Assistant

Validates whether a set of mailboxes is ready to move into a managed cloud
tenant and submits a migration batch for the mailboxes that qualify.
"""

__version__ = "0.1.0"
__author__ = "Mailbox Migration Assistant Team"

from mailbox_migration.models.config import RunConfig
from mailbox_migration.models.results import OverallStatus, ValidationResult
from mailbox_migration.models.state import MigrationRunState, RunStage

__all__ = [
    "RunConfig",
    "OverallStatus",
    "ValidationResult",
    "MigrationRunState",
    "RunStage",
]
