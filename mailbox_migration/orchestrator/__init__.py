"""
Run orchestration: state persistence, the stage state machine and the
orchestrator wiring the stages together.
"""

from mailbox_migration.orchestrator.orchestrator import MailboxMigrationOrchestrator
from mailbox_migration.orchestrator.state_machine import RunStateMachine
from mailbox_migration.orchestrator.state_store import RunStateStore

__all__ = [
    "MailboxMigrationOrchestrator",
    "RunStateMachine",
    "RunStateStore",
]
