"""
Monitoring module for the Mailbox Migration Assistant.

This module provides progress reporting for long-running stages and the
readiness report generator.
"""

from mailbox_migration.monitoring.progress import (
    ProgressEvent,
    ProgressEventType,
    ProgressReporter,
)
from mailbox_migration.monitoring.report_generator import (
    ReadinessReport,
    ReadinessReportGenerator,
)

__all__ = [
    "ProgressEvent",
    "ProgressEventType",
    "ProgressReporter",
    "ReadinessReport",
    "ReadinessReportGenerator",
]
