"""
Utilities module for the Mailbox Migration Assistant.

This module contains utility functions and helper classes
used throughout the application.
"""

from mailbox_migration.utils.helpers import (
    generate_run_id,
    default_batch_name,
    load_config_file,
    merge_dicts,
    atomic_write_text,
    atomic_writer,
)
from mailbox_migration.utils.logging import (
    setup_logging,
    get_logger,
    RunLogger,
)

__all__ = [
    # Helper functions
    "generate_run_id",
    "default_batch_name",
    "load_config_file",
    "merge_dicts",
    "atomic_write_text",
    "atomic_writer",
    # Logging utilities
    "setup_logging",
    "get_logger",
    "RunLogger",
]
