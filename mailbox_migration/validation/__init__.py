"""
Mailbox readiness validation.

This module contains the check registry, the built-in readiness checks
and the runner that applies them to one mailbox.
"""

from mailbox_migration.validation.registry import (
    BUILTIN_CHECKS,
    CheckContext,
    CheckDescriptor,
    CheckRegistry,
    default_registry,
)
from mailbox_migration.validation import checks  # noqa: F401
from mailbox_migration.validation.runner import CheckRunner

__all__ = [
    "BUILTIN_CHECKS",
    "CheckContext",
    "CheckDescriptor",
    "CheckRegistry",
    "default_registry",
    "CheckRunner",
]
