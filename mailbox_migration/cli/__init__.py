"""
Command-line interface for the Mailbox Migration Assistant.
"""

from mailbox_migration.cli.main import main

__all__ = ["main"]
