"""
Pytest configuration and fixtures for the Mailbox Migration Assistant tests.

This module provides an in-memory tenant, a gateway serving it, and a
retry executor whose sleeps are recorded instead of awaited.
"""

import copy
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

from mailbox_migration.core.retry import RetryConfig, RetryExecutor
from mailbox_migration.core.session import SessionManager
from mailbox_migration.gateway.memory import InMemoryDirectoryGateway
from mailbox_migration.models.config import RunConfig


def build_mailbox(identity: str, **overrides: Any) -> Dict[str, Any]:
    """A licensed user mailbox record with no findings."""
    record = {
        "identity": identity,
        "display_name": identity.split("@")[0].title(),
        "primary_smtp_address": identity,
        "user_principal_name": identity,
        "recipient_type_details": "UserMailbox",
        "email_addresses": [f"SMTP:{identity}"],
        "archive_status": "None",
        "audit_enabled": True,
        "statistics": {"total_item_size_mb": 1024.0, "item_count": 5000},
        "licenses": [{"sku": "ENTERPRISEPACK", "service_plans": ["EXCHANGE_S_ENTERPRISE", "TEAMS1"]}],
        "permissions": [
            {"trustee": "NT AUTHORITY\\SELF", "right": "FullAccess", "is_inherited": False},
        ],
        "folders": [
            {"folder_path": "/Inbox", "folder_type": "Inbox", "item_count": 4000, "largest_item_size_mb": 12.0},
            {"folder_path": "/Calendar", "folder_type": "Calendar", "item_count": 800, "largest_item_size_mb": 2.0},
            {"folder_path": "/Contacts", "folder_type": "Contacts", "item_count": 200, "largest_item_size_mb": 0.1},
        ],
        "groups": [{"name": "All Staff", "is_nested": False}],
    }
    record.update(overrides)
    return record


@pytest.fixture
def make_mailbox() -> Callable[..., Dict[str, Any]]:
    """Factory for mailbox records."""
    return build_mailbox


@pytest.fixture
def snapshot() -> Dict[str, Any]:
    """Tenant with three clean mailboxes and one migration endpoint."""
    return {
        "accepted_domains": ["contoso.com", "contoso.onmicrosoft.com"],
        "migration_endpoints": {"OnPremEndpoint": {"remote_server": "mail.contoso.com"}},
        "mailboxes": [
            build_mailbox("alice@contoso.com"),
            build_mailbox("bob@contoso.com"),
            build_mailbox("carol@contoso.com"),
        ],
    }


@pytest.fixture
def gateway(snapshot) -> InMemoryDirectoryGateway:
    """In-memory gateway serving the snapshot."""
    return InMemoryDirectoryGateway({"snapshot": copy.deepcopy(snapshot)})


@pytest.fixture
def sleeps() -> List[float]:
    """Delays passed to the recording sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Awaitable sleep that records the delay and returns immediately."""
    async def sleep(delay: float) -> None:
        sleeps.append(delay)
    return sleep


@pytest.fixture
def session(gateway) -> SessionManager:
    return SessionManager(gateway)


@pytest.fixture
def executor(session, fake_sleep) -> RetryExecutor:
    """Retry executor with three attempts and recorded backoff."""
    return RetryExecutor(session=session, config=RetryConfig(max_retries=3, base_delay=1.0), sleep=fake_sleep)


@pytest.fixture
def write_input(tmp_path) -> Callable[..., Path]:
    """Write a mailbox input file and return its path."""
    def write(identities: List[str], column: str = "EmailAddress", delimiter: str = ",",
              name: str = "mailboxes.csv") -> Path:
        path = tmp_path / name
        lines = [delimiter.join([column, "Department"])]
        lines.extend(delimiter.join([identity, "Sales"]) for identity in identities)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path
    return write


@pytest.fixture
def run_config(tmp_path, snapshot) -> RunConfig:
    """Run configuration using the in-memory gateway and tmp_path for output."""
    return RunConfig.model_validate({
        "validation": {"depth": "comprehensive", "concurrency": 2, "window_size": 2},
        "retry": {"max_retries": 3, "base_delay": 0.0},
        "batch": {
            "name": "Wave1",
            "source_endpoint": "OnPremEndpoint",
            "target_delivery_domain": "contoso.onmicrosoft.com",
            "poll_timeout_seconds": 10,
            "poll_interval_seconds": 1,
        },
        "output": {"work_dir": str(tmp_path / "run")},
        "gateway": {"type": "memory", "options": {"snapshot": copy.deepcopy(snapshot)}},
    })
