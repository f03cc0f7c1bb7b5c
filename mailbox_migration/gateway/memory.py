"""
In-memory directory gateway.

Serves a tenant snapshot loaded from a YAML/JSON file or a dictionary.
Used for rehearsal runs against an exported directory and as the gateway
in tests; failures can be scripted per operation and per identity.
"""

import asyncio
import copy
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from mailbox_migration.core.exceptions import ConfigurationError, ErrorKind, GatewayError
from mailbox_migration.gateway.base import DirectoryGateway
from mailbox_migration.gateway.factory import register_gateway
from mailbox_migration.models.batch import MigrationBatchDescriptor
from mailbox_migration.utils.helpers import load_config_file

logger = logging.getLogger(__name__)

MAILBOX_SUB_RECORDS = ("statistics", "permissions", "folders", "groups", "licenses", "move_request")


def load_snapshot(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a tenant snapshot file.

    Raises:
        ConfigurationError: If the file is missing or not a mapping
    """
    try:
        data = load_config_file(file_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load tenant snapshot {file_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Tenant snapshot {file_path} must contain a mapping")
    return data


@register_gateway("memory")
class InMemoryDirectoryGateway(DirectoryGateway):
    """
    Gateway backed by an in-memory tenant snapshot.

    Snapshot layout::

        accepted_domains: [contoso.com]
        migration_endpoints:
          OnPremEndpoint: {remote_server: mail.contoso.com}
        missing_prerequisites: []
        mailboxes:
          - identity: alice@contoso.com
            primary_smtp_address: alice@contoso.com
            statistics: {total_item_size_mb: 1024, item_count: 5000}
            licenses: [{sku: ENTERPRISEPACK, service_plans: [EXCHANGE_S_ENTERPRISE]}]
            move_request: {status: InProgress}
        batches: []
    """

    SUPPORTED_OPTIONS = ["snapshot", "latency", "require_connection", "batch_status_sequence"]

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        snapshot = self.config.get("snapshot") or {}
        if isinstance(snapshot, (str, Path)):
            snapshot = load_snapshot(snapshot)

        self.latency = float(self.config.get("latency", 0.0))
        self.require_connection = bool(self.config.get("require_connection", True))
        self.batch_status_sequence: List[str] = list(
            self.config.get("batch_status_sequence", ["Syncing"])
        )

        self.connected = False
        self.session_valid = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self._failures: Dict[Tuple[str, Optional[str]], List[BaseException]] = {}

        self._load(copy.deepcopy(snapshot))

    def _load(self, snapshot: Dict[str, Any]) -> None:
        self.accepted_domains: List[str] = [d.lower() for d in snapshot.get("accepted_domains", [])]
        self.migration_endpoints: Dict[str, Dict[str, Any]] = dict(snapshot.get("migration_endpoints", {}))
        self.missing_prerequisites: List[str] = list(snapshot.get("missing_prerequisites", []))
        self.mailboxes: Dict[str, Dict[str, Any]] = {}
        for record in snapshot.get("mailboxes", []):
            self.add_mailbox(record)

        self.batches: Dict[str, Dict[str, Any]] = {}
        self.batch_members: Dict[str, Dict[str, Optional[int]]] = {}
        for batch in snapshot.get("batches", []):
            name = batch["name"]
            self.batches[name] = {
                "name": name,
                "id": batch.get("id") or f"batch-{uuid.uuid4().hex[:8]}",
                "status": batch.get("status", "Syncing"),
            }
            self.batch_members[name] = {m: None for m in batch.get("mailboxes", [])}
        self._started: Dict[str, bool] = {name: True for name in self.batches}
        self._pending_statuses: Dict[str, List[str]] = {name: [] for name in self.batches}

    def add_mailbox(self, record: Dict[str, Any]) -> None:
        """Add a mailbox record to the snapshot."""
        identity = record["identity"]
        record.setdefault("primary_smtp_address", identity)
        self.mailboxes[identity.lower()] = record

    def inject_failure(
        self,
        operation: str,
        error: BaseException,
        identity: Optional[str] = None,
        times: int = 1
    ) -> None:
        """
        Make the next ``times`` calls of ``operation`` raise ``error``.

        Args:
            operation: Gateway method name, e.g. ``get_mailbox_statistics``
            error: Exception to raise
            identity: Restrict the failure to one mailbox or batch name
            times: Number of calls that fail
        """
        key = (operation, identity.lower() if identity else None)
        self._failures.setdefault(key, []).extend([error] * times)

    def expire_session(self) -> None:
        """Invalidate the current session; the next call fails with AUTH."""
        self.session_valid = False

    def call_count(self, operation: str, identity: Optional[str] = None) -> int:
        key = identity.lower() if identity else None
        return sum(
            1 for op, target in self.calls
            if op == operation and (key is None or target == key)
        )

    async def _enter(self, operation: str, target: Optional[str] = None) -> None:
        key = target.lower() if target else None
        self.calls.append((operation, key))

        if self.require_connection and operation != "connect" and not self.session_valid:
            raise GatewayError(
                f"Session expired: access token is no longer valid ({operation})",
                kind=ErrorKind.AUTH,
                operation=operation
            )

        for failure_key in ((operation, key), (operation, None)):
            queue = self._failures.get(failure_key)
            if queue:
                raise queue.pop(0)

        if self.latency:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                await asyncio.sleep(self.latency)
            finally:
                self.in_flight -= 1

    def _mailbox(self, identity: str, operation: str) -> Dict[str, Any]:
        record = self.mailboxes.get(identity.lower())
        if record is None:
            raise GatewayError(
                f"Mailbox '{identity}' couldn't be found",
                kind=ErrorKind.NOT_FOUND,
                operation=operation
            )
        return record

    def _batch(self, name: str, operation: str) -> Dict[str, Any]:
        batch = self.batches.get(name)
        if batch is None:
            raise GatewayError(
                f"Migration batch '{name}' couldn't be found",
                kind=ErrorKind.NOT_FOUND,
                operation=operation
            )
        return batch

    # Session

    async def connect(self) -> None:
        await self._enter("connect")
        self.connected = True
        self.session_valid = True
        self.connect_count += 1
        logger.debug(f"Connected to in-memory tenant ({len(self.mailboxes)} mailboxes)")

    async def disconnect(self) -> None:
        self.connected = False
        self.session_valid = False
        self.disconnect_count += 1

    async def check_prerequisites(self) -> List[str]:
        return list(self.missing_prerequisites)

    # Directory reads

    async def get_mailbox(self, identity: str) -> Dict[str, Any]:
        await self._enter("get_mailbox", identity)
        record = self._mailbox(identity, "get_mailbox")
        return {k: copy.deepcopy(v) for k, v in record.items() if k not in MAILBOX_SUB_RECORDS}

    async def get_mailbox_statistics(self, identity: str) -> Dict[str, Any]:
        await self._enter("get_mailbox_statistics", identity)
        return dict(self._mailbox(identity, "get_mailbox_statistics").get("statistics", {}))

    async def get_mailbox_permissions(self, identity: str) -> List[Dict[str, Any]]:
        await self._enter("get_mailbox_permissions", identity)
        return copy.deepcopy(self._mailbox(identity, "get_mailbox_permissions").get("permissions", []))

    async def get_folder_statistics(self, identity: str) -> List[Dict[str, Any]]:
        await self._enter("get_folder_statistics", identity)
        return copy.deepcopy(self._mailbox(identity, "get_folder_statistics").get("folders", []))

    async def get_group_memberships(self, identity: str) -> List[Dict[str, Any]]:
        await self._enter("get_group_memberships", identity)
        return copy.deepcopy(self._mailbox(identity, "get_group_memberships").get("groups", []))

    async def get_move_request(self, identity: str) -> Dict[str, Any]:
        await self._enter("get_move_request", identity)
        move_request = self._mailbox(identity, "get_move_request").get("move_request")
        if not move_request:
            raise GatewayError(
                f"No move request exists for '{identity}'",
                kind=ErrorKind.NOT_FOUND,
                operation="get_move_request"
            )
        return dict(move_request)

    async def get_license_details(self, identity: str) -> List[Dict[str, Any]]:
        await self._enter("get_license_details", identity)
        return copy.deepcopy(self._mailbox(identity, "get_license_details").get("licenses", []))

    async def get_accepted_domains(self) -> List[str]:
        await self._enter("get_accepted_domains")
        return list(self.accepted_domains)

    # Migration service

    async def get_migration_endpoint(self, name: str) -> Dict[str, Any]:
        await self._enter("get_migration_endpoint", name)
        endpoint = self.migration_endpoints.get(name)
        if endpoint is None:
            raise GatewayError(
                f"Migration endpoint '{name}' couldn't be found",
                kind=ErrorKind.NOT_FOUND,
                operation="get_migration_endpoint"
            )
        return {"name": name, **endpoint}

    async def set_migration_endpoint(self, name: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("set_migration_endpoint", name)
        self.migration_endpoints[name] = {**self.migration_endpoints.get(name, {}), **settings}
        return {"name": name, **self.migration_endpoints[name]}

    async def get_migration_batch(self, name: str) -> Dict[str, Any]:
        await self._enter("get_migration_batch", name)
        return {**self._batch(name, "get_migration_batch"), "mailboxes": list(self.batch_members[name])}

    async def create_migration_batch(
        self,
        descriptor: MigrationBatchDescriptor,
        auto_start: bool = True
    ) -> Dict[str, Any]:
        await self._enter("create_migration_batch", descriptor.name)

        if descriptor.name in self.batches:
            raise GatewayError(
                f"A migration batch named '{descriptor.name}' already exists",
                kind=ErrorKind.UNKNOWN,
                operation="create_migration_batch",
                code="BatchAlreadyExists"
            )
        if descriptor.source_endpoint not in self.migration_endpoints:
            raise GatewayError(
                f"Migration endpoint '{descriptor.source_endpoint}' couldn't be found",
                kind=ErrorKind.UNKNOWN,
                operation="create_migration_batch"
            )
        unknown = [m for m in descriptor.mailboxes if m.lower() not in self.mailboxes]
        if unknown:
            raise GatewayError(
                f"Mailboxes not found in the source directory: {', '.join(unknown)}",
                kind=ErrorKind.UNKNOWN,
                operation="create_migration_batch"
            )

        overrides = descriptor.tolerance_overrides or {}
        batch = {
            "name": descriptor.name,
            "id": f"batch-{uuid.uuid4().hex[:12]}",
            "status": "Created",
        }
        self.batches[descriptor.name] = batch
        self.batch_members[descriptor.name] = {m: overrides.get(m) for m in descriptor.mailboxes}
        self._started[descriptor.name] = False
        self._pending_statuses[descriptor.name] = []
        if auto_start:
            self._start(descriptor.name)
        logger.debug(f"Created migration batch {descriptor.name} with {len(descriptor.mailboxes)} mailboxes")
        return dict(batch)

    def _start(self, name: str) -> None:
        self._started[name] = True
        self.batches[name]["status"] = "Starting"
        self._pending_statuses[name] = list(self.batch_status_sequence)

    async def start_migration_batch(self, name: str) -> None:
        await self._enter("start_migration_batch", name)
        self._batch(name, "start_migration_batch")
        if self._started.get(name):
            raise GatewayError(
                f"Migration batch '{name}' has already been started",
                kind=ErrorKind.UNKNOWN,
                operation="start_migration_batch"
            )
        self._start(name)

    async def add_mailbox_to_batch(
        self,
        batch_name: str,
        identity: str,
        bad_item_limit: Optional[int] = None
    ) -> None:
        await self._enter("add_mailbox_to_batch", identity)
        self._batch(batch_name, "add_mailbox_to_batch")
        self._mailbox(identity, "add_mailbox_to_batch")
        for name, members in self.batch_members.items():
            if identity in members:
                raise GatewayError(
                    f"Mailbox '{identity}' is already part of migration batch '{name}'",
                    kind=ErrorKind.UNKNOWN,
                    operation="add_mailbox_to_batch"
                )
        self.batch_members[batch_name][identity] = bad_item_limit

    async def get_migration_batch_status(self, name: str) -> str:
        await self._enter("get_migration_batch_status", name)
        batch = self._batch(name, "get_migration_batch_status")
        pending = self._pending_statuses.get(name)
        if self._started.get(name) and pending:
            batch["status"] = pending.pop(0)
        return batch["status"]
