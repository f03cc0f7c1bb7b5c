"""
Base class for remote directory gateways.

A gateway is the only component that talks to the remote directory and
migration service. Every capability is async; failures are raised as
``GatewayError`` carrying an ``ErrorKind`` tag so callers can decide on
retry and reconnect without knowing the concrete backend.

Records are returned as plain dictionaries with these keys:

- mailbox: ``identity``, ``display_name``, ``primary_smtp_address``,
  ``user_principal_name``, ``recipient_type_details``, ``email_addresses``,
  ``hidden_from_address_lists``, ``archive_status``, ``is_inactive``,
  ``litigation_hold_enabled``, ``retention_hold_enabled``,
  ``in_place_holds``, ``forwarding_address``, ``forwarding_smtp_address``,
  ``deliver_to_mailbox_and_forward``, ``audit_enabled``
- statistics: ``total_item_size_mb``, ``item_count``,
  ``deleted_item_size_mb``, ``deleted_item_count``, ``last_logon_time``,
  ``archive_size_mb``
- permission: ``trustee``, ``right`` (FullAccess, SendAs, SendOnBehalf),
  ``trustee_resolved``
- folder: ``folder_path``, ``folder_type``, ``item_count``,
  ``folder_size_mb``, ``largest_item_size_mb``
- group: ``name``, ``is_nested``
- license: ``sku``, ``service_plans``
- batch: ``name``, ``id``, ``status``
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from mailbox_migration.models.batch import MigrationBatchDescriptor

logger = logging.getLogger(__name__)


class DirectoryGateway(ABC):
    """
    Abstract base class for remote directory gateways.

    Subclasses translate backend failures into ``GatewayError`` with the
    matching ``ErrorKind``: NOT_FOUND for absent objects, AUTH for expired
    or rejected credentials, PERMISSION for authorization failures and
    TRANSIENT for throttling and network errors.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    # Session

    @abstractmethod
    async def connect(self) -> None:
        """Open an authenticated session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the current session."""
        pass

    async def check_prerequisites(self) -> List[str]:
        """
        Check local prerequisites (modules, credentials) of the backend.

        Returns:
            Human-readable descriptions of missing prerequisites
        """
        return []

    # Directory reads

    @abstractmethod
    async def get_mailbox(self, identity: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_mailbox_statistics(self, identity: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_mailbox_permissions(self, identity: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_folder_statistics(self, identity: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_group_memberships(self, identity: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_move_request(self, identity: str) -> Dict[str, Any]:
        """Return the pending move request; NOT_FOUND when there is none."""
        pass

    @abstractmethod
    async def get_license_details(self, identity: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_accepted_domains(self) -> List[str]:
        pass

    # Migration service

    @abstractmethod
    async def get_migration_endpoint(self, name: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def set_migration_endpoint(self, name: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_migration_batch(self, name: str) -> Dict[str, Any]:
        """
        Return the batch record: ``id``, ``status`` and the ``mailboxes``
        already added. NOT_FOUND when no batch has this name.
        """
        pass

    @abstractmethod
    async def create_migration_batch(
        self,
        descriptor: MigrationBatchDescriptor,
        auto_start: bool = True
    ) -> Dict[str, Any]:
        """
        Submit a migration batch.

        Args:
            descriptor: Batch to create; may list no mailboxes
            auto_start: Whether the service starts the batch immediately

        Returns:
            The created batch record
        """
        pass

    @abstractmethod
    async def start_migration_batch(self, name: str) -> None:
        pass

    @abstractmethod
    async def add_mailbox_to_batch(
        self,
        batch_name: str,
        identity: str,
        bad_item_limit: Optional[int] = None
    ) -> None:
        pass

    @abstractmethod
    async def get_migration_batch_status(self, name: str) -> str:
        pass
