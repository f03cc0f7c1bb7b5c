"""
Remote directory gateways.

The gateway is the single seam to the remote directory and migration
service; everything else talks to it through the retry executor.
"""

from mailbox_migration.gateway.base import DirectoryGateway
from mailbox_migration.gateway.factory import GatewayFactory, register_gateway
from mailbox_migration.gateway.memory import InMemoryDirectoryGateway, load_snapshot

__all__ = [
    "DirectoryGateway",
    "GatewayFactory",
    "register_gateway",
    "InMemoryDirectoryGateway",
    "load_snapshot",
]
