"""
Factory for creating directory gateway instances.

Gateways register under a short name; third-party gateways can also be
loaded by a ``package.module:ClassName`` path without registration.
"""

from typing import Any, Dict, Optional, Type
import importlib
import logging

from mailbox_migration.core.exceptions import ConfigurationError
from mailbox_migration.gateway.base import DirectoryGateway

logger = logging.getLogger(__name__)


class GatewayFactory:
    """
    Factory class for creating directory gateway instances.
    """

    # Registry of available gateways
    _gateways: Dict[str, Type[DirectoryGateway]] = {}

    @classmethod
    def register_gateway(cls, name: str, gateway_class: Type[DirectoryGateway]) -> None:
        """
        Register a gateway class with the factory.

        Args:
            name: Name identifier for the gateway
            gateway_class: Gateway class to register
        """
        cls._gateways[name.lower()] = gateway_class
        logger.debug(f"Registered directory gateway: {name}")

    @classmethod
    def get_available_gateways(cls) -> list[str]:
        return list(cls._gateways.keys())

    @classmethod
    def resolve(cls, gateway_type: str) -> Type[DirectoryGateway]:
        """
        Resolve a gateway name or ``module:Class`` path to a gateway class.

        Raises:
            ConfigurationError: If the gateway cannot be resolved
        """
        if ":" in gateway_type:
            module_name, _, class_name = gateway_type.partition(":")
            try:
                module = importlib.import_module(module_name)
                gateway_class = getattr(module, class_name)
            except (ImportError, AttributeError) as e:
                raise ConfigurationError(f"Cannot load gateway {gateway_type}: {e}")
            if not (isinstance(gateway_class, type) and issubclass(gateway_class, DirectoryGateway)):
                raise ConfigurationError(f"{gateway_type} is not a DirectoryGateway subclass")
            return gateway_class

        gateway_class = cls._gateways.get(gateway_type.lower())
        if gateway_class is None:
            available = ", ".join(cls.get_available_gateways())
            raise ConfigurationError(
                f"Unsupported gateway: {gateway_type}. Available gateways: {available}"
            )
        return gateway_class

    @classmethod
    def create_gateway(
        cls,
        gateway_type: str,
        config: Optional[Dict[str, Any]] = None
    ) -> DirectoryGateway:
        """
        Create a gateway instance based on type and configuration.

        Args:
            gateway_type: Registered name (e.g. 'memory') or 'module:Class'
            config: Configuration dictionary for the gateway

        Returns:
            Configured gateway instance

        Raises:
            ConfigurationError: If the type is unknown or the config is invalid
        """
        gateway_class = cls.resolve(gateway_type)
        try:
            instance = gateway_class(config or {})
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to create gateway {gateway_type}: {e}")
            raise ConfigurationError(
                f"Failed to create gateway {gateway_type} with provided options: {e}"
            )
        logger.info(f"Created directory gateway: {gateway_type}")
        return instance


def register_gateway(name: str):
    """
    Decorator to register gateways with the factory.

    Args:
        name: Name identifier for the gateway
    """
    def decorator(cls: Type[DirectoryGateway]) -> Type[DirectoryGateway]:
        GatewayFactory.register_gateway(name, cls)
        return cls
    return decorator
