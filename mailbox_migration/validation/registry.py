"""
Readiness check registry.

Checks are registered with a name, the validation depth that first
includes them and a description. Depth groups are nested, so
``checks_for(ValidationDepth.STANDARD)`` returns the basic checks followed
by the standard ones, in registration order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, TYPE_CHECKING

from mailbox_migration.models.config import CheckThresholds, ValidationDepth
from mailbox_migration.models.results import ValidationResult

if TYPE_CHECKING:
    from mailbox_migration.validation.runner import CheckRunner

logger = logging.getLogger(__name__)


class CheckContext:
    """
    What a check may use while validating one mailbox.

    Remote calls go through the runner's retry executor. Mailbox-scoped
    reads are cached for the lifetime of the context, so several checks
    can look at the same record with a single remote call.
    """

    def __init__(self, identity: str, runner: "CheckRunner"):
        self.identity = identity
        self._runner = runner
        self._cache: Dict[str, Any] = {}

    @property
    def thresholds(self) -> CheckThresholds:
        return self._runner.thresholds

    async def call(self, method: str, *args: Any) -> Any:
        """Invoke a gateway method through the retry executor."""
        gateway_method = getattr(self._runner.gateway, method)
        target = args[0] if args else ""
        return await self._runner.executor.call(
            lambda: gateway_method(*args),
            operation=f"{method}({target})"
        )

    async def fetch(self, method: str) -> Any:
        """Invoke a mailbox-scoped gateway method once per mailbox."""
        if method not in self._cache:
            self._cache[method] = await self.call(method, self.identity)
        return self._cache[method]

    async def accepted_domains(self) -> List[str]:
        return await self._runner.get_accepted_domains()


CheckFunction = Callable[[CheckContext, ValidationResult], Awaitable[None]]


@dataclass(frozen=True)
class CheckDescriptor:
    """A registered readiness check."""
    name: str
    check: CheckFunction
    depth: ValidationDepth
    description: str = ""
    requires_mailbox: bool = True


class CheckRegistry:
    """Ordered collection of readiness checks."""

    def __init__(self):
        self._checks: Dict[str, CheckDescriptor] = {}

    def register(
        self,
        name: str,
        depth: ValidationDepth,
        description: str = "",
        requires_mailbox: bool = True
    ) -> Callable[[CheckFunction], CheckFunction]:
        """
        Decorator registering an async check function.

        Args:
            name: Unique check name, used in warnings and results
            depth: Lowest validation depth that runs the check
            description: Human-readable summary
            requires_mailbox: Skip the check when the mailbox does not exist
        """
        def decorator(func: CheckFunction) -> CheckFunction:
            self.add(CheckDescriptor(
                name=name,
                check=func,
                depth=depth,
                description=description or (func.__doc__ or "").strip(),
                requires_mailbox=requires_mailbox,
            ))
            return func
        return decorator

    def add(self, descriptor: CheckDescriptor) -> None:
        if descriptor.name in self._checks:
            raise ValueError(f"Check already registered: {descriptor.name}")
        self._checks[descriptor.name] = descriptor
        logger.debug(f"Registered check {descriptor.name} ({descriptor.depth.value})")

    def get(self, name: str) -> Optional[CheckDescriptor]:
        return self._checks.get(name)

    def names(self) -> List[str]:
        return list(self._checks.keys())

    def checks_for(self, depth: ValidationDepth) -> List[CheckDescriptor]:
        """Checks selected by ``depth``, shallower groups first."""
        selected = [c for c in self._checks.values() if depth.includes(c.depth)]
        return sorted(selected, key=lambda c: c.depth.level)

    def __contains__(self, name: str) -> bool:
        return name in self._checks

    def __iter__(self) -> Iterator[CheckDescriptor]:
        return iter(self._checks.values())

    def __len__(self) -> int:
        return len(self._checks)


BUILTIN_CHECKS = CheckRegistry()


def default_registry() -> CheckRegistry:
    """The registry holding the built-in readiness checks."""
    from mailbox_migration.validation import checks  # noqa: F401  registers on import
    return BUILTIN_CHECKS
