"""
Check runner.

Runs the selected readiness checks for one mailbox, in order, through the
retry executor. A check that still fails after retries is recorded as a
warning on the result and the remaining checks still run.
"""

import asyncio
import logging
import time
from typing import List, Optional

from mailbox_migration.core.exceptions import MailboxMigrationError
from mailbox_migration.core.retry import RetryExecutor
from mailbox_migration.gateway.base import DirectoryGateway
from mailbox_migration.models.config import CheckThresholds, ValidationDepth
from mailbox_migration.models.results import ValidationResult
from mailbox_migration.validation.registry import (
    CheckContext,
    CheckDescriptor,
    CheckRegistry,
    default_registry,
)

logger = logging.getLogger(__name__)


def _mailbox_missing(result: ValidationResult) -> bool:
    return any(issue.code == "MAILBOX_NOT_FOUND" for issue in result.errors)


class CheckRunner:
    """
    Validates mailboxes against a registry of readiness checks.
    """

    def __init__(
        self,
        gateway: DirectoryGateway,
        executor: RetryExecutor,
        registry: Optional[CheckRegistry] = None,
        thresholds: Optional[CheckThresholds] = None,
        accepted_domains: Optional[List[str]] = None
    ):
        """
        Initialize the check runner.

        Args:
            gateway: Directory gateway the checks read from
            executor: Retry executor wrapping every gateway call
            registry: Check registry (defaults to the built-in checks)
            thresholds: Limits used by the checks
            accepted_domains: Target tenant domains, fetched on first use
                when not given
        """
        self.gateway = gateway
        self.executor = executor
        self.registry = registry or default_registry()
        self.thresholds = thresholds or CheckThresholds()
        self.accepted_domains = accepted_domains
        self._domains_lock = asyncio.Lock()

    async def get_accepted_domains(self) -> List[str]:
        if self.accepted_domains is None:
            async with self._domains_lock:
                if self.accepted_domains is None:
                    self.accepted_domains = await self.executor.call(
                        self.gateway.get_accepted_domains,
                        operation="get_accepted_domains"
                    )
        return self.accepted_domains

    async def validate_mailbox(self, identity: str, depth: ValidationDepth) -> ValidationResult:
        """
        Validate one mailbox at the given depth.

        Args:
            identity: Mailbox identity
            depth: Validation depth selecting the check set

        Returns:
            Finalized validation result
        """
        started = time.monotonic()
        result = ValidationResult(identity=identity)
        await self.run_checks(identity, result, self.registry.checks_for(depth))
        result.duration_seconds = round(time.monotonic() - started, 3)
        logger.debug(f"Validated {identity}: {result.overall_status.value}")
        return result

    async def run_checks(
        self,
        identity: str,
        result: ValidationResult,
        checks: List[CheckDescriptor]
    ) -> ValidationResult:
        """
        Run checks sequentially against one result and finalize it.

        Args:
            identity: Mailbox identity
            result: Result the checks write into
            checks: Checks to run, in order

        Returns:
            The same result, finalized
        """
        context = CheckContext(identity, self)

        for descriptor in checks:
            if descriptor.requires_mailbox and _mailbox_missing(result):
                logger.debug(f"Skipping {descriptor.name} for missing mailbox {identity}")
                continue

            try:
                await descriptor.check(context, result)
            except Exception as e:
                message = e.message if isinstance(e, MailboxMigrationError) else str(e)
                logger.warning(f"Check {descriptor.name} failed for {identity}: {message}")
                result.add_warning(f"Failed to perform {descriptor.name}: {message}")
                result.checks_failed.append(descriptor.name)
            else:
                result.checks_performed.append(descriptor.name)

        result.finalize()
        return result
