"""
Batch decision logic.

Turns per-mailbox validation results into the set of identities to
submit: classification by overall status, the operator's inclusion
policy, and advisory per-mailbox bad-item tolerances.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from mailbox_migration.core.exceptions import BatchCreationAbortedError
from mailbox_migration.models.batch import InclusionPolicy, RiskLevel, ToleranceRecommendation
from mailbox_migration.models.results import OverallStatus, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_BAD_ITEM_LIMIT = 10
LARGE_ITEM_COUNT = 100_000
MEDIUM_ITEM_COUNT = 50_000


@dataclass
class ClassifiedResults:
    """Identities grouped by readiness."""
    ready: List[str] = field(default_factory=list)
    warning: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.ready) + len(self.warning) + len(self.failed)

    def counts(self) -> Dict[str, int]:
        return {
            OverallStatus.READY.value: len(self.ready),
            OverallStatus.WARNING.value: len(self.warning),
            OverallStatus.FAILED.value: len(self.failed),
        }


def classify_results(results: Iterable[ValidationResult]) -> ClassifiedResults:
    """
    Group results by overall status.

    A result that was never finalized counts as Failed.
    """
    classified = ClassifiedResults()
    for result in results:
        if result.overall_status == OverallStatus.READY:
            classified.ready.append(result.identity)
        elif result.overall_status == OverallStatus.WARNING:
            classified.warning.append(result.identity)
        else:
            classified.failed.append(result.identity)
    return classified


PolicyPrompt = Callable[[ClassifiedResults], InclusionPolicy]


def resolve_inclusion_policy(
    classified: ClassifiedResults,
    force: bool = False,
    prompt: Optional[PolicyPrompt] = None
) -> InclusionPolicy:
    """
    Decide which classes of mailboxes go into the batch.

    Args:
        classified: Classified validation results
        force: Non-interactive mode; includes Ready and Warning mailboxes
        prompt: Asks the operator; without one, only Ready mailboxes are
            included

    Returns:
        The inclusion policy
    """
    if force:
        return InclusionPolicy.READY_AND_WARNING
    if not classified.warning:
        return InclusionPolicy.READY_ONLY
    if prompt is None:
        logger.info("No operator prompt available; including Ready mailboxes only")
        return InclusionPolicy.READY_ONLY
    return prompt(classified)


def select_identities(classified: ClassifiedResults, policy: InclusionPolicy) -> List[str]:
    """
    Identities to submit under ``policy``. Failed mailboxes are never selected.

    Raises:
        BatchCreationAbortedError: If the policy is ABORT
    """
    if policy == InclusionPolicy.ABORT:
        raise BatchCreationAbortedError("Batch creation aborted by the operator")
    if policy == InclusionPolicy.READY_AND_WARNING:
        return classified.ready + classified.warning
    return list(classified.ready)


def recommend_tolerance(result: ValidationResult) -> ToleranceRecommendation:
    """
    Advisory bad-item limit and risk level for one mailbox.

    The recommendation never changes the mailbox's classification.
    """
    items = result.item_count
    if items > LARGE_ITEM_COUNT:
        limit = min(100, math.ceil(items * 0.001))
        risk = RiskLevel.HIGH
    elif items > MEDIUM_ITEM_COUNT:
        limit = min(50, math.ceil(items * 0.0005))
        risk = RiskLevel.MEDIUM
    else:
        limit = DEFAULT_BAD_ITEM_LIMIT
        risk = RiskLevel.LOW

    if result.has_deep_folder_hierarchy:
        risk = RiskLevel.HIGH

    return ToleranceRecommendation(bad_item_limit=limit, risk_level=risk)


def tolerance_overrides(results: Iterable[ValidationResult], identities: Iterable[str]) -> Dict[str, int]:
    """Bad-item limits for the selected identities."""
    selected = set(identities)
    return {
        result.identity: recommend_tolerance(result).bad_item_limit
        for result in results
        if result.identity in selected
    }
