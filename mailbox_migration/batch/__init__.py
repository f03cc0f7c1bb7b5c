"""
Batch decision and creation.
"""

from mailbox_migration.batch.creator import BatchCreator
from mailbox_migration.batch.decision import (
    ClassifiedResults,
    classify_results,
    recommend_tolerance,
    resolve_inclusion_policy,
    select_identities,
    tolerance_overrides,
)

__all__ = [
    "BatchCreator",
    "ClassifiedResults",
    "classify_results",
    "recommend_tolerance",
    "resolve_inclusion_policy",
    "select_identities",
    "tolerance_overrides",
]
