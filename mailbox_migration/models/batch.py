"""
Migration batch models.

Descriptors are immutable once built: the remote service treats a second
submission under the same name as a conflict.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InclusionPolicy(str, Enum):
    """Which classified mailboxes go into the batch."""
    READY_ONLY = "ready_only"
    READY_AND_WARNING = "ready_and_warning"
    ABORT = "abort"


class BatchStrategy(str, Enum):
    """How the batch is submitted."""
    BULK = "bulk"
    PER_MAILBOX = "per_mailbox"


class RiskLevel(str, Enum):
    """Advisory data-movement risk of a mailbox."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ToleranceRecommendation(BaseModel):
    """Advisory bad-item limit for one mailbox."""
    bad_item_limit: int
    risk_level: RiskLevel


class MigrationBatchDescriptor(BaseModel):
    """Everything needed to submit one migration batch."""

    model_config = ConfigDict(frozen=True)

    name: str
    source_endpoint: str
    target_delivery_domain: str
    complete_after: Optional[datetime] = None
    start_after: Optional[datetime] = None
    notification_emails: List[str] = Field(default_factory=list)
    mailboxes: List[str] = Field(default_factory=list)
    tolerance_overrides: Optional[Dict[str, int]] = None


class BatchOutcomeStatus(str, Enum):
    """Result of the batch creation stage."""
    CREATED = "created"
    NOTHING_ELIGIBLE = "nothing_eligible"


class BatchCreationOutcome(BaseModel):
    """What the batch creator did."""
    status: BatchOutcomeStatus
    batch_name: Optional[str] = None
    batch_id: Optional[str] = None
    strategy: Optional[BatchStrategy] = None
    submitted: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)
    adopted: bool = False
    confirmed: bool = False
    final_status: Optional[str] = None
    confirmation_warning: Optional[str] = None
