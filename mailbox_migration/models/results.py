"""
Validation result models for the Mailbox Migration Assistant.

ValidationResult is a fixed, versioned record: every field a check may
write is declared here up front so results keep one shape across checks,
windows and resumed runs.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

RESULT_SCHEMA_VERSION = 1


class OverallStatus(str, Enum):
    """Readiness classification of one mailbox."""
    UNKNOWN = "Unknown"
    READY = "Ready"
    WARNING = "Warning"
    FAILED = "Failed"


class ValidationIssue(BaseModel):
    """Blocking finding recorded against a mailbox."""
    code: str
    message: str


class ValidationResult(BaseModel):
    """Readiness findings for one mailbox."""

    model_config = ConfigDict(extra="ignore", validate_assignment=False)

    schema_version: int = RESULT_SCHEMA_VERSION
    identity: str

    # Identity
    exists: bool = False
    display_name: Optional[str] = None
    primary_smtp_address: Optional[str] = None
    user_principal_name: Optional[str] = None
    recipient_type_details: Optional[str] = None
    email_addresses: List[str] = Field(default_factory=list)
    hidden_from_address_lists: bool = False

    # Licensing
    has_exchange_license: bool = False
    assigned_licenses: List[str] = Field(default_factory=list)

    # Pending moves
    has_pending_move_request: bool = False
    move_request_status: Optional[str] = None

    # Address domains
    non_accepted_domains: List[str] = Field(default_factory=list)
    has_non_routable_addresses: bool = False

    # Statistics
    total_item_size_mb: float = 0.0
    item_count: int = 0
    deleted_item_size_mb: float = 0.0
    deleted_item_count: int = 0
    last_logon_time: Optional[datetime] = None
    has_archive: bool = False
    archive_size_mb: float = 0.0
    is_large_mailbox: bool = False

    # Permissions
    full_access_delegates: List[str] = Field(default_factory=list)
    send_as_delegates: List[str] = Field(default_factory=list)
    send_on_behalf_delegates: List[str] = Field(default_factory=list)
    has_delegates: bool = False

    # Item size limits
    large_item_count: int = 0
    largest_item_size_mb: float = 0.0
    exceeds_item_size_limit: bool = False

    # Special mailbox types
    is_shared_mailbox: bool = False
    is_resource_mailbox: bool = False
    is_inactive_mailbox: bool = False
    litigation_hold_enabled: bool = False
    retention_hold_enabled: bool = False
    in_place_holds: List[str] = Field(default_factory=list)

    # Messaging configuration
    forwarding_address: Optional[str] = None
    forwarding_smtp_address: Optional[str] = None
    deliver_to_mailbox_and_forward: bool = False

    # Orphaned permissions
    orphaned_permissions: List[str] = Field(default_factory=list)
    has_orphaned_permissions: bool = False

    # Group membership
    group_memberships: List[str] = Field(default_factory=list)
    group_membership_count: int = 0
    nested_group_count: int = 0

    # Folder structure
    folder_count: int = 0
    max_folder_depth: int = 0
    has_deep_folder_hierarchy: bool = False
    has_excessive_folder_count: bool = False

    # Calendar and contacts
    calendar_item_count: int = 0
    contact_item_count: int = 0

    # Audit configuration
    audit_enabled: Optional[bool] = None

    # Naming conflicts
    invalid_folder_names: List[str] = Field(default_factory=list)
    duplicate_folder_names: List[str] = Field(default_factory=list)
    duplicate_addresses: List[str] = Field(default_factory=list)

    # Outcome
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.UNKNOWN
    checks_performed: List[str] = Field(default_factory=list)
    checks_failed: List[str] = Field(default_factory=list)
    validated_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    def add_error(self, code: str, message: str) -> None:
        """Record a blocking finding."""
        self.errors.append(ValidationIssue(code=code, message=message))

    def add_warning(self, message: str) -> None:
        """Record a non-blocking finding."""
        self.warnings.append(message)

    def finalize(self) -> OverallStatus:
        """
        Derive the overall status once all selected checks have run.

        Returns:
            Failed if any error was recorded, else Warning if any warning
            was recorded, else Ready
        """
        if self.errors:
            self.overall_status = OverallStatus.FAILED
        elif self.warnings:
            self.overall_status = OverallStatus.WARNING
        else:
            self.overall_status = OverallStatus.READY
        self.validated_at = datetime.now(UTC)
        return self.overall_status

    @classmethod
    def synthetic_failure(cls, identity: str, message: str) -> "ValidationResult":
        """Build the Failed result for a mailbox whose validation crashed."""
        result = cls(identity=identity)
        result.add_error("VALIDATION_CRASHED", f"Validation did not complete: {message}")
        result.finalize()
        return result
