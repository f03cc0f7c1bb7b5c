"""
Built-in mailbox readiness checks.

Each check reads one aspect of the mailbox from the gateway, records what
it found on the result and adds errors (blocking) or warnings
(review before migrating). Checks never finalize the result.
"""

import re
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from mailbox_migration.core.exceptions import GatewayError
from mailbox_migration.models.config import ValidationDepth
from mailbox_migration.models.results import ValidationResult
from mailbox_migration.validation.registry import BUILTIN_CHECKS, CheckContext

SHARED_TYPES = {"sharedmailbox"}
RESOURCE_TYPES = {"roommailbox", "equipmentmailbox"}
NON_ROUTABLE_SUFFIXES = (".local", ".lan", ".internal", ".localdomain", ".corp")
SELF_TRUSTEES = {"nt authority\\self", "self"}
SID_PATTERN = re.compile(r"^S-1-5-[\d-]+$", re.IGNORECASE)
INVALID_FOLDER_CHARS = re.compile(r"[\x00-\x1f]")
EXCHANGE_PLAN_PREFIX = "exchange"
FINAL_MOVE_STATES = {"completed", "completedwithwarning"}


def _address_of(proxy: str) -> str:
    """Strip the ``smtp:`` / ``SMTP:`` prefix of a proxy address."""
    prefix, sep, rest = proxy.partition(":")
    if sep and prefix.lower() in ("smtp", "sip", "x500", "x400"):
        return rest
    return proxy


def _domain_of(address: str) -> str:
    return address.rpartition("@")[2].lower()


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _folder_depth(path: str) -> int:
    return len([part for part in path.split("/") if part])


@BUILTIN_CHECKS.register(
    "mailbox_exists", ValidationDepth.BASIC,
    "Mailbox exists in the source directory", requires_mailbox=False
)
async def check_mailbox_exists(ctx: CheckContext, result: ValidationResult) -> None:
    try:
        mailbox = await ctx.fetch("get_mailbox")
    except GatewayError as e:
        if not e.is_not_found:
            raise
        result.exists = False
        result.add_error("MAILBOX_NOT_FOUND", f"Mailbox {ctx.identity} was not found in the source directory")
        return

    result.exists = True
    result.display_name = mailbox.get("display_name")
    result.primary_smtp_address = mailbox.get("primary_smtp_address")
    result.user_principal_name = mailbox.get("user_principal_name")
    result.recipient_type_details = mailbox.get("recipient_type_details")
    result.email_addresses = list(mailbox.get("email_addresses") or [])
    result.hidden_from_address_lists = bool(mailbox.get("hidden_from_address_lists", False))


@BUILTIN_CHECKS.register("email_domains", ValidationDepth.BASIC, "Address domains are accepted in the target tenant")
async def check_email_domains(ctx: CheckContext, result: ValidationResult) -> None:
    mailbox = await ctx.fetch("get_mailbox")
    accepted = {d.lower() for d in await ctx.accepted_domains()}

    addresses = [_address_of(p) for p in mailbox.get("email_addresses") or []]
    primary = mailbox.get("primary_smtp_address")
    if primary:
        addresses.append(primary)

    non_accepted: List[str] = []
    for domain in sorted({_domain_of(a) for a in addresses if "@" in a}):
        if domain.endswith(NON_ROUTABLE_SUFFIXES):
            result.has_non_routable_addresses = True
        elif domain not in accepted:
            non_accepted.append(domain)

    result.non_accepted_domains = non_accepted
    if non_accepted:
        result.add_error(
            "NON_ACCEPTED_DOMAIN",
            f"Address domains not accepted in the target tenant: {', '.join(non_accepted)}"
        )
    if result.has_non_routable_addresses:
        result.add_warning("Mailbox has addresses in non-routable domains; they will be dropped")


@BUILTIN_CHECKS.register("license", ValidationDepth.BASIC, "An Exchange Online license is assigned")
async def check_license(ctx: CheckContext, result: ValidationResult) -> None:
    licenses = await ctx.fetch("get_license_details")
    result.assigned_licenses = [entry.get("sku", "") for entry in licenses]
    result.has_exchange_license = any(
        plan.lower().startswith(EXCHANGE_PLAN_PREFIX)
        for entry in licenses
        for plan in entry.get("service_plans", [])
    )

    if result.has_exchange_license:
        return

    mailbox = await ctx.fetch("get_mailbox")
    recipient_type = (mailbox.get("recipient_type_details") or "").lower()
    if recipient_type in SHARED_TYPES | RESOURCE_TYPES:
        return
    result.add_error("NO_EXCHANGE_LICENSE", "No license with an Exchange Online service plan is assigned")


@BUILTIN_CHECKS.register("pending_move", ValidationDepth.BASIC, "No move request is pending")
async def check_pending_move(ctx: CheckContext, result: ValidationResult) -> None:
    try:
        move_request = await ctx.fetch("get_move_request")
    except GatewayError as e:
        if not e.is_not_found:
            raise
        result.has_pending_move_request = False
        return

    status = move_request.get("status") or "Unknown"
    result.move_request_status = status
    if status.lower() in FINAL_MOVE_STATES:
        result.add_warning(f"A finished move request ({status}) exists and must be removed before migrating")
        return
    result.has_pending_move_request = True
    result.add_error("PENDING_MOVE_REQUEST", f"A move request is already in progress ({status})")


@BUILTIN_CHECKS.register("mailbox_statistics", ValidationDepth.STANDARD, "Mailbox size and item counts")
async def check_mailbox_statistics(ctx: CheckContext, result: ValidationResult) -> None:
    stats = await ctx.fetch("get_mailbox_statistics")
    mailbox = await ctx.fetch("get_mailbox")

    result.total_item_size_mb = float(stats.get("total_item_size_mb", 0.0))
    result.item_count = int(stats.get("item_count", 0))
    result.deleted_item_size_mb = float(stats.get("deleted_item_size_mb", 0.0))
    result.deleted_item_count = int(stats.get("deleted_item_count", 0))
    result.last_logon_time = _parse_time(stats.get("last_logon_time"))
    result.has_archive = (mailbox.get("archive_status") or "").lower() == "active"
    result.archive_size_mb = float(stats.get("archive_size_mb", 0.0))

    limit = ctx.thresholds.large_mailbox_mb
    result.is_large_mailbox = result.total_item_size_mb > limit
    if result.is_large_mailbox:
        result.add_warning(
            f"Mailbox is {result.total_item_size_mb:.0f} MB, above the {limit:.0f} MB large-mailbox threshold"
        )


@BUILTIN_CHECKS.register("permissions", ValidationDepth.STANDARD, "Delegate permissions")
async def check_permissions(ctx: CheckContext, result: ValidationResult) -> None:
    entries = await ctx.fetch("get_mailbox_permissions")

    delegates: Dict[str, List[str]] = {"fullaccess": [], "sendas": [], "sendonbehalf": []}
    for entry in entries:
        trustee = entry.get("trustee") or ""
        right = (entry.get("right") or "").lower()
        if entry.get("is_inherited") or trustee.lower() in SELF_TRUSTEES:
            continue
        if right in delegates and trustee not in delegates[right]:
            delegates[right].append(trustee)

    result.full_access_delegates = delegates["fullaccess"]
    result.send_as_delegates = delegates["sendas"]
    result.send_on_behalf_delegates = delegates["sendonbehalf"]
    result.has_delegates = any(delegates.values())

    if result.has_delegates:
        count = len({t for trustees in delegates.values() for t in trustees})
        result.add_warning(
            f"Mailbox has {count} delegate(s); migrate delegates in the same batch to keep access working"
        )


@BUILTIN_CHECKS.register("item_size_limits", ValidationDepth.STANDARD, "Items above the message size limit")
async def check_item_size_limits(ctx: CheckContext, result: ValidationResult) -> None:
    folders = await ctx.fetch("get_folder_statistics")
    limit = ctx.thresholds.item_size_limit_mb

    largest = 0.0
    large_items = 0
    for folder in folders:
        folder_largest = float(folder.get("largest_item_size_mb", 0.0))
        largest = max(largest, folder_largest)
        if folder_largest > limit:
            large_items += int(folder.get("large_item_count", 1))

    result.largest_item_size_mb = largest
    result.large_item_count = large_items
    result.exceeds_item_size_limit = large_items > 0
    if result.exceeds_item_size_limit:
        result.add_warning(
            f"{large_items} item(s) exceed the {limit:.0f} MB message size limit and will not migrate"
        )


@BUILTIN_CHECKS.register("special_mailbox_type", ValidationDepth.STANDARD, "Shared, resource, inactive and held mailboxes")
async def check_special_mailbox_type(ctx: CheckContext, result: ValidationResult) -> None:
    mailbox = await ctx.fetch("get_mailbox")
    recipient_type = (mailbox.get("recipient_type_details") or "").lower()

    result.is_shared_mailbox = recipient_type in SHARED_TYPES
    result.is_resource_mailbox = recipient_type in RESOURCE_TYPES
    result.is_inactive_mailbox = bool(mailbox.get("is_inactive", False))
    result.litigation_hold_enabled = bool(mailbox.get("litigation_hold_enabled", False))
    result.retention_hold_enabled = bool(mailbox.get("retention_hold_enabled", False))
    result.in_place_holds = list(mailbox.get("in_place_holds") or [])

    if result.is_inactive_mailbox:
        result.add_error("INACTIVE_MAILBOX", "Inactive mailboxes cannot be added to a migration batch")
    if result.litigation_hold_enabled:
        result.add_warning("Litigation hold is enabled; recreate the hold in the target tenant")
    if result.retention_hold_enabled:
        result.add_warning("Retention hold is enabled")
    if result.in_place_holds:
        result.add_warning(f"Mailbox is on {len(result.in_place_holds)} in-place hold(s)")


@BUILTIN_CHECKS.register("messaging_config", ValidationDepth.COMPREHENSIVE, "Mail forwarding")
async def check_messaging_config(ctx: CheckContext, result: ValidationResult) -> None:
    mailbox = await ctx.fetch("get_mailbox")
    result.forwarding_address = mailbox.get("forwarding_address")
    result.forwarding_smtp_address = mailbox.get("forwarding_smtp_address")
    result.deliver_to_mailbox_and_forward = bool(mailbox.get("deliver_to_mailbox_and_forward", False))

    target = result.forwarding_smtp_address or result.forwarding_address
    if target:
        result.add_warning(f"Mail is forwarded to {target}; verify forwarding after the move")


@BUILTIN_CHECKS.register("orphaned_permissions", ValidationDepth.COMPREHENSIVE, "Permissions granted to deleted principals")
async def check_orphaned_permissions(ctx: CheckContext, result: ValidationResult) -> None:
    entries = await ctx.fetch("get_mailbox_permissions")
    orphaned = []
    for entry in entries:
        trustee = entry.get("trustee") or ""
        if entry.get("trustee_resolved") is False or SID_PATTERN.match(trustee):
            if trustee not in orphaned:
                orphaned.append(trustee)

    result.orphaned_permissions = orphaned
    result.has_orphaned_permissions = bool(orphaned)
    if orphaned:
        result.add_warning(f"{len(orphaned)} permission(s) reference principals that no longer resolve")


@BUILTIN_CHECKS.register("group_membership", ValidationDepth.COMPREHENSIVE, "Distribution and security group membership")
async def check_group_membership(ctx: CheckContext, result: ValidationResult) -> None:
    groups = await ctx.fetch("get_group_memberships")
    result.group_memberships = [g.get("name", "") for g in groups]
    result.group_membership_count = len(groups)
    result.nested_group_count = sum(1 for g in groups if g.get("is_nested"))

    limit = ctx.thresholds.group_membership_warning
    if result.group_membership_count > limit:
        result.add_warning(f"Mailbox is a member of {result.group_membership_count} groups (more than {limit})")


@BUILTIN_CHECKS.register("folder_structure", ValidationDepth.COMPREHENSIVE, "Folder count and hierarchy depth")
async def check_folder_structure(ctx: CheckContext, result: ValidationResult) -> None:
    folders = await ctx.fetch("get_folder_statistics")
    thresholds = ctx.thresholds

    result.folder_count = len(folders)
    result.max_folder_depth = max((_folder_depth(f.get("folder_path", "")) for f in folders), default=0)
    result.has_excessive_folder_count = result.folder_count > thresholds.max_folder_count
    result.has_deep_folder_hierarchy = result.max_folder_depth > thresholds.deep_folder_depth

    if result.has_excessive_folder_count:
        result.add_warning(f"Mailbox has {result.folder_count} folders (limit {thresholds.max_folder_count})")
    if result.has_deep_folder_hierarchy:
        result.add_warning(
            f"Folder hierarchy is {result.max_folder_depth} levels deep (limit {thresholds.deep_folder_depth})"
        )


@BUILTIN_CHECKS.register("calendar_contacts", ValidationDepth.COMPREHENSIVE, "Calendar and contact item volume")
async def check_calendar_contacts(ctx: CheckContext, result: ValidationResult) -> None:
    folders = await ctx.fetch("get_folder_statistics")
    calendar = 0
    contacts = 0
    for folder in folders:
        folder_type = (folder.get("folder_type") or "").lower()
        if folder_type == "calendar":
            calendar += int(folder.get("item_count", 0))
        elif folder_type == "contacts":
            contacts += int(folder.get("item_count", 0))

    result.calendar_item_count = calendar
    result.contact_item_count = contacts
    if calendar > ctx.thresholds.calendar_item_warning:
        result.add_warning(f"Calendar holds {calendar} items; migration of this folder will be slow")
    if contacts > ctx.thresholds.contact_item_warning:
        result.add_warning(f"Contacts folder holds {contacts} items")


@BUILTIN_CHECKS.register("audit_config", ValidationDepth.COMPREHENSIVE, "Mailbox audit logging")
async def check_audit_config(ctx: CheckContext, result: ValidationResult) -> None:
    mailbox = await ctx.fetch("get_mailbox")
    audit_enabled = mailbox.get("audit_enabled")
    result.audit_enabled = None if audit_enabled is None else bool(audit_enabled)
    if result.audit_enabled is False:
        result.add_warning("Mailbox auditing is disabled")


@BUILTIN_CHECKS.register("naming_conflicts", ValidationDepth.COMPREHENSIVE, "Folder names and duplicate addresses")
async def check_naming_conflicts(ctx: CheckContext, result: ValidationResult) -> None:
    folders = await ctx.fetch("get_folder_statistics")
    mailbox = await ctx.fetch("get_mailbox")

    paths = [f.get("folder_path", "") for f in folders]
    invalid = []
    for path in paths:
        name = path.rstrip("/").rpartition("/")[2]
        if INVALID_FOLDER_CHARS.search(name) or name != name.rstrip(" .") or len(name) > 255:
            invalid.append(path)
    path_counts = Counter(p.lower() for p in paths)
    duplicate_folders = sorted({p for p in paths if path_counts[p.lower()] > 1})

    address_counts = Counter(_address_of(a).lower() for a in mailbox.get("email_addresses") or [])
    duplicate_addresses = sorted(a for a, n in address_counts.items() if n > 1)

    result.invalid_folder_names = invalid
    result.duplicate_folder_names = duplicate_folders
    result.duplicate_addresses = duplicate_addresses

    if invalid:
        result.add_warning(f"{len(invalid)} folder name(s) contain characters the target does not accept")
    if duplicate_folders:
        result.add_warning(f"{len(duplicate_folders)} folder path(s) differ only by case")
    if duplicate_addresses:
        result.add_warning(f"Duplicate proxy addresses: {', '.join(duplicate_addresses)}")
