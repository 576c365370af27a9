"""
Backup licensing calculations.

Two different divisors are in play and must not be mixed up:
- storage shortfall is converted to licenses by GB capacity per user
  (per_user_gb, default 50 GB);
- excess shared mailboxes are converted to licenses by a flat headcount
  (MAILBOXES_PER_LICENSE mailboxes per license).
"""
import logging
import math
from typing import Iterable, Optional, Sequence

from .constants import (
    DEFAULT_ARCHIVE_THRESHOLD_PERCENT,
    DEFAULT_PER_USER_GB,
    DEFAULT_SKU_STORAGE_GB,
    DEFAULT_SKU_TIER,
    EXCLUDED_SKUS,
    MAILBOXES_PER_LICENSE,
    RECIPIENT_SHARED,
    RESOURCE_RECIPIENT_TYPES,
    SHARED_MAILBOX_ALLOWANCE,
    SKU_STORAGE_LIMITS,
)
from .models import ArchiveLicensing, LicenseSku, LicensingSummary, MailboxMix, UsageRecord
from .utils import round_half_away, safe_divide

logger = logging.getLogger(__name__)


def _ceil_units(amount: float, per_unit: float) -> int:
    """Whole units needed to cover `amount`; never negative."""
    if amount <= 0:
        return 0
    return int(math.ceil(amount / per_unit))


def _round_count(value: float) -> int:
    """Round a headcount with halves away from zero."""
    return int(round_half_away(value, 0))


def build_license_sku(
    sku_id: str,
    sku_part_number: str,
    assigned_units: int = 0,
    consumed_units: int = 0,
) -> LicenseSku:
    """Resolve a subscribed SKU against the storage limit table."""
    limit_gb, tier = SKU_STORAGE_LIMITS.get(
        (sku_part_number or '').upper(), (DEFAULT_SKU_STORAGE_GB, DEFAULT_SKU_TIER)
    )
    return LicenseSku(
        sku_id=sku_id or '',
        sku_part_number=sku_part_number or '',
        assigned_units=int(assigned_units or 0),
        consumed_units=int(consumed_units or 0),
        storage_limit_gb=limit_gb,
        tier=tier,
    )


def is_excluded_sku(sku: LicenseSku) -> bool:
    """Free automation SKUs do not entitle anyone to backup storage."""
    return (
        sku.sku_part_number.upper() in EXCLUDED_SKUS
        or sku.sku_id.lower() in EXCLUDED_SKUS
    )


def summarize_licensing(
    skus: Optional[Iterable[LicenseSku]],
    current_usage_gb: float,
    per_user_gb: float = DEFAULT_PER_USER_GB,
) -> LicensingSummary:
    """
    Compare the tenant's backup entitlement with its current storage.

    Args:
        skus: Subscribed SKUs (None when license collection failed)
        current_usage_gb: Current total storage, not a projected value
        per_user_gb: Entitlement granted per licensed user

    Returns:
        LicensingSummary with excess and additional units floored at zero
    """
    if per_user_gb <= 0:
        raise ValueError(f"Per-user entitlement must be positive: {per_user_gb}")

    counted = []
    excluded = []
    for sku in skus or ():
        if is_excluded_sku(sku):
            excluded.append(sku)
        else:
            counted.append(sku)

    licensed_users = sum(s.consumed_units for s in counted)
    entitlement_gb = licensed_users * per_user_gb
    excess_gb = max(0.0, current_usage_gb - entitlement_gb)

    usage_per_user = safe_divide(current_usage_gb, licensed_users)
    if skus is None:
        logger.warning("License data unavailable; entitlement figures are not reported")
    elif usage_per_user is None:
        logger.warning("No licensed users found; per-user usage is unavailable")

    return LicensingSummary(
        total_licensed_users=licensed_users,
        per_user_gb=per_user_gb,
        total_entitlement_gb=round_half_away(entitlement_gb, 2),
        current_usage_gb=round_half_away(current_usage_gb, 2),
        excess_gb=round_half_away(excess_gb, 2),
        additional_units_needed=_ceil_units(excess_gb, per_user_gb),
        usage_per_user_gb=round_half_away(usage_per_user, 2) if usage_per_user is not None else None,
        skus=tuple(counted),
        excluded_skus=tuple(excluded),
        available=skus is not None,
    )


def evaluate_mailbox_mix(
    mailbox_records: Optional[Sequence[UsageRecord]],
    licensed_users: Optional[int],
    archive_analyzed: bool = True,
) -> MailboxMix:
    """
    Break mailboxes down by type and check shared mailboxes against the allowance.

    Shared mailboxes are free up to 20% of licensed users; every started
    block of MAILBOXES_PER_LICENSE excess shared mailboxes needs one license.
    With licensed_users None (license collection failed) the allowance
    figures stay at zero and are flagged unavailable.
    """
    records = mailbox_records or ()
    total = len(records)
    shared = sum(1 for r in records if (r.kind or '') == RECIPIENT_SHARED)
    resource = sum(1 for r in records if (r.kind or '') in RESOURCE_RECIPIENT_TYPES)
    regular = total - shared - resource
    archive = sum(1 for r in records if r.has_archive) if archive_analyzed else 0

    archive_percent = safe_divide(archive * 100, total) or 0.0

    allowance_available = licensed_users is not None
    if allowance_available:
        shared_allowance = _round_count(licensed_users * SHARED_MAILBOX_ALLOWANCE)
        excess_shared = max(0, shared - shared_allowance)
    else:
        shared_allowance = excess_shared = 0

    return MailboxMix(
        total=total,
        regular=regular,
        shared=shared,
        resource=resource,
        archive=archive,
        archive_percent=round_half_away(archive_percent, 2),
        shared_allowance=shared_allowance,
        excess_shared=excess_shared,
        additional_units_for_shared=_ceil_units(excess_shared, MAILBOXES_PER_LICENSE),
        archive_analyzed=archive_analyzed,
        available=mailbox_records is not None,
        allowance_available=allowance_available,
    )


def evaluate_archive_licensing(
    total_mailboxes: int,
    archive_mailboxes: int,
    archive_threshold_percent: float = DEFAULT_ARCHIVE_THRESHOLD_PERCENT,
    per_user_gb: float = DEFAULT_PER_USER_GB,
) -> ArchiveLicensing:
    """
    Archive-mailbox licensing variant.

    Archive mailboxes above `archive_threshold_percent` of all mailboxes are
    excess; the excess is converted to units with the per-user GB divisor.
    """
    if per_user_gb <= 0:
        raise ValueError(f"Per-user entitlement must be positive: {per_user_gb}")

    threshold = total_mailboxes * (archive_threshold_percent / 100)
    excess = max(0.0, archive_mailboxes - threshold)

    return ArchiveLicensing(
        archive_threshold=round_half_away(threshold, 2),
        excess_archive=round_half_away(excess, 2),
        additional_units_for_archive=_ceil_units(excess, per_user_gb),
    )
