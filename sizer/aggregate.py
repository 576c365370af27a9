"""
Per-service aggregation of usage records.

Reduces the flat UsageRecord lists from the collector into ServiceTotals,
top-N rankings, storage share percentages and site counts.
"""
import logging
from typing import Iterable, Optional, Sequence

from .constants import ALL_SERVICES, TEAM_SITE_TEMPLATES, TOP_N
from .models import ServiceTotals, SiteCounts, StorageBreakdown, TopEntry, UsageRecord
from .utils import format_bytes_to_gb, round_half_away

logger = logging.getLogger(__name__)


def top_entities(records: Sequence[UsageRecord], limit: int = TOP_N) -> tuple:
    """
    Largest `limit` records, descending by storage.

    sorted() is stable, so records with equal storage keep their
    original order.
    """
    ranked = sorted(records, key=lambda r: r.storage_used_bytes, reverse=True)
    return tuple(
        TopEntry(name=r.display_name or r.principal_name or r.entity_id,
                 size_gb=format_bytes_to_gb(r.storage_used_bytes))
        for r in ranked[:limit]
    )


def aggregate_service(service_name: str, records: Optional[Sequence[UsageRecord]]) -> ServiceTotals:
    """
    Aggregate one service's usage records.

    Args:
        service_name: Display name of the service (e.g. "Exchange Online")
        records: Usage records, or None when collection for the service failed

    Returns:
        ServiceTotals; zero-valued and marked unavailable when records is None
    """
    if records is None:
        logger.debug(f"No usage data for {service_name}; reporting zero totals")
        return ServiceTotals(service_name=service_name, available=False)

    total_bytes = sum(r.storage_used_bytes for r in records)
    largest = max((r.storage_used_bytes for r in records), default=0)

    return ServiceTotals(
        service_name=service_name,
        total_bytes=total_bytes,
        entity_count=len(records),
        largest_bytes=largest,
        top5=top_entities(records),
    )


def storage_breakdown(totals: Iterable[ServiceTotals]) -> StorageBreakdown:
    """Percentage share of each service in the combined storage total."""
    totals = list(totals)
    combined_bytes = sum(t.total_bytes for t in totals)

    percentages = {}
    for t in totals:
        if combined_bytes:
            percentages[t.service_name] = round_half_away(t.total_bytes / combined_bytes * 100, 2)
        else:
            percentages[t.service_name] = 0.0

    return StorageBreakdown(
        total_gb=format_bytes_to_gb(combined_bytes),
        percentages=percentages,
    )


def total_storage_gb(totals: Iterable[ServiceTotals]) -> float:
    """Combined storage across services in GB (the "current" size)."""
    return format_bytes_to_gb(sum(t.total_bytes for t in totals))


def count_sites(
    onedrive_records: Optional[Sequence[UsageRecord]],
    sharepoint_records: Optional[Sequence[UsageRecord]],
) -> SiteCounts:
    """Count OneDrive accounts, SharePoint sites and team-connected sites."""
    onedrive = len(onedrive_records or ())
    sharepoint = len(sharepoint_records or ())
    teams_sites = sum(
        1 for r in (sharepoint_records or ())
        if (r.kind or '').strip() in TEAM_SITE_TEMPLATES
    )

    return SiteCounts(
        onedrive_accounts=onedrive,
        sharepoint_sites=sharepoint,
        teams_sites=teams_sites,
        total_sites=onedrive + sharepoint,
    )


def aggregate_all(mailbox_records, onedrive_records, sharepoint_records) -> tuple:
    """Aggregate the three storage services in report order."""
    by_service = dict(zip(ALL_SERVICES, (mailbox_records, onedrive_records, sharepoint_records)))
    return tuple(aggregate_service(name, by_service[name]) for name in ALL_SERVICES)
