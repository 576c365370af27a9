"""
Sizing pipeline: collected snapshot in, structured report out.

Stages run strictly in order (aggregate, growth, licensing, cost) and each
receives the previous stage's immutable output. No I/O happens here.
"""
import logging
from typing import Optional

from .aggregate import aggregate_all, count_sites, storage_breakdown, total_storage_gb
from .config import SizingSettings
from .cost import estimate_cost
from .growth import project_growth
from .licensing import evaluate_archive_licensing, evaluate_mailbox_mix, summarize_licensing
from .models import SizingReport, TenantSnapshot
from .utils import generate_run_id, get_timestamp

logger = logging.getLogger(__name__)


def cost_user_count(snapshot: TenantSnapshot, licensed_users: int) -> int:
    """Users to amortize cost over: tenant user count, else licensed users."""
    if snapshot.tenant.total_users:
        return snapshot.tenant.total_users
    return licensed_users


def build_sizing_report(
    snapshot: TenantSnapshot,
    settings: Optional[SizingSettings] = None,
    run_id: Optional[str] = None,
    generated_at: Optional[str] = None,
) -> SizingReport:
    """
    Derive every report section from one tenant snapshot.

    Args:
        snapshot: Collector output
        settings: Resolved run settings (defaults when omitted)
        run_id: Run identifier (generated when omitted)
        generated_at: ISO timestamp (now, UTC, when omitted)

    Returns:
        SizingReport ready for rendering and export
    """
    settings = settings or SizingSettings()

    services = aggregate_all(
        snapshot.mailbox_records,
        snapshot.onedrive_records,
        snapshot.sharepoint_records,
    )
    breakdown = storage_breakdown(services)
    sites = count_sites(snapshot.onedrive_records, snapshot.sharepoint_records)
    current_gb = total_storage_gb(services)
    logger.info(f"Aggregated {sum(s.entity_count for s in services)} entities, "
                f"{current_gb:,.2f} GB total")

    growth = project_growth(current_gb, settings.annual_growth)

    licensing = summarize_licensing(snapshot.license_skus, current_gb, settings.per_user_gb)
    mailbox_mix = evaluate_mailbox_mix(
        snapshot.mailbox_records,
        licensing.total_licensed_users if licensing.available else None,
        archive_analyzed=snapshot.archive_analyzed,
    )
    archive_licensing = evaluate_archive_licensing(
        mailbox_mix.total,
        mailbox_mix.archive,
        settings.archive_threshold_percent,
        settings.per_user_gb,
    )
    logger.info(f"Licensing: {licensing.total_licensed_users} licensed users, "
                f"{licensing.additional_units_needed} additional licenses needed")

    cost = estimate_cost(current_gb, cost_user_count(snapshot, licensing.total_licensed_users), settings.cost)
    logger.info(f"Estimated backup cost: ${cost.total_monthly_cost:,.2f}/month")

    return SizingReport(
        run_id=run_id or generate_run_id(),
        generated_at=generated_at or get_timestamp(),
        period_days=snapshot.period_days,
        tenant=snapshot.tenant,
        services=services,
        breakdown=breakdown,
        sites=sites,
        growth=growth,
        licensing=licensing,
        mailbox_mix=mailbox_mix,
        archive_licensing=archive_licensing,
        cost=cost,
        licensing_mode=settings.licensing_mode,
        team_count=snapshot.team_count,
        group_count=snapshot.group_count,
        planner_sample=snapshot.planner_sample,
        settings=settings.to_dict(),
        errors=snapshot.errors,
    )
