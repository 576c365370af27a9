#!/usr/bin/env python3
"""
M365 Sizing - Microsoft 365 Backup Sizing Collector
Collects tenant usage through the Microsoft Graph API and writes an HTML
sizing report, a JSON export of the same figures, and a run log.

Requirements:
- Azure AD App Registration with following API permissions (Application type):
  - Reports.Read.All (mailbox, OneDrive and SharePoint usage reports)
  - User.Read.All (user counts)
  - Organization.Read.All (tenant name, subscribed SKUs)
  - Group.Read.All (groups, Teams, group scope)
  - Tasks.Read.All (Planner sample)

Usage:
    # Set environment variables (client secret MUST be env var for security)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"

    # Run sizing
    python m365_sizing.py

    # Interactive sign-in, 90-day usage window, 25% custom growth
    python m365_sizing.py --auth-mode interactive --period 90 --annual-growth 25

    # Only size members of one group
    python m365_sizing.py --group "Backup Pilot"
"""

import argparse
import asyncio
import csv
import io
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from azure.identity import ClientSecretCredential, InteractiveBrowserCredential
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph.generated.groups.groups_request_builder import GroupsRequestBuilder
from msgraph.generated.users.users_request_builder import UsersRequestBuilder
from msgraph.graph_service_client import GraphServiceClient

from sizer.aggregate import aggregate_service, total_storage_gb
from sizer.config import (
    ConfigError,
    SizingSettings,
    build_settings,
    generate_sample_config,
    load_config,
)
from sizer.constants import (
    AUTH_MODE_APP,
    DEFAULT_OUTPUT_DIR,
    GRAPH_SCOPES,
    PLANNER_SAMPLE_SIZE,
    REPORT_FILE_PREFIX,
    SERVICE_EXCHANGE,
    SERVICE_ONEDRIVE,
    SERVICE_SHAREPOINT,
    VALID_AUTH_MODES,
    VALID_LICENSING_MODES,
    VALID_PERIOD_DAYS,
)
from sizer.licensing import build_license_sku
from sizer.models import LicenseSku, PlannerSample, TenantInfo, TenantSnapshot, UsageRecord
from sizer.pipeline import build_sizing_report
from sizer.report import export_json, write_html_report
from sizer.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    mask_tenant_id,
    print_summary_table,
    setup_logging,
)

logger = logging.getLogger(__name__)

# Suppress verbose Azure SDK and httpx logging
logging.getLogger("azure").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("msal").setLevel(logging.WARNING)


# =============================================================================
# Graph Client
# =============================================================================

def get_graph_client(settings: SizingSettings) -> GraphServiceClient:
    """Create Microsoft Graph API client for the configured auth mode."""
    if settings.auth_mode == AUTH_MODE_APP:
        credential = ClientSecretCredential(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret
        )
    else:
        kwargs = {}
        if settings.tenant_id:
            kwargs['tenant_id'] = settings.tenant_id
        if settings.client_id:
            kwargs['client_id'] = settings.client_id
        credential = InteractiveBrowserCredential(**kwargs)
    return GraphServiceClient(credentials=credential, scopes=GRAPH_SCOPES)


async def collect_all_pages(initial_response, get_next_page_func) -> List[Any]:
    """Helper to collect all pages from a paginated Graph API response.

    Microsoft Graph API returns max 100 items per page by default.
    This helper follows odata_next_link to collect all items.

    Args:
        initial_response: The first response from a Graph API call
        get_next_page_func: Async function to get next page given a next_link

    Returns:
        List of all items from all pages
    """
    all_items = []
    response = initial_response

    while response:
        if getattr(response, 'value', None):
            all_items.extend(response.value)

        # Check for next page
        next_link = getattr(response, 'odata_next_link', None)
        if next_link:
            try:
                response = await get_next_page_func(next_link)
            except Exception as e:
                logger.warning(f"Failed to fetch next page: {e}")
                break
        else:
            break

    return all_items


def _record_failure(errors: Optional[List[str]], what: str, exc: Exception) -> None:
    """Log a whole-collection failure and remember it for the report."""
    message = f"Failed to collect {what}: {exc}"
    logger.error(message)
    if errors is not None:
        errors.append(message)


# =============================================================================
# Usage Report CSV
# =============================================================================

def read_report_csv(content) -> List[Dict[str, str]]:
    """Parse a Graph usage report export (CSV bytes or text) into rows."""
    if not content:
        return []
    text = content.decode('utf-8-sig') if isinstance(content, bytes) else content.lstrip('\ufeff')
    return list(csv.DictReader(io.StringIO(text)))


def _as_int(value: Optional[str]) -> int:
    if value is None or str(value).strip() == '':
        return 0
    return int(float(value))


def _is_true(value: Optional[str]) -> bool:
    return str(value or '').strip().lower() == 'true'


def parse_mailbox_rows(
    rows: Sequence[Dict[str, str]],
    skip_recoverable_items: bool = False,
    skip_archive_mailbox: bool = False,
) -> List[UsageRecord]:
    """Mailbox usage detail rows -> UsageRecords (deleted mailboxes skipped)."""
    records = []
    for row in rows:
        if _is_true(row.get('Is Deleted')):
            continue
        try:
            storage = _as_int(row.get('Storage Used (Byte)'))
            if not skip_recoverable_items:
                storage += _as_int(row.get('Deleted Item Size (Byte)'))
            upn = row.get('User Principal Name') or ''
            records.append(UsageRecord(
                entity_id=upn,
                display_name=row.get('Display Name') or upn,
                storage_used_bytes=storage,
                principal_name=upn or None,
                kind=(row.get('Recipient Type') or '').strip() or None,
                has_archive=False if skip_archive_mailbox else _is_true(row.get('Has Archive')),
            ))
        except ValueError as e:
            logger.debug(f"Skipping malformed mailbox usage row: {e}")
    return records


def parse_onedrive_rows(rows: Sequence[Dict[str, str]]) -> List[UsageRecord]:
    """OneDrive usage account detail rows -> UsageRecords."""
    records = []
    for row in rows:
        if _is_true(row.get('Is Deleted')):
            continue
        try:
            owner = row.get('Owner Principal Name') or ''
            records.append(UsageRecord(
                entity_id=row.get('Site Id') or owner,
                display_name=row.get('Owner Display Name') or owner,
                storage_used_bytes=_as_int(row.get('Storage Used (Byte)')),
                principal_name=owner or None,
            ))
        except ValueError as e:
            logger.debug(f"Skipping malformed OneDrive usage row: {e}")
    return records


def parse_sharepoint_rows(rows: Sequence[Dict[str, str]]) -> List[UsageRecord]:
    """SharePoint site usage detail rows -> UsageRecords."""
    records = []
    for row in rows:
        if _is_true(row.get('Is Deleted')):
            continue
        try:
            url = row.get('Site URL') or ''
            records.append(UsageRecord(
                entity_id=row.get('Site Id') or url,
                display_name=url or row.get('Owner Display Name') or row.get('Site Id') or '',
                storage_used_bytes=_as_int(row.get('Storage Used (Byte)')),
                kind=(row.get('Root Web Template') or '').strip() or None,
            ))
        except ValueError as e:
            logger.debug(f"Skipping malformed SharePoint usage row: {e}")
    return records


# =============================================================================
# Tenant & Licenses
# =============================================================================

async def get_tenant_info(graph_client: GraphServiceClient, errors: Optional[List[str]] = None) -> TenantInfo:
    """Organization profile and user counts.

    This is the first Graph call of a run; an authentication failure here
    raises AuthError instead of being recorded.
    """
    try:
        logger.info("Collecting tenant information...")
        org_response = await graph_client.organization.get()
        orgs = getattr(org_response, 'value', None) or []
        tenant_id = str(orgs[0].id) if orgs and orgs[0].id else ""
        tenant_name = (orgs[0].display_name if orgs else None) or "Unknown"

        query_params = UsersRequestBuilder.UsersRequestBuilderGetQueryParameters(
            select=["id", "accountEnabled", "userType", "userPrincipalName"],
            top=999,
        )
        config = RequestConfiguration(query_parameters=query_params)
        users_response = await graph_client.users.get(request_configuration=config)
        users = await collect_all_pages(
            users_response,
            lambda link: graph_client.users.with_url(link).get()
        )

        info = TenantInfo(
            tenant_id=tenant_id,
            tenant_name=tenant_name,
            total_users=len(users),
            active_users=sum(1 for u in users if u.account_enabled),
            guest_users=sum(1 for u in users if (u.user_type or '') == 'Guest'),
        )
        logger.info(f"Tenant '{info.tenant_name}': {info.total_users} users "
                    f"({info.active_users} active, {info.guest_users} guests)")
        return info

    except Exception as e:
        check_and_raise_auth_error(e, "read tenant information")
        _record_failure(errors, "tenant information", e)
        return TenantInfo(available=False)


async def collect_license_skus(
    graph_client: GraphServiceClient, errors: Optional[List[str]] = None
) -> Optional[List[LicenseSku]]:
    """Subscribed SKUs resolved against the storage limit table."""
    try:
        logger.info("Collecting subscribed licenses...")
        response = await graph_client.subscribed_skus.get()

        skus = []
        for sku in getattr(response, 'value', None) or []:
            try:
                prepaid = getattr(sku, 'prepaid_units', None)
                skus.append(build_license_sku(
                    sku_id=str(sku.sku_id) if sku.sku_id else '',
                    sku_part_number=sku.sku_part_number or '',
                    assigned_units=(prepaid.enabled if prepaid else 0) or 0,
                    consumed_units=sku.consumed_units or 0,
                ))
            except (TypeError, ValueError) as e:
                logger.debug(f"Failed to process license SKU: {e}")

        logger.info(f"Collected {len(skus)} license SKUs")
        return skus

    except Exception as e:
        _record_failure(errors, "license SKUs", e)
        return None


# =============================================================================
# Usage Reports
# =============================================================================

async def collect_mailbox_usage(
    graph_client: GraphServiceClient,
    period: str,
    skip_recoverable_items: bool = False,
    skip_archive_mailbox: bool = False,
    errors: Optional[List[str]] = None,
) -> Optional[List[UsageRecord]]:
    """Exchange mailbox usage detail report for the period (e.g. 'D180')."""
    try:
        logger.info("Collecting mailbox usage...")
        content = await graph_client.reports.get_mailbox_usage_detail_with_period(period).get()
        records = parse_mailbox_rows(read_report_csv(content), skip_recoverable_items, skip_archive_mailbox)
        logger.info(f"Collected {len(records)} mailbox usage records")
        return records
    except Exception as e:
        _record_failure(errors, "mailbox usage", e)
        return None


async def collect_onedrive_usage(
    graph_client: GraphServiceClient, period: str, errors: Optional[List[str]] = None
) -> Optional[List[UsageRecord]]:
    """OneDrive for Business account usage detail report."""
    try:
        logger.info("Collecting OneDrive usage...")
        content = await graph_client.reports.get_one_drive_usage_account_detail_with_period(period).get()
        records = parse_onedrive_rows(read_report_csv(content))
        logger.info(f"Collected {len(records)} OneDrive usage records")
        return records
    except Exception as e:
        _record_failure(errors, "OneDrive usage", e)
        return None


async def collect_sharepoint_usage(
    graph_client: GraphServiceClient, period: str, errors: Optional[List[str]] = None
) -> Optional[List[UsageRecord]]:
    """SharePoint site usage detail report."""
    try:
        logger.info("Collecting SharePoint usage...")
        content = await graph_client.reports.get_share_point_site_usage_detail_with_period(period).get()
        records = parse_sharepoint_rows(read_report_csv(content))
        logger.info(f"Collected {len(records)} SharePoint usage records")
        return records
    except Exception as e:
        _record_failure(errors, "SharePoint usage", e)
        return None


# =============================================================================
# Groups, Teams & Planner
# =============================================================================

async def collect_group_counts(
    graph_client: GraphServiceClient, errors: Optional[List[str]] = None
) -> Tuple[Optional[int], Optional[int], List[Any]]:
    """
    Count groups and Teams-enabled groups.

    Returns:
        (team_count, group_count, unified_groups); counts are None on failure
    """
    try:
        logger.info("Collecting groups and Teams...")
        query_params = GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
            select=["id", "displayName", "groupTypes", "resourceProvisioningOptions"],
            top=999,
        )
        config = RequestConfiguration(query_parameters=query_params)
        response = await graph_client.groups.get(request_configuration=config)
        groups = await collect_all_pages(
            response,
            lambda link: graph_client.groups.with_url(link).get()
        )

        teams = [g for g in groups if 'Team' in (g.resource_provisioning_options or [])]
        unified = [g for g in groups if 'Unified' in (g.group_types or [])]
        logger.info(f"Collected {len(groups)} groups ({len(teams)} Teams)")
        return len(teams), len(groups), unified

    except Exception as e:
        _record_failure(errors, "groups and Teams", e)
        return None, None, []


async def collect_planner_sample(
    graph_client: GraphServiceClient,
    groups: Sequence[Any],
    sample_size: int = PLANNER_SAMPLE_SIZE,
    errors: Optional[List[str]] = None,
) -> Optional[List[PlannerSample]]:
    """Planner plan counts for the first `sample_size` Microsoft 365 groups."""
    try:
        logger.info(f"Sampling Planner plans from up to {sample_size} groups...")
        samples = []
        for group in list(groups)[:sample_size]:
            try:
                response = await graph_client.groups.by_group_id(group.id).planner.plans.get()
                plans = getattr(response, 'value', None) or []
                samples.append(PlannerSample(group_name=group.display_name or group.id, plan_count=len(plans)))
            except Exception as e:
                logger.debug(f"Failed to read Planner plans for group {group.id}: {e}")
        logger.info(f"Sampled Planner plans from {len(samples)} groups")
        return samples
    except Exception as e:
        _record_failure(errors, "Planner sample", e)
        return None


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


async def resolve_group_members(
    graph_client: GraphServiceClient, group_name: str, errors: Optional[List[str]] = None
) -> Optional[Set[str]]:
    """
    Lower-cased principal names of a group's members.

    Returns None when the group cannot be resolved; sizing then covers the
    whole tenant.
    """
    try:
        logger.info(f"Resolving members of group '{group_name}'...")
        query_params = GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
            filter=f"displayName eq '{_odata_quote(group_name)}'",
            select=["id", "displayName"],
        )
        config = RequestConfiguration(query_parameters=query_params)
        result = await graph_client.groups.get(request_configuration=config)
        if not result or not result.value:
            logger.warning(f"Group '{group_name}' not found; collecting without group scope")
            return None

        group_id = result.value[0].id
        members_builder = graph_client.groups.by_group_id(group_id).members
        response = await members_builder.get()
        members = await collect_all_pages(
            response,
            lambda link: members_builder.with_url(link).get()
        )

        names = set()
        for member in members:
            principal = getattr(member, 'user_principal_name', None) or getattr(member, 'mail', None)
            if principal:
                names.add(principal.lower())
        logger.info(f"Group '{group_name}' has {len(names)} user members")
        return names

    except Exception as e:
        _record_failure(errors, f"members of group '{group_name}'", e)
        return None


def filter_by_members(
    records: Optional[List[UsageRecord]], members: Optional[Set[str]]
) -> Optional[List[UsageRecord]]:
    """Keep records whose principal name belongs to the member set."""
    if records is None or members is None:
        return records
    return [r for r in records if (r.principal_name or '').lower() in members]


# =============================================================================
# Snapshot
# =============================================================================

def _records_gb(service_name: str, records: Optional[List[UsageRecord]]) -> float:
    return total_storage_gb([aggregate_service(service_name, records)])


async def collect_tenant_snapshot(
    graph_client: GraphServiceClient, settings: SizingSettings, show_progress: bool = True
) -> TenantSnapshot:
    """Run every collector in sequence and assemble the tenant snapshot."""
    errors: List[str] = []
    period = settings.report_period
    total_steps = 7 + (1 if settings.group else 0)

    with ProgressTracker("M365", total_steps=total_steps, show_progress=show_progress) as tracker:
        tracker.update_task("Collecting tenant information...")
        tenant = await get_tenant_info(graph_client, errors)
        tracker.complete_step(tenant.total_users)

        tracker.update_task("Collecting licenses...")
        skus = await collect_license_skus(graph_client, errors)
        tracker.complete_step(len(skus or []), failed=skus is None)

        members = None
        if settings.group:
            tracker.update_task(f"Resolving group '{settings.group}'...")
            members = await resolve_group_members(graph_client, settings.group, errors)
            tracker.complete_step(len(members or []), failed=members is None)

        tracker.update_task("Collecting mailbox usage...")
        mailboxes = await collect_mailbox_usage(
            graph_client, period,
            skip_recoverable_items=settings.skip_recoverable_items,
            skip_archive_mailbox=settings.skip_archive_mailbox,
            errors=errors,
        )
        mailboxes = filter_by_members(mailboxes, members)
        tracker.complete_step(len(mailboxes or []), _records_gb(SERVICE_EXCHANGE, mailboxes),
                              failed=mailboxes is None)

        tracker.update_task("Collecting OneDrive usage...")
        onedrive = filter_by_members(await collect_onedrive_usage(graph_client, period, errors), members)
        tracker.complete_step(len(onedrive or []), _records_gb(SERVICE_ONEDRIVE, onedrive),
                              failed=onedrive is None)

        tracker.update_task("Collecting SharePoint usage...")
        sharepoint = await collect_sharepoint_usage(graph_client, period, errors)
        tracker.complete_step(len(sharepoint or []), _records_gb(SERVICE_SHAREPOINT, sharepoint),
                              failed=sharepoint is None)

        tracker.update_task("Collecting groups and Teams...")
        team_count, group_count, unified_groups = await collect_group_counts(graph_client, errors)
        tracker.complete_step(group_count or 0, failed=group_count is None)

        tracker.update_task("Sampling Planner plans...")
        planner = None
        if group_count is not None:
            planner = await collect_planner_sample(graph_client, unified_groups, errors=errors)
        tracker.complete_step(len(planner or []), failed=planner is None)

    if settings.skip_archive_mailbox:
        logger.warning("Archive mailbox analysis skipped")

    return TenantSnapshot(
        tenant=tenant,
        period_days=settings.period_days,
        license_skus=tuple(skus) if skus is not None else None,
        mailbox_records=tuple(mailboxes) if mailboxes is not None else None,
        onedrive_records=tuple(onedrive) if onedrive is not None else None,
        sharepoint_records=tuple(sharepoint) if sharepoint is not None else None,
        team_count=team_count,
        group_count=group_count,
        planner_sample=tuple(planner) if planner is not None else None,
        archive_analyzed=not settings.skip_archive_mailbox,
        errors=tuple(errors),
    )


# =============================================================================
# Main
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='M365 Sizing - Microsoft 365 backup sizing report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Using environment variables (client secret MUST be env var)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"
    python m365_sizing.py

    # Interactive browser sign-in
    python m365_sizing.py --auth-mode interactive

    # Size one group, archive licensing mode
    python m365_sizing.py --group "Backup Pilot" --licensing-mode archive

    # Write a sample config file
    python m365_sizing.py --generate-config > m365-sizing.yaml

Required Azure AD App Permissions (Application type):
    - Reports.Read.All, User.Read.All, Organization.Read.All
    - Group.Read.All, Tasks.Read.All

Security Note:
    Client secrets must be provided via MS365_CLIENT_SECRET environment
    variable to avoid exposing secrets in shell history or process listings.
        """
    )

    parser.add_argument('--auth-mode', choices=VALID_AUTH_MODES,
                        help='Authentication mode (default: app, or M365_SIZER_AUTH_MODE)')
    parser.add_argument('--tenant-id',
                        help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id',
                        help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    # Client secret is env-var only for security (no CLI arg to avoid shell history exposure)
    parser.add_argument('--group',
                        help='Only size mailboxes and OneDrive accounts of this group\'s members')
    parser.add_argument('--skip-archive-mailbox', action='store_true',
                        help='Skip archive mailbox analysis')
    parser.add_argument('--skip-recoverable-items', action='store_true',
                        help='Exclude recoverable (deleted) items from mailbox storage')
    parser.add_argument('--annual-growth', type=int,
                        help='Custom annual growth rate in percent (default: 30)')
    parser.add_argument('--period', type=int, choices=VALID_PERIOD_DAYS,
                        help='Usage report period in days (default: 180)')
    parser.add_argument('--licensing-mode', choices=VALID_LICENSING_MODES,
                        help='Mailbox licensing evaluation shown in the report (default: shared)')
    parser.add_argument('--output-dir', '-o',
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--config',
                        help='Path to YAML config file (default: ./m365-sizing.yaml if present)')
    parser.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def report_paths(output_dir: str, timestamp: str) -> Tuple[str, str]:
    """HTML report and JSON export paths for one run."""
    base = os.path.join(output_dir, f"{REPORT_FILE_PREFIX}_{timestamp}")
    return f"{base}.html", f"{base}.json"


def main(argv: Optional[Sequence[str]] = None):
    args = build_parser().parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        sys.exit(0)

    # Resolve configuration from env/file/args
    try:
        settings = build_settings(load_config(args))
    except ConfigError as e:
        fallback_dir = args.output_dir or os.environ.get('M365_SIZER_OUTPUT') or DEFAULT_OUTPUT_DIR
        setup_logging(args.log_level or 'INFO', output_dir=fallback_dir)
        logger.error(f"Configuration error: {e}")
        logger.error("Run with --help for more information.")
        sys.exit(1)

    log_file = setup_logging(settings.log_level, output_dir=settings.output_dir)

    if settings.tenant_id:
        print(f"Tenant: {mask_tenant_id(settings.tenant_id)}")
    print(f"Auth mode: {settings.auth_mode}")
    print(f"Output: {settings.output_dir}\n")

    # Initialize Graph client
    try:
        logger.info("Initializing Microsoft Graph client...")
        graph_client = get_graph_client(settings)
    except Exception as e:
        logger.error(f"Failed to initialize Graph client: {e}")
        sys.exit(1)

    try:
        snapshot = asyncio.run(collect_tenant_snapshot(graph_client, settings))
    except AuthError as e:
        logger.error(str(e))
        logger.error("Check the app registration credentials and granted API permissions.")
        sys.exit(1)

    report = build_sizing_report(snapshot, settings)

    print_summary_table([s.to_dict() for s in report.services])

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    html_path, json_path = report_paths(settings.output_dir, timestamp)
    write_html_report(report, html_path)
    export_json(report, json_path)

    if report.errors:
        print(f"\n{len(report.errors)} collection step(s) failed; see the report and log for details.")
    print(f"\nReport saved: {html_path}")
    print(f"Export saved: {json_path}")
    if log_file:
        print(f"Log saved: {log_file}")


if __name__ == '__main__':
    main()
