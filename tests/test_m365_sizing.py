"""
Tests for the Microsoft 365 sizing collector using unittest.mock.

Covers:
- usage report CSV parsing (mailbox, OneDrive, SharePoint)
- tenant, license, usage, group and Planner collectors
- group-scoped collection
- failure handling (recorded vs. fatal authentication errors)
- command-line entry point
"""
import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock, Mock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from m365_sizing import (
    build_parser,
    collect_all_pages,
    collect_group_counts,
    collect_license_skus,
    collect_mailbox_usage,
    collect_onedrive_usage,
    collect_planner_sample,
    collect_sharepoint_usage,
    collect_tenant_snapshot,
    filter_by_members,
    get_graph_client,
    get_tenant_info,
    main,
    parse_mailbox_rows,
    parse_onedrive_rows,
    parse_sharepoint_rows,
    read_report_csv,
    report_paths,
    resolve_group_members,
)
from sizer.config import SizingSettings
from sizer.models import UsageRecord
from sizer.utils import AuthError

GB = 1024 ** 3

MAILBOX_CSV = (
    "\ufeffReport Refresh Date,User Principal Name,Display Name,Is Deleted,Storage Used (Byte),"
    "Deleted Item Size (Byte),Has Archive,Recipient Type,Report Period\n"
    f"2024-06-01,alice@contoso.com,Alice,False,{2 * GB},{GB},True,User,180\n"
    f"2024-06-01,bob@contoso.com,Bob,False,{GB},0,False,User,180\n"
    f"2024-06-01,support@contoso.com,Support,False,{3 * GB},0,False,Shared,180\n"
    f"2024-06-01,gone@contoso.com,Gone,True,{9 * GB},0,False,User,180\n"
).encode('utf-8')

ONEDRIVE_CSV = (
    "Report Refresh Date,Site Id,Site URL,Owner Display Name,Is Deleted,Owner Principal Name,"
    "Storage Used (Byte),Report Period\n"
    f"2024-06-01,od-1,https://contoso-my.sharepoint.com/personal/alice,Alice,False,alice@contoso.com,{5 * GB},180\n"
    f"2024-06-01,od-2,https://contoso-my.sharepoint.com/personal/carol,Carol,False,carol@contoso.com,{GB},180\n"
).encode('utf-8')

SHAREPOINT_CSV = (
    "Report Refresh Date,Site Id,Site URL,Owner Display Name,Is Deleted,Storage Used (Byte),"
    "Root Web Template,Report Period\n"
    f"2024-06-01,sp-1,https://contoso.sharepoint.com/sites/intranet,Admin,False,{10 * GB},Communication Site,180\n"
    f"2024-06-01,sp-2,https://contoso.sharepoint.com/sites/sales,Sales,False,{4 * GB},Group,180\n"
).encode('utf-8')


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    return SizingSettings(tenant_id="12345678-1234-1234-1234-123456789012",
                          client_id="client-123", client_secret="secret-123")


@pytest.fixture
def mock_graph_client():
    """Graph client whose collectors all succeed."""
    client = Mock()

    org = Mock()
    org.id = "12345678-1234-1234-1234-123456789012"
    org.display_name = "Contoso"
    client.organization.get = AsyncMock(return_value=page([org]))

    client.users.get = AsyncMock(return_value=page([
        create_mock_user("alice@contoso.com"),
        create_mock_user("bob@contoso.com", enabled=False),
        create_mock_user("guest_ext#EXT#@contoso.com", user_type="Guest"),
    ]))

    client.subscribed_skus.get = AsyncMock(return_value=page([
        create_mock_sku("SPE_E3", consumed=2),
        create_mock_sku("FLOW_FREE", consumed=100),
    ]))

    client.reports.get_mailbox_usage_detail_with_period.return_value.get = AsyncMock(return_value=MAILBOX_CSV)
    client.reports.get_one_drive_usage_account_detail_with_period.return_value.get = AsyncMock(
        return_value=ONEDRIVE_CSV)
    client.reports.get_share_point_site_usage_detail_with_period.return_value.get = AsyncMock(
        return_value=SHAREPOINT_CSV)

    client.groups.get = AsyncMock(return_value=page([
        create_mock_group("g1", "Sales", is_team=True),
        create_mock_group("g2", "Marketing"),
        create_mock_group("g3", "Security", unified=False),
    ]))
    client.groups.by_group_id.return_value.planner.plans.get = AsyncMock(return_value=page([Mock(), Mock()]))
    return client


# =============================================================================
# Helper Functions
# =============================================================================

def page(items, next_link=None):
    """One page of a Graph collection response."""
    response = Mock()
    response.value = items
    response.odata_next_link = next_link
    return response


def create_mock_user(upn: str, enabled: bool = True, user_type: str = "Member"):
    user = Mock()
    user.user_principal_name = upn
    user.mail = upn
    user.account_enabled = enabled
    user.user_type = user_type
    return user


def create_mock_sku(part_number: str, consumed: int = 0, enabled: int = 0):
    sku = Mock()
    sku.sku_id = f"id-{part_number.lower()}"
    sku.sku_part_number = part_number
    sku.consumed_units = consumed
    sku.prepaid_units = Mock()
    sku.prepaid_units.enabled = enabled or consumed
    return sku


def create_mock_group(group_id: str, display_name: str, is_team: bool = False, unified: bool = True):
    group = Mock()
    group.id = group_id
    group.display_name = display_name
    group.group_types = ["Unified"] if unified else []
    group.resource_provisioning_options = ["Team"] if is_team else []
    return group


class ClientAuthenticationError(Exception):
    """Stand-in with the azure-identity class name."""


# =============================================================================
# CSV Parsing Tests
# =============================================================================

class TestReportCsv:
    """Tests for usage report CSV parsing."""

    def test_bytes_with_bom(self):
        rows = read_report_csv(MAILBOX_CSV)
        assert rows[0]['Report Refresh Date'] == '2024-06-01'
        assert len(rows) == 4

    def test_text_with_bom(self):
        rows = read_report_csv(MAILBOX_CSV.decode('utf-8'))
        assert 'Report Refresh Date' in rows[0]

    def test_empty(self):
        assert read_report_csv(b"") == []
        assert read_report_csv(None) == []

    def test_mailbox_rows(self):
        records = parse_mailbox_rows(read_report_csv(MAILBOX_CSV))

        assert [r.display_name for r in records] == ["Alice", "Bob", "Support"]
        # Recoverable items are included by default
        assert records[0].storage_used_bytes == 3 * GB
        assert records[0].has_archive is True
        assert records[2].kind == "Shared"
        assert records[0].principal_name == "alice@contoso.com"

    def test_mailbox_skip_recoverable_items(self):
        records = parse_mailbox_rows(read_report_csv(MAILBOX_CSV), skip_recoverable_items=True)
        assert records[0].storage_used_bytes == 2 * GB

    def test_mailbox_skip_archive(self):
        records = parse_mailbox_rows(read_report_csv(MAILBOX_CSV), skip_archive_mailbox=True)
        assert not any(r.has_archive for r in records)

    def test_malformed_row_skipped(self):
        rows = [
            {'User Principal Name': 'x@contoso.com', 'Storage Used (Byte)': 'lots'},
            {'User Principal Name': 'y@contoso.com', 'Storage Used (Byte)': '1024'},
        ]
        records = parse_mailbox_rows(rows)

        assert len(records) == 1
        assert records[0].entity_id == 'y@contoso.com'

    def test_onedrive_rows(self):
        records = parse_onedrive_rows(read_report_csv(ONEDRIVE_CSV))

        assert len(records) == 2
        assert records[0].entity_id == "od-1"
        assert records[0].display_name == "Alice"
        assert records[0].principal_name == "alice@contoso.com"
        assert records[0].storage_used_bytes == 5 * GB

    def test_sharepoint_rows_named_by_url(self):
        records = parse_sharepoint_rows(read_report_csv(SHAREPOINT_CSV))

        assert records[0].display_name == "https://contoso.sharepoint.com/sites/intranet"
        assert records[1].kind == "Group"


# =============================================================================
# Pagination Tests
# =============================================================================

class TestCollectAllPages:
    """Tests for collect_all_pages helper."""

    def test_follows_next_link(self):
        pages = {"next-1": page([3, 4], "next-2"), "next-2": page([5])}
        get_next = AsyncMock(side_effect=lambda link: pages[link])

        items = asyncio.run(collect_all_pages(page([1, 2], "next-1"), get_next))

        assert items == [1, 2, 3, 4, 5]
        assert get_next.await_count == 2

    def test_stops_on_page_error(self):
        get_next = AsyncMock(side_effect=Exception("throttled"))
        items = asyncio.run(collect_all_pages(page([1], "next-1"), get_next))
        assert items == [1]

    def test_none_response(self):
        assert asyncio.run(collect_all_pages(None, AsyncMock())) == []


# =============================================================================
# Collector Tests
# =============================================================================

class TestTenantInfo:
    """Tests for get_tenant_info."""

    def test_counts(self, mock_graph_client):
        info = asyncio.run(get_tenant_info(mock_graph_client))

        assert info.tenant_name == "Contoso"
        assert info.total_users == 3
        assert info.available is True
        assert info.active_users == 2
        assert info.guest_users == 1

    def test_failure_recorded(self, mock_graph_client):
        mock_graph_client.organization.get = AsyncMock(side_effect=Exception("API Error"))
        errors = []

        info = asyncio.run(get_tenant_info(mock_graph_client, errors))

        assert info.tenant_name == "Unknown"
        assert info.total_users == 0
        assert info.available is False
        assert len(errors) == 1
        assert "tenant information" in errors[0]

    def test_auth_failure_is_fatal(self, mock_graph_client):
        mock_graph_client.organization.get = AsyncMock(side_effect=ClientAuthenticationError("bad secret"))

        with pytest.raises(AuthError):
            asyncio.run(get_tenant_info(mock_graph_client, []))


class TestLicenseCollection:
    """Tests for collect_license_skus."""

    def test_basic(self, mock_graph_client):
        skus = asyncio.run(collect_license_skus(mock_graph_client))

        assert [s.sku_part_number for s in skus] == ["SPE_E3", "FLOW_FREE"]
        assert skus[0].storage_limit_gb == 100
        assert skus[0].consumed_units == 2

    def test_error_handling(self, mock_graph_client):
        mock_graph_client.subscribed_skus.get = AsyncMock(side_effect=Exception("API Error"))
        errors = []

        assert asyncio.run(collect_license_skus(mock_graph_client, errors)) is None
        assert errors == ["Failed to collect license SKUs: API Error"]


class TestUsageCollection:
    """Tests for the usage report collectors."""

    def test_mailbox_usage_uses_period(self, mock_graph_client):
        records = asyncio.run(collect_mailbox_usage(mock_graph_client, "D90"))

        mock_graph_client.reports.get_mailbox_usage_detail_with_period.assert_called_once_with("D90")
        assert len(records) == 3

    def test_onedrive_usage(self, mock_graph_client):
        records = asyncio.run(collect_onedrive_usage(mock_graph_client, "D180"))
        assert len(records) == 2

    def test_sharepoint_usage(self, mock_graph_client):
        records = asyncio.run(collect_sharepoint_usage(mock_graph_client, "D180"))
        assert len(records) == 2

    def test_failure_returns_none(self, mock_graph_client):
        mock_graph_client.reports.get_one_drive_usage_account_detail_with_period.return_value.get = AsyncMock(
            side_effect=Exception("403 Forbidden"))
        errors = []

        assert asyncio.run(collect_onedrive_usage(mock_graph_client, "D180", errors)) is None
        assert "OneDrive usage" in errors[0]

    def test_empty_report(self, mock_graph_client):
        mock_graph_client.reports.get_share_point_site_usage_detail_with_period.return_value.get = AsyncMock(
            return_value=b"")
        assert asyncio.run(collect_sharepoint_usage(mock_graph_client, "D180")) == []


class TestGroupCollection:
    """Tests for group, Teams and Planner collectors."""

    def test_group_counts(self, mock_graph_client):
        teams, groups, unified = asyncio.run(collect_group_counts(mock_graph_client))

        assert teams == 1
        assert groups == 3
        assert [g.id for g in unified] == ["g1", "g2"]

    def test_group_counts_failure(self, mock_graph_client):
        mock_graph_client.groups.get = AsyncMock(side_effect=Exception("API Error"))
        assert asyncio.run(collect_group_counts(mock_graph_client, [])) == (None, None, [])

    def test_planner_sample_limited(self, mock_graph_client):
        groups = [create_mock_group(f"g{i}", f"Group {i}") for i in range(8)]
        samples = asyncio.run(collect_planner_sample(mock_graph_client, groups, sample_size=5))

        assert len(samples) == 5
        assert samples[0].group_name == "Group 0"
        assert samples[0].plan_count == 2

    def test_planner_per_group_failure_skipped(self, mock_graph_client):
        mock_graph_client.groups.by_group_id.return_value.planner.plans.get = AsyncMock(
            side_effect=[page([Mock()]), Exception("404"), page([])])
        groups = [create_mock_group(f"g{i}", f"Group {i}") for i in range(3)]

        samples = asyncio.run(collect_planner_sample(mock_graph_client, groups))

        assert [s.plan_count for s in samples] == [1, 0]


class TestGroupScope:
    """Tests for group member resolution and filtering."""

    def test_resolve_members(self, mock_graph_client):
        mock_graph_client.groups.get = AsyncMock(return_value=page([create_mock_group("pilot", "Pilot")]))
        mock_graph_client.groups.by_group_id.return_value.members.get = AsyncMock(return_value=page([
            create_mock_user("Alice@Contoso.com"),
            create_mock_user("carol@contoso.com"),
        ]))

        members = asyncio.run(resolve_group_members(mock_graph_client, "Pilot"))

        assert members == {"alice@contoso.com", "carol@contoso.com"}
        mock_graph_client.groups.by_group_id.assert_called_with("pilot")

    def test_group_not_found(self, mock_graph_client):
        mock_graph_client.groups.get = AsyncMock(return_value=page([]))
        errors = []

        assert asyncio.run(resolve_group_members(mock_graph_client, "Nobody", errors)) is None
        assert errors == []

    def test_filter_by_members(self):
        records = [
            UsageRecord("a", "A", principal_name="Alice@contoso.com"),
            UsageRecord("b", "B", principal_name="bob@contoso.com"),
            UsageRecord("c", "C"),
        ]
        kept = filter_by_members(records, {"alice@contoso.com"})
        assert [r.entity_id for r in kept] == ["a"]

    def test_filter_passthrough(self):
        records = [UsageRecord("a", "A")]
        assert filter_by_members(records, None) is records
        assert filter_by_members(None, {"x"}) is None


# =============================================================================
# Snapshot Tests
# =============================================================================

class TestCollectTenantSnapshot:
    """Tests for collect_tenant_snapshot."""

    def test_full_snapshot(self, mock_graph_client, settings):
        snapshot = asyncio.run(collect_tenant_snapshot(mock_graph_client, settings, show_progress=False))

        assert snapshot.tenant.tenant_name == "Contoso"
        assert len(snapshot.license_skus) == 2
        assert len(snapshot.mailbox_records) == 3
        assert len(snapshot.onedrive_records) == 2
        assert len(snapshot.sharepoint_records) == 2
        assert snapshot.team_count == 1
        assert snapshot.group_count == 3
        assert len(snapshot.planner_sample) == 2
        assert snapshot.archive_analyzed is True
        assert snapshot.errors == ()
        mock_graph_client.reports.get_mailbox_usage_detail_with_period.assert_called_once_with("D180")

    def test_partial_failure_continues(self, mock_graph_client, settings):
        mock_graph_client.reports.get_mailbox_usage_detail_with_period.return_value.get = AsyncMock(
            side_effect=Exception("API Error"))

        snapshot = asyncio.run(collect_tenant_snapshot(mock_graph_client, settings, show_progress=False))

        assert snapshot.mailbox_records is None
        assert snapshot.onedrive_records is not None
        assert len(snapshot.errors) == 1

    def test_group_failure_skips_planner(self, mock_graph_client, settings):
        mock_graph_client.groups.get = AsyncMock(side_effect=Exception("API Error"))

        snapshot = asyncio.run(collect_tenant_snapshot(mock_graph_client, settings, show_progress=False))

        assert snapshot.group_count is None
        assert snapshot.planner_sample is None
        mock_graph_client.groups.by_group_id.return_value.planner.plans.get.assert_not_called()

    def test_group_scope(self, mock_graph_client, settings):
        settings.group = "Pilot"
        all_groups = mock_graph_client.groups.get.return_value
        mock_graph_client.groups.get = AsyncMock(side_effect=[
            page([create_mock_group("pilot", "Pilot")]),
            all_groups,
        ])
        mock_graph_client.groups.by_group_id.return_value.members.get = AsyncMock(
            return_value=page([create_mock_user("alice@contoso.com")]))

        snapshot = asyncio.run(collect_tenant_snapshot(mock_graph_client, settings, show_progress=False))

        assert [r.principal_name for r in snapshot.mailbox_records] == ["alice@contoso.com"]
        assert [r.principal_name for r in snapshot.onedrive_records] == ["alice@contoso.com"]
        # SharePoint sites are not owned by individual members
        assert len(snapshot.sharepoint_records) == 2

    def test_skip_archive(self, mock_graph_client, settings):
        settings.skip_archive_mailbox = True
        snapshot = asyncio.run(collect_tenant_snapshot(mock_graph_client, settings, show_progress=False))

        assert snapshot.archive_analyzed is False
        assert not any(r.has_archive for r in snapshot.mailbox_records)


# =============================================================================
# Graph Client Tests
# =============================================================================

class TestGraphClient:
    """Tests for Microsoft Graph client creation."""

    def test_app_credentials(self, settings):
        with patch('m365_sizing.ClientSecretCredential') as mock_cred:
            with patch('m365_sizing.GraphServiceClient') as mock_client:
                client = get_graph_client(settings)

                mock_cred.assert_called_once_with(
                    tenant_id=settings.tenant_id,
                    client_id="client-123",
                    client_secret="secret-123",
                )
                assert client is mock_client.return_value

    def test_interactive(self):
        with patch('m365_sizing.InteractiveBrowserCredential') as mock_cred:
            with patch('m365_sizing.GraphServiceClient'):
                get_graph_client(SizingSettings(auth_mode="interactive", tenant_id="t"))

                mock_cred.assert_called_once_with(tenant_id="t")


# =============================================================================
# CLI Tests
# =============================================================================

class TestMain:
    """Tests for the command-line entry point."""

    @pytest.fixture(autouse=True)
    def clean_env(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('HOME', str(tmp_path))
        for var in ('MS365_TENANT_ID', 'MS365_CLIENT_ID', 'MS365_CLIENT_SECRET',
                    'M365_SIZER_AUTH_MODE', 'M365_SIZER_OUTPUT', 'M365_SIZER_GROUP'):
            monkeypatch.delenv(var, raising=False)

    def test_parser_defaults_are_unset(self):
        args = build_parser().parse_args([])

        assert args.period is None
        assert args.annual_growth is None
        assert args.skip_archive_mailbox is False

    def test_parser_rejects_invalid_period(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--period', '60'])

    def test_generate_config(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(['--generate-config'])

        assert exc_info.value.code == 0
        assert 'licensing:' in capsys.readouterr().out

    def test_missing_credentials_exit(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(['--output-dir', str(tmp_path / 'out')])
        assert exc_info.value.code == 1

    def test_auth_error_exit(self, tmp_path, monkeypatch, mock_graph_client):
        monkeypatch.setenv('MS365_CLIENT_SECRET', 'sup3r-s3cret-value')
        mock_graph_client.organization.get = AsyncMock(side_effect=ClientAuthenticationError("bad secret"))

        with patch('m365_sizing.get_graph_client', return_value=mock_graph_client):
            with pytest.raises(SystemExit) as exc_info:
                main(['--tenant-id', 't', '--client-id', 'c', '--output-dir', str(tmp_path / 'out')])
        assert exc_info.value.code == 1

    def test_writes_report_and_export(self, tmp_path, monkeypatch, mock_graph_client):
        monkeypatch.setenv('MS365_CLIENT_SECRET', 'sup3r-s3cret-value')
        out_dir = tmp_path / 'out'

        with patch('m365_sizing.get_graph_client', return_value=mock_graph_client):
            main(['--tenant-id', 't', '--client-id', 'c', '--output-dir', str(out_dir),
                  '--annual-growth', '25'])

        html_files = list(out_dir.glob('m365_sizing_report_*.html'))
        json_files = list(out_dir.glob('m365_sizing_report_*.json'))
        assert len(html_files) == 1
        assert len(json_files) == 1
        assert list(out_dir.glob('m365_sizing_log_*.log'))

        data = json.loads(json_files[0].read_text())
        assert data['tenant']['tenant_name'] == 'Contoso'
        assert '25' in data['growth']['projections']
        assert 'client_secret' not in data['settings']
        assert 'sup3r-s3cret-value' not in html_files[0].read_text()

    def test_report_paths(self):
        html_path, json_path = report_paths('/tmp/out', '20240601_120000')

        assert html_path == '/tmp/out/m365_sizing_report_20240601_120000.html'
        assert json_path == '/tmp/out/m365_sizing_report_20240601_120000.json'
