"""
Tests for scripts/generate_sizing_report.py.

Covers:
- re-rendering HTML from a JSON export
- Excel workbook sheets and values
- command-line handling of bad exports
"""
import os
import sys

import pytest
from openpyxl import load_workbook

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'scripts'))

from scripts.generate_sizing_report import default_html_path, generate_excel_report, main
from sizer.config import SizingSettings
from sizer.licensing import build_license_sku
from sizer.models import TenantInfo, TenantSnapshot, UsageRecord
from sizer.pipeline import build_sizing_report
from sizer.report import export_json
from sizer.report_reader import extract_report_metrics

GB = 1024 ** 3


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sample_report():
    snapshot = TenantSnapshot(
        tenant=TenantInfo(tenant_id="t-1", tenant_name="Fabrikam", total_users=50, active_users=48),
        license_skus=(
            build_license_sku("sku-1", "O365_BUSINESS_PREMIUM", 40, 40),
            build_license_sku("sku-2", "FLOW_FREE", 10000, 12),
        ),
        mailbox_records=(
            UsageRecord("a@fabrikam.com", "Alice", 1500 * GB, "a@fabrikam.com", "User", True),
            UsageRecord("info@fabrikam.com", "Info", 300 * GB, "info@fabrikam.com", "Shared"),
        ),
        onedrive_records=(UsageRecord("od-1", "Alice", 700 * GB, "a@fabrikam.com"),),
        sharepoint_records=None,
        team_count=3,
        group_count=6,
        planner_sample=(),
        errors=("Failed to collect SharePoint usage: 403 Forbidden",),
    )
    return build_sizing_report(snapshot, SizingSettings(annual_growth=50),
                               run_id="run-xlsx", generated_at="2026-01-31T00:00:00Z")


@pytest.fixture
def export_path(sample_report, tmp_path):
    path = tmp_path / "m365_sizing_report_20260131_000000.json"
    export_json(sample_report, str(path))
    return str(path)


# =============================================================================
# Excel Tests
# =============================================================================

class TestExcelGeneration:
    """Tests for generate_excel_report."""

    def test_sheets(self, sample_report, tmp_path):
        path = str(tmp_path / "report.xlsx")
        generate_excel_report(sample_report, path)

        wb = load_workbook(path)
        assert wb.sheetnames == ["Summary", "Growth", "Licensing", "Top 5"]

    def test_growth_sheet(self, sample_report, tmp_path):
        path = str(tmp_path / "report.xlsx")
        generate_excel_report(sample_report, path)

        ws = load_workbook(path)["Growth"]
        rows = list(ws.iter_rows(min_row=2, values_only=True))

        assert [row[0] for row in rows] == [10, 20, 50]
        assert rows[2][1] == 3750.0

    def test_licensing_sheet_lists_excluded_sku(self, sample_report, tmp_path):
        path = str(tmp_path / "report.xlsx")
        generate_excel_report(sample_report, path)

        values = [row[0] for row in load_workbook(path)["Licensing"].iter_rows(values_only=True)]
        assert "O365_BUSINESS_PREMIUM" in values
        assert "FLOW_FREE (excluded)" in values

    def test_unavailable_service(self, sample_report, tmp_path):
        path = str(tmp_path / "report.xlsx")
        generate_excel_report(sample_report, path)

        summary = {row[0]: row[1] for row in load_workbook(path)["Summary"].iter_rows(values_only=True) if row[0]}
        assert summary["SharePoint Online (GB)"] == "N/A"
        assert summary["Exchange Online (GB)"] == 1800.0
        assert "Failed to collect SharePoint usage: 403 Forbidden" in summary

    def test_unavailable_licensing(self, tmp_path):
        snapshot = TenantSnapshot(
            tenant=TenantInfo(available=False),
            license_skus=None,
            mailbox_records=(UsageRecord("info@fabrikam.com", "Info", GB, "info@fabrikam.com", "Shared"),),
            errors=("Failed to collect license information: 403",),
        )
        path = str(tmp_path / "report.xlsx")
        generate_excel_report(build_sizing_report(snapshot), path)

        wb = load_workbook(path)
        summary = {row[0]: row[1] for row in wb["Summary"].iter_rows(values_only=True) if row[0]}
        licensing = {row[0]: row[1] for row in wb["Licensing"].iter_rows(values_only=True) if row[0]}

        assert summary["Total Users"] == "N/A"
        assert licensing["Total Licensed Users"] == "N/A"
        assert licensing["Additional Licenses Needed"] == "N/A"
        assert licensing["20% Allowance"] == "N/A"
        assert licensing["Shared Mailboxes"] == 1


# =============================================================================
# CLI Tests
# =============================================================================

class TestMain:
    """Tests for the report generator entry point."""

    def test_default_html_path(self):
        assert default_html_path("/out/report.json") == "/out/report_rerendered.html"

    def test_collector_html_not_overwritten(self, export_path, tmp_path):
        original = tmp_path / "m365_sizing_report_20260131_000000.html"
        original.write_text("collector report")

        main(['--export', export_path])

        assert original.read_text() == "collector report"
        assert os.path.exists(default_html_path(export_path))

    def test_renders_html_next_to_export(self, export_path, sample_report):
        main(['--export', export_path])

        html_path = default_html_path(export_path)
        with open(html_path, encoding='utf-8') as f:
            metrics = extract_report_metrics(f.read())

        assert metrics["Total Storage"] == sample_report.breakdown.total_gb
        assert metrics["SharePoint Online"] is None

    def test_output_and_xlsx(self, export_path, tmp_path, capsys):
        html_path = tmp_path / "custom.html"
        xlsx_path = tmp_path / "custom.xlsx"

        main(['--export', export_path, '--output', str(html_path), '--xlsx', str(xlsx_path)])

        assert html_path.exists()
        assert xlsx_path.exists()
        assert "Workbook saved" in capsys.readouterr().out

    def test_missing_export(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(['--export', str(tmp_path / "missing.json")])
        assert exc_info.value.code == 1

    def test_not_a_sizing_export(self, tmp_path):
        path = tmp_path / "inventory.json"
        path.write_text('{"resources": []}')

        with pytest.raises(SystemExit) as exc_info:
            main(['--export', str(path)])
        assert exc_info.value.code == 1
