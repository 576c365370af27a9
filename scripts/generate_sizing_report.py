#!/usr/bin/env python3
"""
M365 Sizing - Report Generator

Re-renders reports from a sizing JSON export (m365_sizing_report_*.json):
- HTML report (same layout as the collector writes)
- Optional Excel workbook with Summary, Growth, Licensing and Top 5 sheets

Usage:
    python3 scripts/generate_sizing_report.py --export m365_sizing_report_20260101_120000.json
    python3 scripts/generate_sizing_report.py --export report.json --output report.html --xlsx report.xlsx
"""
import argparse
import os
import sys
from typing import Any, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..'))

from sizer.constants import ALL_SERVICES, LICENSING_MODE_ARCHIVE, TOP5_HEADINGS, UNAVAILABLE  # noqa: E402
from sizer.models import SizingReport  # noqa: E402
from sizer.report import write_html_report  # noqa: E402
from sizer.report_reader import load_sizing_export  # noqa: E402


# =============================================================================
# CONSTANTS AND STYLING
# =============================================================================

HEADER_FILL = PatternFill(start_color="0B3D91", end_color="0B3D91", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(name="Calibri", size=16, bold=True, color="0B3D91")
SECTION_FONT = Font(bold=True, size=12, color="0B3D91")
THIN_BORDER = Border(
    left=Side(style='thin'), right=Side(style='thin'),
    top=Side(style='thin'), bottom=Side(style='thin')
)

GB_FORMAT = '#,##0.00'
MONEY_FORMAT = '$#,##0.00'
COUNT_FORMAT = '#,##0'


# =============================================================================
# Sheet Helpers
# =============================================================================

def _write_header(ws, row: int, headers: Sequence[str], start_col: int = 1) -> None:
    for offset, header in enumerate(headers):
        cell = ws.cell(row=row, column=start_col + offset, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center')
        cell.border = THIN_BORDER


def _write_row(ws, row: int, values: Sequence[Any], number_format: Optional[str] = None) -> None:
    for col, value in enumerate(values, 1):
        cell = ws.cell(row=row, column=col, value=value if value is not None else UNAVAILABLE)
        cell.border = THIN_BORDER
        if number_format and col > 1 and isinstance(value, (int, float)):
            cell.number_format = number_format


def _write_pairs(ws, start_row: int, title: str, pairs: List[tuple], number_format: Optional[str] = None) -> int:
    """Write a titled two-column metric block; return the next free row."""
    ws.cell(row=start_row, column=1, value=title).font = SECTION_FONT
    _write_header(ws, start_row + 1, ["Metric", "Value"])
    row = start_row + 2
    for label, value in pairs:
        _write_row(ws, row, [label, value], number_format)
        row += 1
    return row + 1


# =============================================================================
# Sheets
# =============================================================================

def create_summary_sheet(wb: Workbook, report: SizingReport) -> None:
    """Tenant, storage, sites and cost overview."""
    ws = wb.active
    ws.title = "Summary"

    ws['A1'] = f"Microsoft 365 Backup Sizing - {report.tenant.tenant_name}"
    ws['A1'].font = TITLE_FONT
    ws.merge_cells('A1:D1')
    ws['A2'] = f"Generated {report.generated_at} | Run {report.run_id} | Period {report.period_days} days"

    tenant = report.tenant
    known = tenant.available
    row = _write_pairs(ws, 4, "TENANT", [
        ("Total Users", tenant.total_users if known else None),
        ("Active Users", tenant.active_users if known else None),
        ("Guest Users", tenant.guest_users if known else None),
        ("Teams", report.team_count),
        ("Groups", report.group_count),
    ], COUNT_FORMAT)

    storage = []
    for name in ALL_SERVICES:
        totals = report.service(name)
        available = totals is not None and totals.available
        storage.append((f"{name} (GB)", totals.total_gb if available else None))
    storage.append(("Total Storage (GB)", report.breakdown.total_gb))
    row = _write_pairs(ws, row, "STORAGE", storage, GB_FORMAT)

    sites = report.sites
    row = _write_pairs(ws, row, "SITES", [
        ("OneDrive Accounts", sites.onedrive_accounts),
        ("SharePoint Sites", sites.sharepoint_sites),
        ("Teams Sites", sites.teams_sites),
        ("Total Sites", sites.total_sites),
    ], COUNT_FORMAT)

    cost = report.cost
    row = _write_pairs(ws, row, "COST ESTIMATE" + (" (SYNTHETIC)" if cost.is_synthetic else ""), [
        ("Monthly Storage Cost", cost.monthly_storage_cost),
        ("Monthly Worker Cost", cost.monthly_worker_cost),
        ("Monthly User Cost", cost.per_user_monthly_cost),
        ("Total Monthly Cost", cost.total_monthly_cost),
        ("Annual Cost", cost.total_annual_cost),
    ], MONEY_FORMAT)

    if report.errors:
        ws.cell(row=row, column=1, value="COLLECTION ISSUES").font = SECTION_FONT
        for offset, error in enumerate(report.errors, 1):
            ws.cell(row=row + offset, column=1, value=error)

    ws.column_dimensions['A'].width = 32
    ws.column_dimensions['B'].width = 20


def create_growth_sheet(wb: Workbook, report: SizingReport) -> None:
    """Growth projection table."""
    ws = wb.create_sheet("Growth")
    _write_header(ws, 1, ["Growth Rate (%)", "Projected Size (GB)", "Increase (GB)"])
    current = report.growth.current_gb
    for row, (rate, projected) in enumerate(report.growth.projections.items(), 2):
        _write_row(ws, row, [rate, projected, projected - current], GB_FORMAT)
    for col in ('A', 'B', 'C'):
        ws.column_dimensions[col].width = 22


def create_licensing_sheet(wb: Workbook, report: SizingReport) -> None:
    """Entitlement, mailbox mix and subscribed SKUs."""
    ws = wb.create_sheet("Licensing")
    lic = report.licensing
    ok = lic.available
    row = _write_pairs(ws, 1, "ENTITLEMENT", [
        ("Total Licensed Users", lic.total_licensed_users if ok else None),
        (f"Entitlement ({lic.per_user_gb:g} GB/user)", lic.total_entitlement_gb if ok else None),
        ("Current Usage (GB)", lic.current_usage_gb),
        ("Excess Storage (GB)", lic.excess_gb if ok else None),
        ("Additional Licenses Needed", lic.additional_units_needed if ok else None),
        ("Usage per Licensed User (GB)", lic.usage_per_user_gb if ok else None),
    ], GB_FORMAT)

    mix = report.mailbox_mix
    pairs = [
        ("Total Mailboxes", mix.total),
        ("Regular Mailboxes", mix.regular),
        ("Shared Mailboxes", mix.shared),
        ("Resource Mailboxes", mix.resource),
        ("Archive Mailboxes", mix.archive if mix.archive_analyzed else None),
    ]
    if report.licensing_mode == LICENSING_MODE_ARCHIVE:
        arch = report.archive_licensing
        pairs.extend([
            ("Archive Threshold", arch.archive_threshold),
            ("Excess Archive", arch.excess_archive),
            ("Additional Licenses (Archive)", arch.additional_units_for_archive),
        ])
    else:
        allowance_ok = mix.available and mix.allowance_available
        pairs.extend([
            ("20% Allowance", mix.shared_allowance if allowance_ok else None),
            ("Excess Shared", mix.excess_shared if allowance_ok else None),
            ("Additional Licenses (Shared)", mix.additional_units_for_shared if allowance_ok else None),
        ])
    row = _write_pairs(ws, row, "MAILBOXES", pairs, COUNT_FORMAT)

    ws.cell(row=row, column=1, value="SUBSCRIBED LICENSES").font = SECTION_FONT
    _write_header(ws, row + 1, ["SKU", "Consumed Units", "Storage Limit (GB)", "Tier"])
    row += 2
    for sku in list(lic.skus) + list(lic.excluded_skus):
        excluded = sku in lic.excluded_skus
        name = f"{sku.sku_part_number} (excluded)" if excluded else sku.sku_part_number
        _write_row(ws, row, [name, sku.consumed_units, sku.storage_limit_gb, sku.tier], COUNT_FORMAT)
        row += 1

    ws.column_dimensions['A'].width = 34
    ws.column_dimensions['B'].width = 18
    ws.column_dimensions['C'].width = 18
    ws.column_dimensions['D'].width = 14


def create_top5_sheet(wb: Workbook, report: SizingReport) -> None:
    """Largest entities per service."""
    ws = wb.create_sheet("Top 5")
    row = 1
    for name in ALL_SERVICES:
        totals = report.service(name)
        ws.cell(row=row, column=1, value=TOP5_HEADINGS[name]).font = SECTION_FONT
        _write_header(ws, row + 1, ["Name", "Size (GB)"])
        row += 2
        if totals is None or not totals.available:
            _write_row(ws, row, [UNAVAILABLE, None])
            row += 1
        else:
            for entry in totals.top5:
                _write_row(ws, row, [entry.name, entry.size_gb], GB_FORMAT)
                row += 1
        row += 1
    ws.column_dimensions['A'].width = 60
    ws.column_dimensions['B'].width = 14


def generate_excel_report(report: SizingReport, output_path: str) -> None:
    """Write the Excel workbook for a sizing report."""
    wb = Workbook()
    create_summary_sheet(wb, report)
    create_growth_sheet(wb, report)
    create_licensing_sheet(wb, report)
    create_top5_sheet(wb, report)
    wb.save(output_path)


def default_html_path(export_path: str) -> str:
    """report.json -> report_rerendered.html, leaving the collector's report.html alone."""
    root, _ = os.path.splitext(export_path)
    return f"{root}_rerendered.html"


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description='Re-render M365 sizing reports from a JSON export',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 scripts/generate_sizing_report.py --export output/m365_sizing_report_20260101_120000.json
  python3 scripts/generate_sizing_report.py --export report.json --output report.html --xlsx report.xlsx
"""
    )

    parser.add_argument('--export', '-e', required=True,
                        help='Path to sizing JSON export (m365_sizing_report_*.json)')
    parser.add_argument('--output', '-o',
                        help='Output HTML file path (default: export path with _rerendered.html)')
    parser.add_argument('--xlsx',
                        help='Also write an Excel workbook to this path')

    args = parser.parse_args(argv)

    print(f"Loading export: {args.export}")
    try:
        report = load_sizing_export(args.export)
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: could not load {args.export}: {e}")
        sys.exit(1)

    html_path = args.output or default_html_path(args.export)
    write_html_report(report, html_path)
    print(f"Report saved: {html_path}")

    if args.xlsx:
        generate_excel_report(report, args.xlsx)
        print(f"Workbook saved: {args.xlsx}")

    print(f"  - Total Storage: {report.breakdown.total_gb:,.2f} GB")
    additional = report.licensing.additional_units_needed if report.licensing.available else UNAVAILABLE
    print(f"  - Additional Licenses Needed: {additional}")
    print(f"  - Total Monthly Cost: ${report.cost.total_monthly_cost:,.2f}")


if __name__ == '__main__':
    main()
