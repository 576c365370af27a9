"""
HTML report rendering and JSON export for a SizingReport.

Metric panels follow the legacy dashboard convention:

    <div class="metric">
      <div class="metric-value">1,234.56 GB</div>
      <div class="metric-label">Exchange Online</div>
    </div>

The value element immediately precedes its label. Readers match labels by
substring and take the first hit, so a label that is a prefix of another
("Teams" / "Teams Sites", "Groups" / "Groups Sampled") is always rendered
first. The growth table is the only table with three or more columns.
"""
import html
import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .constants import (
    ALL_SERVICES,
    HEADING_TOP5_MAILBOXES,
    LABEL_ACTIVE_USERS,
    LABEL_ADDITIONAL_LICENSES,
    LABEL_ANNUAL_COST,
    LABEL_ARCHIVE_LICENSES,
    LABEL_ARCHIVE_MAILBOXES,
    LABEL_ARCHIVE_PERCENT,
    LABEL_ARCHIVE_THRESHOLD,
    LABEL_CURRENT_USAGE,
    LABEL_ENTITLEMENT_TEMPLATE,
    LABEL_EXCESS_ARCHIVE,
    LABEL_EXCESS_SHARED,
    LABEL_EXCESS_STORAGE,
    LABEL_GROUPS,
    LABEL_GUEST_USERS,
    LABEL_LICENSED_USERS,
    LABEL_MONTHLY_STORAGE_COST,
    LABEL_MONTHLY_USER_COST,
    LABEL_MONTHLY_WORKER_COST,
    LABEL_ONEDRIVE_ACCOUNTS,
    LABEL_PLANNER_GROUPS,
    LABEL_PLANNER_PLANS,
    LABEL_REGULAR_MAILBOXES,
    LABEL_RESOURCE_MAILBOXES,
    LABEL_SHARED_ALLOWANCE,
    LABEL_SHARED_LICENSES,
    LABEL_SHARED_MAILBOXES,
    LABEL_SHAREPOINT_SITES,
    LABEL_TEAMS,
    LABEL_TEAMS_COST_PER_MESSAGE,
    LABEL_TEAMS_COST_PER_MILLION,
    LABEL_TEAMS_SITES,
    LABEL_TENANT_NAME,
    LABEL_TOTAL_MAILBOXES,
    LABEL_TOTAL_MONTHLY_COST,
    LABEL_TOTAL_SITES,
    LABEL_TOTAL_STORAGE,
    LABEL_TOTAL_USERS,
    LABEL_USAGE_PER_USER,
    LICENSING_MODE_ARCHIVE,
    MONTHS_PER_YEAR,
    TEAMS_COST_PER_MESSAGE,
    TEAMS_COST_PER_MILLION,
    TOP5_HEADINGS,
    UNAVAILABLE,
)
from .models import ServiceTotals, SizingReport
from .utils import round_half_away, write_json, write_text

logger = logging.getLogger(__name__)

Metric = Tuple[str, str]


# ---------- formatting ----------

def _esc(v: Any) -> str:
    return "" if v is None else html.escape(str(v))


def _fmt_gb(value: Optional[float]) -> str:
    if value is None:
        return UNAVAILABLE
    return f"{value:,.2f} GB"


def _fmt_count(value: Optional[int]) -> str:
    if value is None:
        return UNAVAILABLE
    return f"{value:,}"


def _fmt_money(value: Optional[float]) -> str:
    if value is None:
        return UNAVAILABLE
    return f"${round_half_away(value, 2):,.2f}"


def _fmt_percent(value: Optional[float]) -> str:
    if value is None:
        return UNAVAILABLE
    return f"{value:g}%"


def _fmt_rate(rate: Any) -> str:
    # Fixed-point only: the reader strips everything but digits, sign and dot
    if float(rate).is_integer():
        return f"{int(rate)}%"
    return f"{rate:f}".rstrip("0").rstrip(".") + "%"


# ---------- building blocks ----------

def _metric(value: str, label: str) -> str:
    return (
        '<div class="metric">'
        f'<div class="metric-value">{_esc(value)}</div>'
        f'<div class="metric-label">{_esc(label)}</div>'
        '</div>'
    )


def _metric_grid(metrics: Iterable[Metric]) -> str:
    panels = "\n".join(_metric(value, label) for value, label in metrics)
    return f'<div class="metrics">\n{panels}\n</div>'


def _table(headers: Sequence[str], rows: Iterable[Sequence[Any]], css_class: str = "") -> str:
    cls = f' class="{css_class}"' if css_class else ""
    head = "".join(f"<th>{_esc(h)}</th>" for h in headers)
    body = "\n".join(
        "<tr>" + "".join(f"<td>{_esc(c)}</td>" for c in row) + "</tr>"
        for row in rows
    )
    return f"<table{cls}>\n<thead><tr>{head}</tr></thead>\n<tbody>\n{body}\n</tbody>\n</table>"


def _section(title: str, body: str, notes: Sequence[str] = ()) -> str:
    note_html = "".join(f'<p class="note">{_esc(n)}</p>' for n in notes)
    return f'<section>\n<h2>{_esc(title)}</h2>\n{body}\n{note_html}</section>'


def _css() -> str:
    return """
body { font-family: "Segoe UI", Arial, sans-serif; margin: 0; background: #f4f6f9; color: #1f2933; }
header { background: #0b3d91; color: #fff; padding: 24px 32px; }
header h1 { margin: 0 0 6px 0; font-size: 26px; }
header .subtitle { font-size: 13px; opacity: .85; }
main { padding: 16px 32px 40px; }
section { background: #fff; border-radius: 8px; margin: 16px 0; padding: 16px 20px;
          box-shadow: 0 1px 3px rgba(0,0,0,.08); }
h2 { font-size: 18px; margin: 0 0 12px 0; color: #0b3d91; }
h3 { font-size: 15px; margin: 12px 0 8px 0; }
.metrics { display: flex; flex-wrap: wrap; gap: 12px; }
.metric { flex: 1 1 170px; background: #f0f4fb; border-radius: 6px; padding: 12px; text-align: center; }
.metric-value { font-size: 22px; font-weight: 600; color: #0b3d91; }
.metric-label { font-size: 12px; color: #52606d; margin-top: 4px; }
table { border-collapse: collapse; width: 100%; margin-top: 8px; font-size: 13px; }
th, td { border: 1px solid #d9e2ec; padding: 6px 10px; text-align: left; }
th { background: #0b3d91; color: #fff; }
.top5 { display: inline-block; vertical-align: top; width: 32%; margin-right: 1%; }
.note { font-size: 12px; color: #7b8794; margin: 8px 0 0 0; }
.errors { border-left: 4px solid #d64545; }
.errors li { color: #a61b1b; font-size: 13px; }
"""


# ---------- sections ----------

def _service_value(totals: Optional[ServiceTotals]) -> str:
    if totals is None or not totals.available:
        return UNAVAILABLE
    return _fmt_gb(totals.total_gb)


def _errors_section(report: SizingReport) -> str:
    if not report.errors:
        return ""
    items = "\n".join(f"<li>{_esc(e)}</li>" for e in report.errors)
    return (
        '<section class="errors">\n<h2>Collection Issues</h2>\n'
        f'<ul>\n{items}\n</ul>\n'
        '<p class="note">Sections fed by a failed collection show N/A.</p>\n'
        '</section>'
    )


def _tenant_section(report: SizingReport) -> str:
    tenant = report.tenant

    def count(value: int) -> str:
        return _fmt_count(value) if tenant.available else UNAVAILABLE

    return _section("Tenant Information", _metric_grid([
        (tenant.tenant_name, LABEL_TENANT_NAME),
        (count(tenant.total_users), LABEL_TOTAL_USERS),
        (count(tenant.active_users), LABEL_ACTIVE_USERS),
        (count(tenant.guest_users), LABEL_GUEST_USERS),
    ]))


def _storage_section(report: SizingReport) -> str:
    metrics: List[Metric] = [
        (_service_value(report.service(name)), name) for name in ALL_SERVICES
    ]
    metrics.append((_fmt_gb(report.breakdown.total_gb), LABEL_TOTAL_STORAGE))

    share_rows = [
        (name, _fmt_percent(report.breakdown.percentages.get(name, 0.0)))
        for name in ALL_SERVICES
    ]
    body = _metric_grid(metrics) + "\n<h3>Storage Share</h3>\n" + _table(["Service", "Share"], share_rows)
    notes = [f"Usage report period: last {report.period_days} days."]
    settings = report.settings or {}
    if settings.get('group'):
        notes.append(f"Mailbox and OneDrive figures are limited to members of group '{settings['group']}'.")
    if settings.get('skip_recoverable_items'):
        notes.append("Recoverable items were excluded from mailbox storage.")
    return _section("Storage Usage", body, notes)


def _growth_section(report: SizingReport) -> str:
    current = report.growth.current_gb
    rows = [
        (_fmt_rate(rate), f"{projected:.2f}", f"{round_half_away(projected - current, 2):.2f}")
        for rate, projected in report.growth.projections.items()
    ]
    body = _table(["Growth Rate", "Projected Size (GB)", "Increase (GB)"], rows, css_class="growth-table")
    return _section("Growth Projections", body, [f"Projected from current total of {current:,.2f} GB."])


def _teams_section(report: SizingReport) -> str:
    metrics: List[Metric] = [
        (_fmt_count(report.team_count), LABEL_TEAMS),
        (_fmt_count(report.group_count), LABEL_GROUPS),
        (f"${TEAMS_COST_PER_MESSAGE}", LABEL_TEAMS_COST_PER_MESSAGE),
        (f"${TEAMS_COST_PER_MILLION:,}", LABEL_TEAMS_COST_PER_MILLION),
    ]
    if report.planner_sample is None:
        metrics.append((UNAVAILABLE, LABEL_PLANNER_PLANS))
        metrics.append((UNAVAILABLE, LABEL_PLANNER_GROUPS))
    else:
        metrics.append((_fmt_count(sum(p.plan_count for p in report.planner_sample)), LABEL_PLANNER_PLANS))
        metrics.append((_fmt_count(len(report.planner_sample)), LABEL_PLANNER_GROUPS))
    return _section("Teams, Groups & Planner", _metric_grid(metrics),
                    ["Teams message export is billed per message by the metered Graph API."])


def _sites_section(report: SizingReport) -> str:
    sites = report.sites
    onedrive = report.service(ALL_SERVICES[1])
    sharepoint = report.service(ALL_SERVICES[2])
    onedrive_ok = onedrive is not None and onedrive.available
    sharepoint_ok = sharepoint is not None and sharepoint.available
    return _section("Sites", _metric_grid([
        (_fmt_count(sites.onedrive_accounts) if onedrive_ok else UNAVAILABLE, LABEL_ONEDRIVE_ACCOUNTS),
        (_fmt_count(sites.sharepoint_sites) if sharepoint_ok else UNAVAILABLE, LABEL_SHAREPOINT_SITES),
        (_fmt_count(sites.teams_sites) if sharepoint_ok else UNAVAILABLE, LABEL_TEAMS_SITES),
        (_fmt_count(sites.total_sites), LABEL_TOTAL_SITES),
    ]))


def _licensing_section(report: SizingReport) -> str:
    lic = report.licensing
    ok = lic.available
    metrics = _metric_grid([
        (_fmt_count(lic.total_licensed_users) if ok else UNAVAILABLE, LABEL_LICENSED_USERS),
        (_fmt_gb(lic.total_entitlement_gb) if ok else UNAVAILABLE,
         LABEL_ENTITLEMENT_TEMPLATE.format(per_user_gb=lic.per_user_gb)),
        (_fmt_gb(lic.current_usage_gb), LABEL_CURRENT_USAGE),
        (_fmt_gb(lic.excess_gb) if ok else UNAVAILABLE, LABEL_EXCESS_STORAGE),
        (_fmt_count(lic.additional_units_needed) if ok else UNAVAILABLE, LABEL_ADDITIONAL_LICENSES),
        (_fmt_gb(lic.usage_per_user_gb) if ok else UNAVAILABLE, LABEL_USAGE_PER_USER),
    ])
    sku_rows = [(f"{s.sku_part_number} ({s.tier})", _fmt_count(s.consumed_units)) for s in lic.skus]
    body = metrics
    if sku_rows:
        body += "\n<h3>Subscribed Licenses</h3>\n" + _table(["SKU", "Consumed Units"], sku_rows)

    notes = []
    if lic.excluded_skus:
        names = ", ".join(s.sku_part_number for s in lic.excluded_skus)
        notes.append(f"Excluded from licensed users (no backup entitlement): {names}.")
    if not ok:
        notes.append("License data could not be collected; entitlement figures are unavailable.")
    elif lic.usage_per_user_gb is None:
        notes.append("No licensed users found; per-user usage is unavailable.")
    return _section("Backup Licensing", body, notes)


def _mailbox_section(report: SizingReport) -> str:
    mix = report.mailbox_mix
    available = mix.available
    archive_ok = available and mix.archive_analyzed

    def count(value: int, ok: bool = available) -> str:
        return _fmt_count(value) if ok else UNAVAILABLE

    metrics: List[Metric] = [
        (count(mix.total), LABEL_TOTAL_MAILBOXES),
        (count(mix.regular), LABEL_REGULAR_MAILBOXES),
        (count(mix.shared), LABEL_SHARED_MAILBOXES),
        (count(mix.resource), LABEL_RESOURCE_MAILBOXES),
        (count(mix.archive, archive_ok), LABEL_ARCHIVE_MAILBOXES),
        (_fmt_percent(mix.archive_percent) if archive_ok else UNAVAILABLE, LABEL_ARCHIVE_PERCENT),
    ]

    notes = []
    if report.licensing_mode == LICENSING_MODE_ARCHIVE:
        arch = report.archive_licensing
        metrics.extend([
            (f"{arch.archive_threshold:,.2f}" if archive_ok else UNAVAILABLE, LABEL_ARCHIVE_THRESHOLD),
            (f"{arch.excess_archive:,.2f}" if archive_ok else UNAVAILABLE, LABEL_EXCESS_ARCHIVE),
            (count(arch.additional_units_for_archive, archive_ok), LABEL_ARCHIVE_LICENSES),
        ])
        threshold = (report.settings or {}).get('archive_threshold_percent')
        if threshold is not None:
            notes.append(f"Archive mailboxes above {threshold:g}% of all mailboxes need additional licenses.")
    else:
        allowance_ok = available and mix.allowance_available
        metrics.extend([
            (count(mix.shared_allowance, allowance_ok), LABEL_SHARED_ALLOWANCE),
            (count(mix.excess_shared, allowance_ok), LABEL_EXCESS_SHARED),
            (count(mix.additional_units_for_shared, allowance_ok), LABEL_SHARED_LICENSES),
        ])
        notes.append("Shared mailboxes are free up to 20% of licensed users; "
                     "each started block of 50 excess shared mailboxes needs one license.")
    if available and not mix.archive_analyzed:
        notes.append("Archive mailbox analysis was skipped.")

    return _section("Mailbox Analysis", _metric_grid(metrics), notes)


def _cost_section(report: SizingReport) -> str:
    cost = report.cost
    metrics = _metric_grid([
        (_fmt_money(cost.monthly_storage_cost), LABEL_MONTHLY_STORAGE_COST),
        (_fmt_money(cost.monthly_worker_cost), LABEL_MONTHLY_WORKER_COST),
        (_fmt_money(cost.per_user_monthly_cost), LABEL_MONTHLY_USER_COST),
        (_fmt_money(cost.total_monthly_cost), LABEL_TOTAL_MONTHLY_COST),
        (_fmt_money(cost.total_annual_cost), LABEL_ANNUAL_COST),
    ])

    constants = (report.settings or {}).get('cost') or {}
    notes = []
    if cost.is_synthetic:
        notes.append(f"Estimate is synthetic: no storage data was collected, so a baseline of "
                     f"{cost.current_storage_gb:,.0f} GB ({cost.user_count:,} users) was assumed.")
    notes.append(
        f"Assumptions: {constants.get('compression_rate', 0.40):.0%} compression, "
        f"{constants.get('growth_rate', 0.20):.0%} growth, "
        f"${constants.get('cost_per_gb_month', 0.02):g} per GB per month storage, "
        f"${constants.get('cost_per_tb_month', 8):g} per TB per month worker nodes "
        f"(tenant size {cost.tenant_size_tb:,.3f} TB before compression), "
        f"annual = monthly x {MONTHS_PER_YEAR}."
    )
    if cost.per_user_monthly_cost is None:
        notes.append("User count is 0; per-user cost is unavailable.")
    return _section("Cost Estimation", metrics, notes)


def _top5_section(report: SizingReport) -> str:
    blocks = []
    for name in ALL_SERVICES:
        totals = report.service(name)
        heading = TOP5_HEADINGS.get(name, HEADING_TOP5_MAILBOXES)
        if totals is None or not totals.available:
            rows: List[Tuple[str, str]] = [(UNAVAILABLE, UNAVAILABLE)]
        else:
            rows = [(entry.name, f"{entry.size_gb:,.2f}") for entry in totals.top5]
        blocks.append(
            f'<div class="top5">\n<h3>{_esc(heading)}</h3>\n'
            f'{_table(["Name", "Size (GB)"], rows)}\n</div>'
        )
    return _section("Largest Entities", "\n".join(blocks))


# ---------- public API ----------

def render_html_report(report: SizingReport) -> str:
    """Render a self-contained HTML document for a sizing report."""
    tenant = report.tenant.tenant_name
    title = f"Microsoft 365 Backup Sizing Report - {tenant}"
    subtitle = f"Generated {_esc(report.generated_at)} &middot; Run {_esc(report.run_id)}"

    sections = [
        _errors_section(report),
        _tenant_section(report),
        _storage_section(report),
        _growth_section(report),
        _teams_section(report),
        _sites_section(report),
        _licensing_section(report),
        _mailbox_section(report),
        _cost_section(report),
        _top5_section(report),
    ]
    body = "\n".join(s for s in sections if s)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{_esc(title)}</title>
<style>{_css()}</style>
</head>
<body>
<header>
<h1>{_esc(title)}</h1>
<div class="subtitle">{subtitle}</div>
</header>
<main>
{body}
</main>
</body>
</html>
"""


def write_html_report(report: SizingReport, filepath: str) -> None:
    """Render and write the HTML report."""
    write_text(render_html_report(report), filepath)


def export_json(report: SizingReport, filepath: str) -> None:
    """Write the structured JSON export of a sizing report."""
    write_json(report.to_dict(), filepath)
