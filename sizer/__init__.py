"""
M365 sizing shared library.
"""
# Import constants module for easy access
from . import constants
from .aggregate import (
    aggregate_all,
    aggregate_service,
    count_sites,
    storage_breakdown,
    top_entities,
    total_storage_gb,
)
from .config import ConfigError, SizingSettings, build_settings, load_config
from .cost import estimate_cost
from .growth import project_growth
from .licensing import (
    build_license_sku,
    evaluate_archive_licensing,
    evaluate_mailbox_mix,
    summarize_licensing,
)
from .models import (
    ArchiveLicensing,
    CostConstants,
    CostEstimate,
    GrowthProjection,
    LicenseSku,
    LicensingSummary,
    MailboxMix,
    PlannerSample,
    ServiceTotals,
    SiteCounts,
    SizingReport,
    StorageBreakdown,
    TenantInfo,
    TenantSnapshot,
    TopEntry,
    UsageRecord,
)
from .pipeline import build_sizing_report
from .report import export_json, render_html_report, write_html_report
from .report_reader import extract_report_metrics, load_sizing_export, read_report_html
from .utils import (
    AuthError,
    format_bytes_to_gb,
    generate_run_id,
    get_timestamp,
    setup_logging,
    write_json,
)

__all__ = [
    # Constants
    'constants',
    # Models
    'UsageRecord',
    'LicenseSku',
    'TenantInfo',
    'PlannerSample',
    'TenantSnapshot',
    'TopEntry',
    'ServiceTotals',
    'StorageBreakdown',
    'SiteCounts',
    'GrowthProjection',
    'LicensingSummary',
    'MailboxMix',
    'ArchiveLicensing',
    'CostConstants',
    'CostEstimate',
    'SizingReport',
    # Pipeline stages
    'aggregate_service',
    'aggregate_all',
    'top_entities',
    'storage_breakdown',
    'total_storage_gb',
    'count_sites',
    'project_growth',
    'build_license_sku',
    'summarize_licensing',
    'evaluate_mailbox_mix',
    'evaluate_archive_licensing',
    'estimate_cost',
    'build_sizing_report',
    # Report
    'render_html_report',
    'write_html_report',
    'export_json',
    'read_report_html',
    'extract_report_metrics',
    'load_sizing_export',
    # Config
    'ConfigError',
    'SizingSettings',
    'load_config',
    'build_settings',
    # Utils
    'AuthError',
    'generate_run_id',
    'get_timestamp',
    'format_bytes_to_gb',
    'write_json',
    'setup_logging',
]
