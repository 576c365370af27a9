"""
Data models for the M365 sizing pipeline.

Collector output (UsageRecord, LicenseSku, TenantSnapshot) feeds the derived
records; each pipeline stage returns a new frozen record rather than
mutating shared state. Every model converts to a JSON-safe dict and the
report-level models can be rebuilt from that dict.
"""
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from .constants import (
    DEFAULT_COMPRESSION_RATE,
    DEFAULT_COST_PER_GB_MONTH,
    DEFAULT_COST_PER_TB_MONTH,
    DEFAULT_STORAGE_GROWTH_RATE,
)
from .utils import format_bytes_to_gb, round_half_away


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys that are not dataclass fields (derived values in exports)."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _parse_rate(key: Any) -> Any:
    """JSON object keys are strings; growth rates are numbers."""
    value = float(key)
    return int(value) if value.is_integer() else value


# =============================================================================
# Collector Output
# =============================================================================

@dataclass(frozen=True)
class UsageRecord:
    """One mailbox, OneDrive or SharePoint site from a usage report."""
    entity_id: str
    display_name: str
    storage_used_bytes: int = 0
    principal_name: Optional[str] = None
    kind: Optional[str] = None  # Recipient type (mailbox) or root web template (site)
    has_archive: bool = False

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass(frozen=True)
class LicenseSku:
    """A subscribed license SKU resolved against the storage limit table."""
    sku_id: str
    sku_part_number: str
    assigned_units: int = 0
    consumed_units: int = 0
    storage_limit_gb: float = 50
    tier: str = "Unknown"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LicenseSku":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class TenantInfo:
    tenant_id: str = ""
    tenant_name: str = "Unknown"
    total_users: int = 0
    active_users: int = 0
    guest_users: int = 0
    available: bool = True  # False when the tenant probe failed

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TenantInfo":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class PlannerSample:
    """Planner plan count for one sampled group."""
    group_name: str
    plan_count: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlannerSample":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class TenantSnapshot:
    """
    Everything one collection pass produced.

    A usage list of None means the collection call failed; an empty list
    means it succeeded and the tenant has no such entities.
    """
    tenant: TenantInfo
    period_days: int = 180
    license_skus: Optional[Tuple[LicenseSku, ...]] = None
    mailbox_records: Optional[Tuple[UsageRecord, ...]] = None
    onedrive_records: Optional[Tuple[UsageRecord, ...]] = None
    sharepoint_records: Optional[Tuple[UsageRecord, ...]] = None
    team_count: Optional[int] = None
    group_count: Optional[int] = None
    planner_sample: Optional[Tuple[PlannerSample, ...]] = None
    archive_analyzed: bool = True
    errors: Tuple[str, ...] = ()


# =============================================================================
# Aggregation
# =============================================================================

@dataclass(frozen=True)
class TopEntry:
    name: str
    size_gb: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class ServiceTotals:
    """Per-service storage totals and its largest entities."""
    service_name: str
    total_bytes: int = 0
    entity_count: int = 0
    largest_bytes: int = 0
    top5: Tuple[TopEntry, ...] = ()
    available: bool = True

    @property
    def total_gb(self) -> float:
        return format_bytes_to_gb(self.total_bytes)

    @property
    def average_gb(self) -> float:
        if not self.entity_count:
            return 0.0
        return format_bytes_to_gb(self.total_bytes / self.entity_count)

    @property
    def largest_gb(self) -> float:
        return format_bytes_to_gb(self.largest_bytes)

    def to_dict(self) -> Dict:
        result = asdict(self)
        result['top5'] = [entry.to_dict() for entry in self.top5]
        result['total_gb'] = self.total_gb
        result['average_gb'] = self.average_gb
        result['largest_gb'] = self.largest_gb
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceTotals":
        values = _known_fields(cls, data)
        values['top5'] = tuple(TopEntry(**entry) for entry in data.get('top5', []))
        return cls(**values)


@dataclass(frozen=True)
class StorageBreakdown:
    """Share of combined storage per service, in percent."""
    total_gb: float = 0.0
    percentages: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageBreakdown":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class SiteCounts:
    onedrive_accounts: int = 0
    sharepoint_sites: int = 0
    teams_sites: int = 0
    total_sites: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteCounts":
        return cls(**_known_fields(cls, data))


# =============================================================================
# Growth, Licensing, Cost
# =============================================================================

@dataclass(frozen=True)
class GrowthProjection:
    """Projected storage per growth rate (percent)."""
    current_gb: float
    projections: Dict[Any, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'current_gb': self.current_gb,
            'projections': {str(rate): gb for rate, gb in self.projections.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrowthProjection":
        return cls(
            current_gb=data.get('current_gb', 0.0),
            projections={_parse_rate(k): v for k, v in data.get('projections', {}).items()},
        )


@dataclass(frozen=True)
class LicensingSummary:
    """Backup entitlement versus actual tenant usage."""
    total_licensed_users: int
    per_user_gb: float
    total_entitlement_gb: float
    current_usage_gb: float
    excess_gb: float
    additional_units_needed: int
    usage_per_user_gb: Optional[float] = None  # None when nobody is licensed
    skus: Tuple[LicenseSku, ...] = ()
    excluded_skus: Tuple[LicenseSku, ...] = ()
    available: bool = True  # False when license collection failed

    def to_dict(self) -> Dict:
        result = asdict(self)
        result['skus'] = [s.to_dict() for s in self.skus]
        result['excluded_skus'] = [s.to_dict() for s in self.excluded_skus]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LicensingSummary":
        values = _known_fields(cls, data)
        values['skus'] = tuple(LicenseSku.from_dict(s) for s in data.get('skus', []))
        values['excluded_skus'] = tuple(LicenseSku.from_dict(s) for s in data.get('excluded_skus', []))
        return cls(**values)


@dataclass(frozen=True)
class MailboxMix:
    total: int = 0
    regular: int = 0
    shared: int = 0
    resource: int = 0
    archive: int = 0
    archive_percent: float = 0.0
    shared_allowance: int = 0
    excess_shared: int = 0
    additional_units_for_shared: int = 0
    archive_analyzed: bool = True
    available: bool = True
    allowance_available: bool = True  # False when licensed users are unknown

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MailboxMix":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class ArchiveLicensing:
    """Alternate licensing mode: archive mailboxes above a share of all mailboxes."""
    archive_threshold: float = 0.0
    excess_archive: float = 0.0
    additional_units_for_archive: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchiveLicensing":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class CostConstants:
    compression_rate: float = DEFAULT_COMPRESSION_RATE
    growth_rate: float = DEFAULT_STORAGE_GROWTH_RATE
    cost_per_gb_month: float = DEFAULT_COST_PER_GB_MONTH
    cost_per_tb_month: float = DEFAULT_COST_PER_TB_MONTH

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostConstants":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class CostEstimate:
    """
    Backup cost projection.

    Values are kept at full precision; `to_dict()` rounds monetary and GB
    figures to 2 decimals for output.
    """
    current_storage_gb: float
    is_synthetic: bool
    compressed_storage_gb: float
    projected_storage_gb: float
    tenant_size_tb: float
    monthly_storage_cost: float
    annual_storage_cost: float
    monthly_worker_cost: float
    annual_worker_cost: float
    total_monthly_cost: float
    total_annual_cost: float
    user_count: int = 0
    per_user_monthly_cost: Optional[float] = None
    per_user_annual_cost: Optional[float] = None

    def to_dict(self) -> Dict:
        result: Dict[str, Any] = {}
        for name, value in asdict(self).items():
            if isinstance(value, float) and name != 'tenant_size_tb':
                value = round_half_away(value, 2)
            elif name == 'tenant_size_tb':
                value = round_half_away(value, 3)
            result[name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostEstimate":
        return cls(**_known_fields(cls, data))


# =============================================================================
# Report
# =============================================================================

@dataclass(frozen=True)
class SizingReport:
    """
    Structured result of one sizing run.

    This is the interchange format between the pipeline, the HTML renderer
    and any viewer: it is exported as JSON next to the HTML report.
    """
    run_id: str
    generated_at: str
    period_days: int
    tenant: TenantInfo
    services: Tuple[ServiceTotals, ...]
    breakdown: StorageBreakdown
    sites: SiteCounts
    growth: GrowthProjection
    licensing: LicensingSummary
    mailbox_mix: MailboxMix
    archive_licensing: ArchiveLicensing
    cost: CostEstimate
    licensing_mode: str = "shared"
    team_count: Optional[int] = None
    group_count: Optional[int] = None
    planner_sample: Optional[Tuple[PlannerSample, ...]] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    errors: Tuple[str, ...] = ()

    def service(self, service_name: str) -> Optional[ServiceTotals]:
        """Look up a service's totals by name."""
        for totals in self.services:
            if totals.service_name == service_name:
                return totals
        return None

    def to_dict(self) -> Dict:
        return {
            'run_id': self.run_id,
            'generated_at': self.generated_at,
            'period_days': self.period_days,
            'tenant': self.tenant.to_dict(),
            'services': [s.to_dict() for s in self.services],
            'breakdown': self.breakdown.to_dict(),
            'sites': self.sites.to_dict(),
            'growth': self.growth.to_dict(),
            'licensing': self.licensing.to_dict(),
            'mailbox_mix': self.mailbox_mix.to_dict(),
            'archive_licensing': self.archive_licensing.to_dict(),
            'cost': self.cost.to_dict(),
            'licensing_mode': self.licensing_mode,
            'team_count': self.team_count,
            'group_count': self.group_count,
            'planner_sample': (
                [p.to_dict() for p in self.planner_sample]
                if self.planner_sample is not None else None
            ),
            'settings': dict(self.settings),
            'errors': list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SizingReport":
        planner: Optional[List[Dict]] = data.get('planner_sample')
        return cls(
            run_id=data.get('run_id', ''),
            generated_at=data.get('generated_at', ''),
            period_days=data.get('period_days', 180),
            tenant=TenantInfo.from_dict(data.get('tenant', {})),
            services=tuple(ServiceTotals.from_dict(s) for s in data.get('services', [])),
            breakdown=StorageBreakdown.from_dict(data.get('breakdown', {})),
            sites=SiteCounts.from_dict(data.get('sites', {})),
            growth=GrowthProjection.from_dict(data.get('growth', {})),
            licensing=LicensingSummary.from_dict(data['licensing']),
            mailbox_mix=MailboxMix.from_dict(data.get('mailbox_mix', {})),
            archive_licensing=ArchiveLicensing.from_dict(data.get('archive_licensing', {})),
            cost=CostEstimate.from_dict(data['cost']),
            licensing_mode=data.get('licensing_mode', 'shared'),
            team_count=data.get('team_count'),
            group_count=data.get('group_count'),
            planner_sample=(
                tuple(PlannerSample.from_dict(p) for p in planner)
                if planner is not None else None
            ),
            settings=data.get('settings', {}),
            errors=tuple(data.get('errors', [])),
        )
