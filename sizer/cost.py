"""
Backup cost estimation.

Storage cost is charged on the compressed, growth-adjusted footprint.
Worker-node cost scales with the raw (pre-compression) tenant size in TB.
All arithmetic is full precision; rounding happens when the estimate is
serialized or rendered.
"""
import logging
from typing import Optional

from .constants import GB_PER_TB, MONTHS_PER_YEAR, SYNTHETIC_GB_PER_USER
from .models import CostConstants, CostEstimate
from .utils import safe_divide

logger = logging.getLogger(__name__)


def estimate_cost(
    current_storage_gb: float,
    user_count: int,
    constants: Optional[CostConstants] = None,
) -> CostEstimate:
    """
    Estimate monthly and annual backup cost.

    When no storage data was collected (current_storage_gb == 0) a baseline of
    SYNTHETIC_GB_PER_USER per user is substituted and the estimate is flagged
    as synthetic.

    Args:
        current_storage_gb: Current total tenant storage in GB
        user_count: Users to amortize cost over
        constants: Compression/growth/rate constants (defaults when omitted)

    Returns:
        CostEstimate; per-user figures are None when user_count is 0
    """
    constants = constants or CostConstants()

    is_synthetic = False
    if not current_storage_gb:
        current_storage_gb = float(user_count * SYNTHETIC_GB_PER_USER)
        is_synthetic = True
        logger.warning(
            f"No storage data collected; using synthetic baseline of "
            f"{current_storage_gb:,.0f} GB ({user_count} users x {SYNTHETIC_GB_PER_USER} GB)"
        )

    compressed_gb = current_storage_gb * (1 - constants.compression_rate)
    projected_gb = compressed_gb * (1 + constants.growth_rate)

    monthly_storage = projected_gb * constants.cost_per_gb_month
    annual_storage = monthly_storage * MONTHS_PER_YEAR

    tenant_size_tb = current_storage_gb / GB_PER_TB
    monthly_worker = tenant_size_tb * constants.cost_per_tb_month
    annual_worker = monthly_worker * MONTHS_PER_YEAR

    total_monthly = monthly_storage + monthly_worker
    total_annual = total_monthly * MONTHS_PER_YEAR

    per_user_monthly = safe_divide(total_monthly, user_count)
    per_user_annual = safe_divide(total_annual, user_count)
    if per_user_monthly is None:
        logger.warning("User count is 0; per-user cost is unavailable")

    return CostEstimate(
        current_storage_gb=current_storage_gb,
        is_synthetic=is_synthetic,
        compressed_storage_gb=compressed_gb,
        projected_storage_gb=projected_gb,
        tenant_size_tb=tenant_size_tb,
        monthly_storage_cost=monthly_storage,
        annual_storage_cost=annual_storage,
        monthly_worker_cost=monthly_worker,
        annual_worker_cost=annual_worker,
        total_monthly_cost=total_monthly,
        total_annual_cost=total_annual,
        user_count=user_count,
        per_user_monthly_cost=per_user_monthly,
        per_user_annual_cost=per_user_annual,
    )
