"""
Constants for the M365 sizing tool.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Byte/Size Conversion Constants
# =============================================================================

BYTES_PER_GB = 1024 ** 3

GB_PER_TB = 1024

# =============================================================================
# M365 Services
# =============================================================================

SERVICE_EXCHANGE = "Exchange Online"
SERVICE_ONEDRIVE = "OneDrive for Business"
SERVICE_SHAREPOINT = "SharePoint Online"

ALL_SERVICES = (SERVICE_EXCHANGE, SERVICE_ONEDRIVE, SERVICE_SHAREPOINT)

# Mailbox recipient types reported by the Graph mailbox usage report
RECIPIENT_SHARED = "Shared"
RESOURCE_RECIPIENT_TYPES = {"Room", "Equipment"}

# SharePoint root web templates that back a Microsoft 365 group / team
TEAM_SITE_TEMPLATES = {"Group", "Team Site", "TeamChannel"}

# =============================================================================
# Collection Defaults
# =============================================================================

DEFAULT_PERIOD_DAYS = 180
VALID_PERIOD_DAYS = (7, 30, 90, 180)
PLANNER_SAMPLE_SIZE = 5
TOP_N = 5

AUTH_MODE_APP = "app"
AUTH_MODE_INTERACTIVE = "interactive"
VALID_AUTH_MODES = (AUTH_MODE_APP, AUTH_MODE_INTERACTIVE)

GRAPH_SCOPES = ['https://graph.microsoft.com/.default']

# M365/Graph error codes that indicate auth/permission issues
M365_AUTH_ERROR_CODES = {
    'Authorization_RequestDenied',
    'InvalidAuthenticationToken',
    'AuthenticationError',
}

# =============================================================================
# Growth Projection
# =============================================================================

DEFAULT_ANNUAL_GROWTH = 30
BASE_GROWTH_RATES = (10, 20)

# =============================================================================
# Licensing
# =============================================================================

LICENSING_MODE_SHARED = "shared"
LICENSING_MODE_ARCHIVE = "archive"
VALID_LICENSING_MODES = (LICENSING_MODE_SHARED, LICENSING_MODE_ARCHIVE)

DEFAULT_PER_USER_GB = 50
DEFAULT_SKU_STORAGE_GB = 50
DEFAULT_SKU_TIER = "Unknown"

# Shared mailboxes are free up to this fraction of licensed users
SHARED_MAILBOX_ALLOWANCE = 0.20
# Excess shared mailboxes covered by one additional license (headcount, not GB)
MAILBOXES_PER_LICENSE = 50
DEFAULT_ARCHIVE_THRESHOLD_PERCENT = 20

# SKU part number -> (mailbox storage limit GB, tier)
SKU_STORAGE_LIMITS = {
    "STANDARDPACK": (50, "Enterprise"),
    "ENTERPRISEPACK": (100, "Enterprise"),
    "ENTERPRISEPREMIUM": (100, "Enterprise"),
    "ENTERPRISEPREMIUM_NOPSTNCONF": (100, "Enterprise"),
    "SPE_E3": (100, "Enterprise"),
    "SPE_E5": (100, "Enterprise"),
    "O365_BUSINESS_ESSENTIALS": (50, "Business"),
    "O365_BUSINESS_PREMIUM": (50, "Business"),
    "SMB_BUSINESS_PREMIUM": (50, "Business"),
    "SPB": (50, "Business"),
    "EXCHANGESTANDARD": (50, "Exchange"),
    "EXCHANGEENTERPRISE": (100, "Exchange"),
    "EXCHANGEDESKLESS": (2, "Frontline"),
    "DESKLESSPACK": (2, "Frontline"),
    "SPE_F1": (2, "Frontline"),
    "M365_F1": (2, "Frontline"),
    "STANDARDWOFFPACK_STUDENT": (50, "Education"),
    "STANDARDWOFFPACK_FACULTY": (50, "Education"),
    "FLOW_FREE": (0, "Free"),
}

# Free automation SKU: never counted as a licensed user
FREE_AUTOMATION_SKU = "FLOW_FREE"
FREE_AUTOMATION_SKU_ID = "f30db892-07e9-47e9-837c-80727f46fd3d"
EXCLUDED_SKUS = {FREE_AUTOMATION_SKU, FREE_AUTOMATION_SKU_ID}

# =============================================================================
# Cost Estimation
# =============================================================================

DEFAULT_COMPRESSION_RATE = 0.40
DEFAULT_STORAGE_GROWTH_RATE = 0.20
DEFAULT_COST_PER_GB_MONTH = 0.02
DEFAULT_COST_PER_TB_MONTH = 8.0
# Baseline used when no storage data could be collected
SYNTHETIC_GB_PER_USER = 5
MONTHS_PER_YEAR = 12

# Teams export API metered pricing shown in the report
TEAMS_COST_PER_MESSAGE = 0.00075
TEAMS_COST_PER_MILLION = 750

# =============================================================================
# Report Labels
# =============================================================================
# Value elements precede these labels in the HTML report; downstream readers
# locate values by label text, so these strings must stay stable.

LABEL_TENANT_NAME = "Tenant Name"
LABEL_TOTAL_USERS = "Total Users"
LABEL_ACTIVE_USERS = "Active Users"
LABEL_GUEST_USERS = "Guest Users"

# Storage panels are labelled with the service names
LABEL_TOTAL_STORAGE = "Total Storage"

LABEL_TEAMS = "Teams"
LABEL_GROUPS = "Groups"
LABEL_TEAMS_COST_PER_MESSAGE = "Cost per message/notification"
LABEL_TEAMS_COST_PER_MILLION = "Cost per million messages"
LABEL_PLANNER_PLANS = "Planner Plans (sampled)"
LABEL_PLANNER_GROUPS = "Groups Sampled"

LABEL_ONEDRIVE_ACCOUNTS = "OneDrive Accounts"
LABEL_SHAREPOINT_SITES = "SharePoint Sites"
LABEL_TEAMS_SITES = "Teams Sites"
LABEL_TOTAL_SITES = "Total Sites"

LABEL_LICENSED_USERS = "Total Licensed Users"
LABEL_ENTITLEMENT_TEMPLATE = "HYCU Entitlement ({per_user_gb:g} GB/user)"
LABEL_CURRENT_USAGE = "Current Usage"
LABEL_EXCESS_STORAGE = "Excess Storage"
LABEL_ADDITIONAL_LICENSES = "Additional Licenses Needed"
LABEL_USAGE_PER_USER = "Usage per Licensed User"

LABEL_TOTAL_MAILBOXES = "Total Mailboxes"
LABEL_REGULAR_MAILBOXES = "Regular Mailboxes"
LABEL_SHARED_MAILBOXES = "Shared Mailboxes"
LABEL_RESOURCE_MAILBOXES = "Resource Mailboxes"
LABEL_ARCHIVE_MAILBOXES = "Archive Mailboxes"
LABEL_ARCHIVE_PERCENT = "Archive %"
LABEL_SHARED_ALLOWANCE = "20% Allowance"
LABEL_EXCESS_SHARED = "Excess Shared"
LABEL_SHARED_LICENSES = "Additional Licenses (Shared)"
LABEL_ARCHIVE_THRESHOLD = "Archive Threshold"
LABEL_EXCESS_ARCHIVE = "Excess Archive"
LABEL_ARCHIVE_LICENSES = "Additional Licenses (Archive)"

LABEL_MONTHLY_STORAGE_COST = "Monthly Storage Cost"
LABEL_MONTHLY_WORKER_COST = "Monthly Worker Cost"
LABEL_MONTHLY_USER_COST = "Monthly User Cost"
LABEL_TOTAL_MONTHLY_COST = "Total Monthly Cost"
LABEL_ANNUAL_COST = "Annual Cost"

HEADING_TOP5_MAILBOXES = "Top 5 Mailboxes"
HEADING_TOP5_ONEDRIVE = "Top 5 OneDrive"
HEADING_TOP5_SHAREPOINT = "Top 5 SharePoint"

TOP5_HEADINGS = {
    SERVICE_EXCHANGE: HEADING_TOP5_MAILBOXES,
    SERVICE_ONEDRIVE: HEADING_TOP5_ONEDRIVE,
    SERVICE_SHAREPOINT: HEADING_TOP5_SHAREPOINT,
}

UNAVAILABLE = "N/A"

# =============================================================================
# Output Files
# =============================================================================

REPORT_FILE_PREFIX = "m365_sizing_report"
LOG_FILE_PREFIX = "m365_sizing_log"
DEFAULT_OUTPUT_DIR = "./m365_sizing_output"
