"""
M365 Sizing - Configuration Management

Supports loading configuration from:
1. Environment variables (MS365_* / M365_SIZER_*)
2. YAML config file (--config or a default location)
3. Command-line arguments (highest priority)

Config file example:
```yaml
tenant_id: ${MS365_TENANT_ID}
client_id: ${MS365_CLIENT_ID}
auth_mode: app
group: "Backup Pilot"
annual_growth: 25
period_days: 90
output: "./sizing"

licensing:
  per_user_gb: 50
  mode: shared
  archive_threshold_percent: 20

cost:
  compression_rate: 0.40
  growth_rate: 0.20
  cost_per_gb_month: 0.02
  cost_per_tb_month: 8
```
"""
import logging
import os
import re
import stat
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .constants import (
    AUTH_MODE_APP,
    DEFAULT_ANNUAL_GROWTH,
    DEFAULT_ARCHIVE_THRESHOLD_PERCENT,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PER_USER_GB,
    DEFAULT_PERIOD_DAYS,
    LICENSING_MODE_SHARED,
    VALID_AUTH_MODES,
    VALID_LICENSING_MODES,
    VALID_PERIOD_DAYS,
)
from .models import CostConstants

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid or incomplete configuration; fatal before collection starts."""


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './m365-sizing.yaml',
    './m365-sizing.yml',
    '~/.m365-sizing/config.yaml',
]

# Client secret is env-var only (never CLI, never config file)
CLIENT_SECRET_ENV_VAR = 'MS365_CLIENT_SECRET'

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'tenant_id': 'MS365_TENANT_ID',
    'client_id': 'MS365_CLIENT_ID',
    'auth_mode': 'M365_SIZER_AUTH_MODE',
    'group': 'M365_SIZER_GROUP',
    'skip_archive_mailbox': 'M365_SIZER_SKIP_ARCHIVE',
    'skip_recoverable_items': 'M365_SIZER_SKIP_RECOVERABLE',
    'annual_growth': 'M365_SIZER_ANNUAL_GROWTH',
    'period_days': 'M365_SIZER_PERIOD',
    'licensing.mode': 'M365_SIZER_LICENSING_MODE',
    'output': 'M365_SIZER_OUTPUT',
    'log_level': 'M365_SIZER_LOG_LEVEL',
}

BOOLEAN_KEYS = ('skip_archive_mailbox', 'skip_recoverable_items')

# Mapping from argparse attributes to config keys
ARG_MAPPING = {
    'tenant_id': 'tenant_id',
    'client_id': 'client_id',
    'auth_mode': 'auth_mode',
    'group': 'group',
    'skip_archive_mailbox': 'skip_archive_mailbox',
    'skip_recoverable_items': 'skip_recoverable_items',
    'annual_growth': 'annual_growth',
    'period': 'period_days',
    'licensing_mode': 'licensing.mode',
    'output_dir': 'output',
    'log_level': 'log_level',
}


@dataclass
class SizingSettings:
    """Resolved settings for one sizing run."""
    auth_mode: str = AUTH_MODE_APP
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)
    group: Optional[str] = None
    skip_archive_mailbox: bool = False
    skip_recoverable_items: bool = False
    annual_growth: int = DEFAULT_ANNUAL_GROWTH
    period_days: int = DEFAULT_PERIOD_DAYS
    licensing_mode: str = LICENSING_MODE_SHARED
    per_user_gb: float = DEFAULT_PER_USER_GB
    archive_threshold_percent: float = DEFAULT_ARCHIVE_THRESHOLD_PERCENT
    cost: CostConstants = field(default_factory=CostConstants)
    output_dir: str = DEFAULT_OUTPUT_DIR
    log_level: str = "INFO"

    @property
    def report_period(self) -> str:
        """Graph usage report period parameter, e.g. 'D180'."""
        return f"D{self.period_days}"

    def to_dict(self) -> Dict[str, Any]:
        """Settings echo for the report; never includes the client secret."""
        result = asdict(self)
        result.pop('client_secret', None)
        return result


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value: Any = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    # Security check: warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    if 'client_secret' in config:
        logger.warning("Ignoring client_secret in config file; "
                       f"set {CLIENT_SECRET_ENV_VAR} instead")
        config.pop('client_secret')

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load configuration from environment variables."""
    environ = os.environ if environ is None else environ
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value: Any = environ.get(env_var)
        if value is None:
            continue
        if config_key in BOOLEAN_KEYS:
            value = _parse_bool(value)
        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format (unset args are skipped)."""
    config: Dict[str, Any] = {}

    for arg_name, config_key in ARG_MAPPING.items():
        value = getattr(args, arg_name, None)
        # store_true flags default to False; only an explicit flag overrides
        if value is None or (arg_name in BOOLEAN_KEYS and value is False):
            continue
        _set_nested(config, config_key, value)

    if getattr(args, 'verbose', False):
        config['log_level'] = 'DEBUG'

    return config


def load_config(args, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config(environ)
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return merge_configs(*configs)


def _as_int(config: Dict[str, Any], key: str, default: int) -> int:
    value = _get_nested(config, key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}")


def _as_float(config: Dict[str, Any], key: str, default: float) -> float:
    value = _get_nested(config, key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}")


def build_settings(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> SizingSettings:
    """
    Resolve a merged config dict into validated SizingSettings.

    Raises:
        ConfigError: If a value is invalid or app credentials are missing
    """
    environ = os.environ if environ is None else environ
    defaults = CostConstants()

    settings = SizingSettings(
        auth_mode=str(config.get('auth_mode', AUTH_MODE_APP)).lower(),
        tenant_id=config.get('tenant_id') or None,
        client_id=config.get('client_id') or None,
        client_secret=environ.get(CLIENT_SECRET_ENV_VAR) or None,
        group=config.get('group') or None,
        skip_archive_mailbox=_parse_bool(config.get('skip_archive_mailbox', False)),
        skip_recoverable_items=_parse_bool(config.get('skip_recoverable_items', False)),
        annual_growth=_as_int(config, 'annual_growth', DEFAULT_ANNUAL_GROWTH),
        period_days=_as_int(config, 'period_days', DEFAULT_PERIOD_DAYS),
        licensing_mode=str(_get_nested(config, 'licensing.mode', LICENSING_MODE_SHARED)).lower(),
        per_user_gb=_as_float(config, 'licensing.per_user_gb', DEFAULT_PER_USER_GB),
        archive_threshold_percent=_as_float(
            config, 'licensing.archive_threshold_percent', DEFAULT_ARCHIVE_THRESHOLD_PERCENT
        ),
        cost=CostConstants(
            compression_rate=_as_float(config, 'cost.compression_rate', defaults.compression_rate),
            growth_rate=_as_float(config, 'cost.growth_rate', defaults.growth_rate),
            cost_per_gb_month=_as_float(config, 'cost.cost_per_gb_month', defaults.cost_per_gb_month),
            cost_per_tb_month=_as_float(config, 'cost.cost_per_tb_month', defaults.cost_per_tb_month),
        ),
        output_dir=str(config.get('output', DEFAULT_OUTPUT_DIR)),
        log_level=str(config.get('log_level', 'INFO')).upper(),
    )

    validate_settings(settings)
    return settings


def validate_settings(settings: SizingSettings) -> None:
    """Raise ConfigError on the first invalid setting."""
    if settings.auth_mode not in VALID_AUTH_MODES:
        raise ConfigError(f"auth_mode must be one of {', '.join(VALID_AUTH_MODES)}, "
                          f"got {settings.auth_mode!r}")
    if settings.period_days not in VALID_PERIOD_DAYS:
        raise ConfigError(f"period_days must be one of {VALID_PERIOD_DAYS}, got {settings.period_days}")
    if settings.licensing_mode not in VALID_LICENSING_MODES:
        raise ConfigError(f"licensing mode must be one of {', '.join(VALID_LICENSING_MODES)}, "
                          f"got {settings.licensing_mode!r}")
    if settings.annual_growth < -100:
        raise ConfigError(f"annual_growth must be >= -100, got {settings.annual_growth}")
    if settings.per_user_gb <= 0:
        raise ConfigError(f"licensing.per_user_gb must be positive, got {settings.per_user_gb}")
    if not 0 <= settings.archive_threshold_percent <= 100:
        raise ConfigError("licensing.archive_threshold_percent must be between 0 and 100")
    if not 0 <= settings.cost.compression_rate < 1:
        raise ConfigError("cost.compression_rate must be in [0, 1)")
    if settings.cost.growth_rate < -1:
        raise ConfigError("cost.growth_rate must be >= -1")
    if settings.cost.cost_per_gb_month < 0 or settings.cost.cost_per_tb_month < 0:
        raise ConfigError("cost rates cannot be negative")

    if settings.auth_mode == AUTH_MODE_APP:
        missing = []
        if not settings.tenant_id:
            missing.append("--tenant-id or MS365_TENANT_ID")
        if not settings.client_id:
            missing.append("--client-id or MS365_CLIENT_ID")
        if not settings.client_secret:
            missing.append(f"{CLIENT_SECRET_ENV_VAR} environment variable")
        if missing:
            raise ConfigError("Missing credentials for app authentication: " + ", ".join(missing))


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# M365 Sizing Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Authentication: "app" (client credentials) or "interactive" (browser sign-in)
auth_mode: app

# Azure AD tenant ID and app registration client ID
tenant_id: ${MS365_TENANT_ID}
client_id: ${MS365_CLIENT_ID}

# Client secret is read from MS365_CLIENT_SECRET only (never put it here)

# Restrict mailbox and OneDrive sizing to members of one group
# group: "Backup Pilot"

# Optional sub-analyses
skip_archive_mailbox: false
skip_recoverable_items: false

# Custom annual growth scenario (percent), alongside the built-in 10% and 20%
annual_growth: 30

# Usage report window in days: 7, 30, 90 or 180
period_days: 180

# Output directory for the report, JSON export and run log
output: "./m365_sizing_output"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

licensing:
  # Backup storage entitlement per licensed user (GB)
  per_user_gb: 50
  # "shared" (shared-mailbox allowance) or "archive" (archive-mailbox threshold)
  mode: shared
  # Archive mailboxes allowed before extra licenses are needed (percent of mailboxes)
  archive_threshold_percent: 20

cost:
  compression_rate: 0.40
  growth_rate: 0.20
  cost_per_gb_month: 0.02
  cost_per_tb_month: 8
'''
