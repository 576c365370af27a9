"""
Tests for sizer/config.py layered configuration.

Covers:
- environment variables, YAML file and CLI precedence
- ${VAR} / ${VAR:-default} substitution in YAML values
- client secret only from MS365_CLIENT_SECRET
- validation errors (period, licensing mode, credentials, rates)
"""
import argparse
import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sizer.config import (
    CLIENT_SECRET_ENV_VAR,
    ConfigError,
    SizingSettings,
    args_to_config,
    build_settings,
    generate_sample_config,
    load_config,
    load_config_file,
    load_env_config,
    merge_configs,
)

APP_IDS = {'tenant_id': 'tenant-id', 'client_id': 'client-id'}

CREDENTIALS_ENV = {CLIENT_SECRET_ENV_VAR: 'secret-from-env'}


def make_args(**overrides) -> argparse.Namespace:
    values = {
        'config': None,
        'tenant_id': None,
        'client_id': None,
        'auth_mode': None,
        'group': None,
        'skip_archive_mailbox': False,
        'skip_recoverable_items': False,
        'annual_growth': None,
        'period': None,
        'licensing_mode': None,
        'output_dir': None,
        'log_level': None,
        'verbose': False,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def write_config(tmp_path, text: str) -> str:
    path = tmp_path / "m365-sizing.yaml"
    path.write_text(text)
    os.chmod(path, 0o600)
    return str(path)


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Keep default config lookup away from the developer's working directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('HOME', str(tmp_path))


# =============================================================================
# Environment Tests
# =============================================================================

class TestLoadEnvConfig:
    """Tests for load_env_config function."""

    def test_maps_variables(self):
        config = load_env_config({
            'MS365_TENANT_ID': 't',
            'M365_SIZER_PERIOD': '90',
            'M365_SIZER_LICENSING_MODE': 'archive',
        })

        assert config['tenant_id'] == 't'
        assert config['period_days'] == '90'
        assert config['licensing'] == {'mode': 'archive'}

    def test_boolean_variables(self):
        config = load_env_config({'M365_SIZER_SKIP_ARCHIVE': 'yes', 'M365_SIZER_SKIP_RECOVERABLE': '0'})

        assert config['skip_archive_mailbox'] is True
        assert config['skip_recoverable_items'] is False

    def test_secret_not_part_of_config(self):
        assert load_env_config({CLIENT_SECRET_ENV_VAR: 's'}) == {}


# =============================================================================
# Config File Tests
# =============================================================================

class TestLoadConfigFile:
    """Tests for load_config_file function."""

    def test_nested_values(self, tmp_path):
        path = write_config(tmp_path, "annual_growth: 25\nlicensing:\n  per_user_gb: 100\n")
        config = load_config_file(path)

        assert config['annual_growth'] == 25
        assert config['licensing']['per_user_gb'] == 100

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv('SIZER_TEST_TENANT', 'tenant-xyz')
        monkeypatch.delenv('SIZER_TEST_MISSING', raising=False)
        path = write_config(
            tmp_path,
            "tenant_id: ${SIZER_TEST_TENANT}\ngroup: ${SIZER_TEST_MISSING:-Pilot}\n",
        )
        config = load_config_file(path)

        assert config['tenant_id'] == 'tenant-xyz'
        assert config['group'] == 'Pilot'

    def test_client_secret_ignored(self, tmp_path):
        path = write_config(tmp_path, "client_secret: do-not-store\nclient_id: abc\n")
        config = load_config_file(path)

        assert 'client_secret' not in config
        assert config['client_id'] == 'abc'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config_file(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = write_config(tmp_path, "licensing: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_file(path)

    def test_non_mapping(self, tmp_path):
        path = write_config(tmp_path, "- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config_file(path)

    def test_sample_config_parses(self, tmp_path):
        path = write_config(tmp_path, generate_sample_config())
        config = load_config_file(path)

        assert config['period_days'] == 180
        assert config['licensing']['mode'] == 'shared'
        assert config['cost']['cost_per_tb_month'] == 8


# =============================================================================
# Layering Tests
# =============================================================================

class TestConfigLayering:
    """Tests for merge_configs, args_to_config and load_config."""

    def test_merge_nested(self):
        merged = merge_configs(
            {'licensing': {'mode': 'shared', 'per_user_gb': 50}},
            {'licensing': {'mode': 'archive'}},
        )
        assert merged['licensing'] == {'mode': 'archive', 'per_user_gb': 50}

    def test_merge_skips_none(self):
        assert merge_configs({'group': 'A'}, {'group': None}) == {'group': 'A'}

    def test_args_skip_unset_and_false_flags(self):
        config = args_to_config(make_args(period=30, licensing_mode='archive'))

        assert config == {'period_days': 30, 'licensing': {'mode': 'archive'}}

    def test_args_verbose(self):
        assert args_to_config(make_args(verbose=True))['log_level'] == 'DEBUG'

    def test_cli_over_file_over_env(self, tmp_path):
        path = write_config(tmp_path, "annual_growth: 25\nperiod_days: 90\n")
        args = make_args(config=path, period=30)
        environ = {'M365_SIZER_ANNUAL_GROWTH': '15', 'M365_SIZER_GROUP': 'Env Group'}

        config = load_config(args, environ)

        assert config['period_days'] == 30
        assert config['annual_growth'] == 25
        assert config['group'] == 'Env Group'

    def test_default_config_location(self, tmp_path):
        (tmp_path / "m365-sizing.yaml").write_text("annual_growth: 42\n")
        config = load_config(make_args(), {})
        assert config['annual_growth'] == 42


# =============================================================================
# Settings Tests
# =============================================================================

class TestBuildSettings:
    """Tests for build_settings and validation."""

    def test_defaults(self):
        settings = build_settings(dict(APP_IDS), CREDENTIALS_ENV)

        assert settings.auth_mode == 'app'
        assert settings.client_secret == 'secret-from-env'
        assert settings.annual_growth == 30
        assert settings.period_days == 180
        assert settings.report_period == 'D180'
        assert settings.licensing_mode == 'shared'
        assert settings.per_user_gb == 50
        assert settings.cost.compression_rate == 0.40

    def test_values_coerced(self):
        config = {
            'tenant_id': 't', 'client_id': 'c',
            'period_days': '7', 'annual_growth': '12',
            'skip_archive_mailbox': 'true',
            'licensing': {'mode': 'ARCHIVE', 'archive_threshold_percent': '15'},
            'cost': {'cost_per_gb_month': '0.05'},
        }
        settings = build_settings(config, {CLIENT_SECRET_ENV_VAR: 's'})

        assert settings.period_days == 7
        assert settings.report_period == 'D7'
        assert settings.annual_growth == 12
        assert settings.skip_archive_mailbox is True
        assert settings.licensing_mode == 'archive'
        assert settings.archive_threshold_percent == 15.0
        assert settings.cost.cost_per_gb_month == 0.05

    def test_missing_app_credentials(self):
        with pytest.raises(ConfigError) as exc_info:
            build_settings({'tenant_id': 't'}, {})

        message = str(exc_info.value)
        assert 'MS365_CLIENT_ID' in message
        assert CLIENT_SECRET_ENV_VAR in message
        assert 'MS365_TENANT_ID' not in message

    def test_interactive_needs_no_secret(self):
        settings = build_settings({'auth_mode': 'interactive'}, {})
        assert settings.client_secret is None

    @pytest.mark.parametrize("config,fragment", [
        ({'period_days': 60}, 'period_days'),
        ({'licensing': {'mode': 'hybrid'}}, 'licensing mode'),
        ({'auth_mode': 'device'}, 'auth_mode'),
        ({'annual_growth': -150}, 'annual_growth'),
        ({'licensing': {'per_user_gb': 0}}, 'per_user_gb'),
        ({'cost': {'compression_rate': 1.0}}, 'compression_rate'),
        ({'cost': {'cost_per_gb_month': -1}}, 'negative'),
        ({'period_days': 'half-year'}, 'integer'),
    ])
    def test_invalid_values(self, config, fragment):
        with pytest.raises(ConfigError, match=fragment):
            build_settings(merge_configs(APP_IDS, config), CREDENTIALS_ENV)

    def test_secret_never_echoed(self):
        settings = build_settings(dict(APP_IDS), CREDENTIALS_ENV)

        assert 'client_secret' not in settings.to_dict()
        assert 'secret-from-env' not in repr(settings)

    def test_to_dict_includes_cost_constants(self):
        data = SizingSettings().to_dict()
        assert data['cost']['cost_per_tb_month'] == 8.0
