"""
Unit tests for configuration loading and validation.

Tests strict validation, defaults and environment overrides.
"""

import os
import tempfile
from datetime import date

import pytest
import yaml

from dianomeas.config.loader import (
    ENV_AUTH_TOKEN,
    ENV_PROJECT_ID,
    DateRange,
    Settings,
    load_settings,
    parse_date_range,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_defaults_without_file(self):
        """No file and no environment yields the built-in defaults."""
        settings = load_settings(environ={})

        assert settings == Settings()
        assert settings.plan == "n2.xlarge.x86"
        assert settings.operating_system == "rocky_8"
        assert settings.metros == ("dc", "ch", "sv")
        assert settings.reconcile.lookback_days == 8
        assert settings.reconcile.max_pages == 30
        assert settings.cost.hourly_rate == 2.0
        assert settings.cost.leak_hours_threshold == 4.0
        assert settings.polling.interval_seconds == 60.0
        assert settings.polling.timeout_seconds == 1800.0

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "project_id": "proj-1",
            "plan": "c3.small.x86",
            "metros": ["am"],
            "polling": {"interval_seconds": 5, "timeout_seconds": 60},
            "reconcile": {"lookback_days": 3, "max_pages": 2, "page_size": 100},
            "cost": {"hourly_rate": 0.5, "leak_hours_threshold": 12},
        }

        settings = load_settings(self._write_config(config_data), environ={})

        assert settings.project_id == "proj-1"
        assert settings.plan == "c3.small.x86"
        assert settings.metros == ("am",)
        assert settings.polling.interval_seconds == 5.0
        assert settings.reconcile.page_size == 100
        assert settings.cost.hourly_rate == 0.5
        assert settings.cost.leak_hours_threshold == 12.0
        # Untouched sections keep defaults
        assert settings.operating_system == "rocky_8"
        assert settings.api.timeout_seconds == 30.0

    def test_empty_metros_means_any(self):
        settings = load_settings(self._write_config({"metros": []}), environ={})
        assert settings.metros == ()

    def test_environment_overrides_file(self):
        """Environment variables win over the file."""
        path = self._write_config({"project_id": "from-file"})

        settings = load_settings(path, environ={
            ENV_PROJECT_ID: "from-env",
            ENV_AUTH_TOKEN: "secret",
        })

        assert settings.project_id == "from-env"
        assert settings.require_auth_token() == "secret"

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_settings(os.path.join(self.temp_dir, "missing.yaml"), environ={})

    def test_empty_file_raises(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_settings(path, environ={})

    def test_invalid_yaml_raises(self):
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("plan: [unclosed")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_settings(path, environ={})

    def test_unknown_top_level_key_raises(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settings(self._write_config({"plans": "typo"}), environ={})

    def test_unknown_section_key_raises(self):
        with pytest.raises(ValueError, match="Unknown keys in cost"):
            load_settings(self._write_config({"cost": {"rate": 1}}), environ={})

    def test_wrong_types_raise(self):
        with pytest.raises(ValueError, match="'max_pages' in reconcile must be an integer"):
            load_settings(self._write_config({"reconcile": {"max_pages": 1.5}}), environ={})
        with pytest.raises(ValueError, match="'hourly_rate' in cost must be a number"):
            load_settings(self._write_config({"cost": {"hourly_rate": "2"}}), environ={})
        with pytest.raises(ValueError, match="'metros' must be a list"):
            load_settings(self._write_config({"metros": "dc"}), environ={})
        with pytest.raises(ValueError, match="'plan' must be a non-empty string"):
            load_settings(self._write_config({"plan": ""}), environ={})

    def test_non_positive_values_raise(self):
        with pytest.raises(ValueError, match="interval_seconds must be > 0"):
            load_settings(self._write_config({"polling": {"interval_seconds": 0}}), environ={})
        with pytest.raises(ValueError, match="max_pages must be > 0"):
            load_settings(self._write_config({"reconcile": {"max_pages": 0}}), environ={})
        with pytest.raises(ValueError, match="hourly_rate cannot be negative"):
            load_settings(self._write_config({"cost": {"hourly_rate": -1}}), environ={})

    def test_require_helpers(self):
        """Missing credentials are reported by name."""
        settings = Settings()

        with pytest.raises(ValueError, match=ENV_PROJECT_ID):
            settings.require_project_id()
        with pytest.raises(ValueError, match=ENV_AUTH_TOKEN):
            settings.require_auth_token()


class TestDateRange:
    """Test date range parsing and validation."""

    def test_parse_valid_range(self):
        date_range = parse_date_range("2024-03-01", "2024-03-08")
        assert date_range == DateRange(date(2024, 3, 1), date(2024, 3, 8))

    def test_single_day_range(self):
        date_range = parse_date_range("2024-03-01", "2024-03-01")
        assert date_range.start == date_range.end

    def test_from_after_to_raises(self):
        with pytest.raises(ValueError, match="is after"):
            parse_date_range("2024-03-09", "2024-03-08")

    def test_malformed_date_raises(self):
        with pytest.raises(ValueError, match="expected YYYY-MM-DD"):
            parse_date_range("03/01/2024", "2024-03-08")
