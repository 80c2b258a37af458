"""
Tests for dripfeed.config module.

Covers:
    - DripFeedDefaults values
    - Settings defaults and from_yaml (missing file, nested section, errors)
    - DRIP_* environment overrides
    - Singleton get_settings / reset_settings behaviour
    - validate_env()
"""

import pytest

from dripfeed.config import (
    REQUIRED_ENV_VARS,
    DripFeedDefaults,
    Settings,
    get_settings,
    reset_settings,
    validate_env,
)
from dripfeed.exceptions import ConfigurationError


# ===========================================================================
# 1. DripFeedDefaults
# ===========================================================================


class TestDripFeedDefaults:

    def test_values_match_settings_panel(self):
        d = DripFeedDefaults()
        assert d.release_interval_hours == 4
        assert d.items_per_slot == 2
        assert d.window_start_hour == 6
        assert d.window_end_hour == 22


# ===========================================================================
# 2. Settings.from_yaml
# ===========================================================================


class TestSettingsFromYaml:

    def test_missing_file_returns_defaults(self, tmp_path):
        s = Settings.from_yaml(tmp_path / "nope.yaml")
        assert s == Settings()
        assert s.shared_slot_capacity is False
        assert s.verify_slot_capacity is True
        assert s.run_timeout_seconds == 120

    def test_loads_values_and_nested_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "log_level: DEBUG\n"
            "shared_slot_capacity: true\n"
            "run_timeout_seconds: 30\n"
            "drip_defaults:\n"
            "  release_interval_hours: 3\n"
            "  window_end_hour: 20\n",
            encoding="utf-8",
        )

        s = Settings.from_yaml(path)

        assert s.log_level == "DEBUG"
        assert s.shared_slot_capacity is True
        assert s.run_timeout_seconds == 30
        assert s.drip_defaults.release_interval_hours == 3
        assert s.drip_defaults.window_end_hour == 20
        # Unset keys keep their defaults
        assert s.drip_defaults.items_per_slot == 2

    def test_empty_file_returns_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("", encoding="utf-8")
        assert Settings.from_yaml(path) == Settings()

    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("log_level: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            Settings.from_yaml(path)

    def test_unknown_default_key_raises(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("drip_defaults:\n  stories_per_hour: 5\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="stories_per_hour"):
            Settings.from_yaml(path)

    def test_non_positive_timeout_raises(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("run_timeout_seconds: 0\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="run_timeout_seconds"):
            Settings.from_yaml(path)


# ===========================================================================
# 3. Environment overrides
# ===========================================================================


class TestEnvOverrides:

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("log_level: INFO\nshared_slot_capacity: false\n", encoding="utf-8")
        monkeypatch.setenv("DRIP_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("DRIP_SHARED_SLOT_CAPACITY", "yes")
        monkeypatch.setenv("DRIP_VERIFY_SLOT_CAPACITY", "0")
        monkeypatch.setenv("DRIP_RUN_TIMEOUT_SECONDS", "45")

        s = Settings.from_yaml(path)

        assert s.log_level == "WARNING"
        assert s.shared_slot_capacity is True
        assert s.verify_slot_capacity is False
        assert s.run_timeout_seconds == 45

    @pytest.mark.parametrize(
        "key, value",
        [
            ("DRIP_SHARED_SLOT_CAPACITY", "maybe"),
            ("DRIP_RUN_TIMEOUT_SECONDS", "soon"),
        ],
    )
    def test_invalid_env_value_raises(self, tmp_path, monkeypatch, key, value):
        monkeypatch.setenv(key, value)
        with pytest.raises(ConfigurationError, match=key):
            Settings.from_yaml(tmp_path / "missing.yaml")


# ===========================================================================
# 4. Singleton
# ===========================================================================


class TestSingleton:

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reset_settings_drops_cache(self):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first


# ===========================================================================
# 5. validate_env
# ===========================================================================


class TestValidateEnv:

    def test_required_vars(self):
        assert REQUIRED_ENV_VARS == ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]

    def test_strict_raises_listing_missing(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        with pytest.raises(ConfigurationError, match="SUPABASE_SERVICE_KEY"):
            validate_env()

    def test_non_strict_returns_status(self):
        status = validate_env(strict=False)
        assert status == {"SUPABASE_URL": False, "SUPABASE_SERVICE_KEY": False}

    def test_all_present(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")
        assert all(validate_env().values())
