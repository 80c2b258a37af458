"""
Centralized configuration loader for the drip-feed scheduler.

Loads settings from YAML files and environment variables, providing
sensible defaults when configuration files are absent.

Provides:
    - DripFeedDefaults: Fallback values for channels with unset drip columns
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Cached singleton accessor for Settings
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from dripfeed.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of dripfeed/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


# ===========================================================================
# DRIP FEED DEFAULTS
# ===========================================================================


@dataclass
class DripFeedDefaults:
    """
    Values used when a channel leaves a drip-feed column NULL.

    Mirrors the defaults the channel settings panel shows for a freshly
    enabled channel: one release every 4 hours, 2 stories per release,
    06:00-22:00 UTC.
    """

    release_interval_hours: int = 4
    items_per_slot: int = 2
    window_start_hour: int = 6
    window_end_hour: int = 22


def _parse_bool(value: str) -> bool:
    """Interpret common truthy/falsy strings from environment variables."""
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    deployment-specific configuration.
    """

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    audit_function_name: str = "drip-feed-scheduler"

    # Channel fallbacks
    drip_defaults: DripFeedDefaults = field(default_factory=DripFeedDefaults)

    # Count reservations across all channels instead of per channel
    shared_slot_capacity: bool = False

    # Re-read slot occupancy after each write and roll back overbooking
    verify_slot_capacity: bool = True

    # Deadline for a whole invocation (seconds)
    run_timeout_seconds: int = 120

    # Emergency override throttling, per channel
    emergency_rate_limit: int = 3
    emergency_rate_window_seconds: int = 300

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or an environment override has an invalid value.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        # -----------------------------------------------------------------
        # Build DripFeedDefaults from nested YAML section
        # -----------------------------------------------------------------
        defaults_data = data.get("drip_defaults", {}) or {}
        unknown = set(defaults_data) - set(DripFeedDefaults.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                f"Unknown drip_defaults keys in {path}: {sorted(unknown)}"
            )
        drip_defaults = DripFeedDefaults(**defaults_data)

        settings = cls(
            log_level=data.get("log_level", "INFO"),
            log_dir=data.get("log_dir", "logs"),
            audit_function_name=data.get(
                "audit_function_name", "drip-feed-scheduler"
            ),
            drip_defaults=drip_defaults,
            shared_slot_capacity=data.get("shared_slot_capacity", False),
            verify_slot_capacity=data.get("verify_slot_capacity", True),
            run_timeout_seconds=data.get("run_timeout_seconds", 120),
            emergency_rate_limit=data.get("emergency_rate_limit", 3),
            emergency_rate_window_seconds=data.get(
                "emergency_rate_window_seconds", 300
            ),
        )

        # -----------------------------------------------------------------
        # Environment variable overrides
        # -----------------------------------------------------------------
        env_overrides = {
            "DRIP_LOG_LEVEL": ("log_level", str),
            "DRIP_SHARED_SLOT_CAPACITY": ("shared_slot_capacity", _parse_bool),
            "DRIP_VERIFY_SLOT_CAPACITY": ("verify_slot_capacity", _parse_bool),
            "DRIP_RUN_TIMEOUT_SECONDS": ("run_timeout_seconds", int),
        }
        for env_key, (attr_name, cast_fn) in env_overrides.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                try:
                    setattr(settings, attr_name, cast_fn(env_val))
                except (ValueError, TypeError) as exc:
                    raise ConfigurationError(
                        f"Invalid value for env var {env_key}='{env_val}': {exc}"
                    ) from exc

        if settings.run_timeout_seconds <= 0:
            raise ConfigurationError(
                f"run_timeout_seconds must be positive, "
                f"got {settings.run_timeout_seconds}"
            )

        return settings


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.

    Returns:
        The global Settings instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """
    Reset the cached Settings singleton.

    Useful for testing or when configuration files have been updated
    at runtime.
    """
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the scheduler to reach the store
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    if missing:
        logger.warning("Missing required environment variables: %s", missing)

    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    "DripFeedDefaults",
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "PROJECT_ROOT",
]
