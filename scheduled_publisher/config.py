"""
Centralized configuration loader for the scheduled publisher.

Loads settings from a YAML file and environment variables, providing
sensible defaults when the configuration file is absent.

Provides:
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Cached singleton accessor for Settings
    - reset_settings(): Drop the cached instance (tests, reloads)
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from scheduled_publisher.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of scheduled_publisher/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


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

    # Provider Graph API
    graph_api_base_url: str = "https://graph.instagram.com"
    graph_api_version: str = ""
    http_timeout_seconds: float = 30.0

    # Container readiness polling
    poll_interval_seconds: float = 3.0
    poll_timeout_seconds: float = 300.0

    # Orchestrator
    stamp_tolerance_seconds: int = 60
    step_max_attempts: int = 3
    step_base_delay_seconds: float = 2.0
    container_ttl_hours: int = 24
    build_children_concurrently: bool = False
    token_expiry_warning_days: int = 7

    # Dispatcher
    dispatcher_check_interval_seconds: int = 30
    dispatcher_batch_size: int = 20
    stuck_claim_timeout_minutes: int = 15

    # Logging
    log_level: str = "INFO"

    @property
    def graph_api_root(self) -> str:
        """Base URL including the optional version segment."""
        base = self.graph_api_base_url.rstrip("/")
        if self.graph_api_version:
            return f"{base}/{self.graph_api_version.strip('/')}"
        return base

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
                or an override has an invalid value.
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

        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown setting '%s' in %s", key, path)
                continue
            kwargs[key] = value

        # -----------------------------------------------------------------
        # Environment variable overrides
        # -----------------------------------------------------------------
        env_overrides = {
            "GRAPH_API_BASE_URL": ("graph_api_base_url", str),
            "GRAPH_API_VERSION": ("graph_api_version", str),
            "POLL_INTERVAL_SECONDS": ("poll_interval_seconds", float),
            "POLL_TIMEOUT_SECONDS": ("poll_timeout_seconds", float),
            "STEP_MAX_ATTEMPTS": ("step_max_attempts", int),
            "DISPATCHER_CHECK_INTERVAL_SECONDS": (
                "dispatcher_check_interval_seconds",
                int,
            ),
            "LOG_LEVEL": ("log_level", str),
        }
        for env_key, (attr_name, cast_fn) in env_overrides.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                try:
                    kwargs[attr_name] = cast_fn(env_val)
                except (ValueError, TypeError) as exc:
                    raise ConfigurationError(
                        f"Invalid value for env var {env_key}='{env_val}': {exc}"
                    ) from exc

        settings = cls(**kwargs)
        settings.validate()
        return settings

    def validate(self) -> None:
        """Reject values that would make the pipeline misbehave.

        Raises:
            ConfigurationError: On a non-positive interval, timeout or
                attempt budget.
        """
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError("poll_interval_seconds must be positive")
        if self.poll_timeout_seconds < self.poll_interval_seconds:
            raise ConfigurationError(
                "poll_timeout_seconds must be >= poll_interval_seconds"
            )
        if self.step_max_attempts < 1:
            raise ConfigurationError("step_max_attempts must be at least 1")
        if self.stamp_tolerance_seconds < 0:
            raise ConfigurationError("stamp_tolerance_seconds cannot be negative")


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
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

# Required environment variables for the system to function
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "TOKEN_ENCRYPTION_KEY",
]

# Optional environment variables
OPTIONAL_ENV_VARS: List[str] = [
    "GRAPH_API_BASE_URL",
    "GRAPH_API_VERSION",
    "LOG_LEVEL",
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

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "PROJECT_ROOT",
]
