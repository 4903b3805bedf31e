"""
Configuration management and loading.

Handles the YAML settings file and environment variable overrides.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from dianomeas.core.reconciler import DateRange
from dianomeas.provider.client import DEFAULT_API_URL, DEFAULT_TIMEOUT_SECONDS

ENV_PROJECT_ID = "EQUINIX_PROJECT"
ENV_AUTH_TOKEN = "METAL_AUTH_TOKEN"


@dataclass(frozen=True)
class ApiConfig:
    """Provider API endpoint settings."""
    url: str = DEFAULT_API_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        if not self.url:
            raise ValueError("api url cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("api timeout_seconds must be > 0")


@dataclass(frozen=True)
class PollingConfig:
    """Poll loop settings used while waiting for a device."""
    interval_seconds: float = 60.0
    timeout_seconds: float = 1800.0

    def __post_init__(self):
        """Validate polling values are positive."""
        if self.interval_seconds <= 0:
            raise ValueError("polling interval_seconds must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("polling timeout_seconds must be > 0")


@dataclass(frozen=True)
class ReconcileConfig:
    """Event scan bounds."""
    lookback_days: int = 8
    max_pages: int = 30
    page_size: int = 500

    def __post_init__(self):
        if self.lookback_days < 0:
            raise ValueError("reconcile lookback_days must be >= 0")
        if self.max_pages <= 0:
            raise ValueError("reconcile max_pages must be > 0")
        if self.page_size <= 0:
            raise ValueError("reconcile page_size must be > 0")


@dataclass(frozen=True)
class CostConfig:
    """Cost model for usage analytics."""
    hourly_rate: float = 2.0
    leak_hours_threshold: float = 4.0

    def __post_init__(self):
        if self.hourly_rate < 0:
            raise ValueError("cost hourly_rate cannot be negative")
        if self.leak_hours_threshold < 0:
            raise ValueError("cost leak_hours_threshold cannot be negative")


@dataclass(frozen=True)
class Settings:
    """Complete tool configuration."""
    project_id: Optional[str] = None
    auth_token: Optional[str] = None
    plan: str = "n2.xlarge.x86"
    operating_system: str = "rocky_8"
    metros: Tuple[str, ...] = ("dc", "ch", "sv")
    device_prefix: str = "ipi"
    api: ApiConfig = field(default_factory=ApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    cost: CostConfig = field(default_factory=CostConfig)

    def require_project_id(self) -> str:
        if not self.project_id:
            raise ValueError(f"project_id is not configured (set {ENV_PROJECT_ID})")
        return self.project_id

    def require_auth_token(self) -> str:
        if not self.auth_token:
            raise ValueError(f"API token is not configured (set {ENV_AUTH_TOKEN})")
        return self.auth_token


def parse_date_range(start: str, end: str) -> DateRange:
    """Parse two ISO dates (YYYY-MM-DD) into a DateRange.

    Raises:
        ValueError: If a date is malformed or start is after end
    """
    try:
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
    except ValueError as e:
        raise ValueError(f"Invalid date, expected YYYY-MM-DD: {e}")
    return DateRange(start=start_date, end=end_date)


_SECTIONS = {
    "api": (ApiConfig, {"url": str, "timeout_seconds": float}),
    "polling": (PollingConfig, {"interval_seconds": float, "timeout_seconds": float}),
    "reconcile": (ReconcileConfig, {"lookback_days": int, "max_pages": int, "page_size": int}),
    "cost": (CostConfig, {"hourly_rate": float, "leak_hours_threshold": float}),
}

_SCALARS = {"project_id", "plan", "operating_system", "device_prefix"}


def load_settings(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load and validate settings from an optional YAML file and the environment.

    Strict validation ensures a typo in the config never silently falls
    back to a default.

    Args:
        path: Path to YAML configuration file; None uses defaults only
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    environ = os.environ if environ is None else environ
    settings = Settings()

    if path is not None:
        settings = _load_file(path)

    project_id = environ.get(ENV_PROJECT_ID)
    if project_id:
        settings = replace(settings, project_id=project_id)
    auth_token = environ.get(ENV_AUTH_TOKEN)
    if auth_token:
        settings = replace(settings, auth_token=auth_token)

    return settings


def _load_file(path: str) -> Settings:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = _SCALARS | set(_SECTIONS) | {"metros"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key in _SCALARS:
        if key in raw_config:
            value = raw_config[key]
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"'{key}' must be a non-empty string")
            values[key] = value

    if "metros" in raw_config:
        values["metros"] = _parse_metros(raw_config["metros"])

    for name, (section_cls, schema) in _SECTIONS.items():
        if name in raw_config:
            values[name] = _parse_section(raw_config[name], name, section_cls, schema)

    return Settings(**values)


def _parse_metros(data: Any) -> Tuple[str, ...]:
    """Parse the metro allow-list; an empty list means any metro."""
    if data is None:
        return ()
    if not isinstance(data, list):
        raise ValueError("'metros' must be a list")
    for metro in data:
        if not isinstance(metro, str) or not metro.strip():
            raise ValueError("'metros' entries must be non-empty strings")
    return tuple(data)


def _parse_section(data: Any, path: str, section_cls, schema: Dict[str, type]):
    """Parse and validate one configuration section.

    Args:
        data: Section data
        path: Section name for error messages
        section_cls: Dataclass to build
        schema: Allowed keys and their expected types

    Returns:
        Validated section instance

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key, expected in schema.items():
        if key not in data:
            continue
        value = data[key]
        if expected is str:
            if not isinstance(value, str):
                raise ValueError(f"'{key}' in {path} must be a string")
        elif expected is int:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"'{key}' in {path} must be an integer")
        else:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{key}' in {path} must be a number")
            value = float(value)
        values[key] = value

    return section_cls(**values)
