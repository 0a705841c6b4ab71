"""
YAML-based configuration module for wp_sync

Loads the environment records and run settings from a YAML file, then
applies overrides from a .env file and the process environment so that
passwords do not have to live in the YAML file.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from wp_sync.exceptions import ConfigError
from wp_sync.models import (
    ENVIRONMENTS,
    TRANSPORT_LOCAL,
    TRANSPORT_REMOTE,
    EnvironmentConfig,
    SyncSettings,
)

DEFAULT_CONFIG_FILE = "wp-sync.yaml"
ENV_PREFIX = "WP_SYNC"

DEFAULT_SYNC_SETTINGS: Dict[str, Any] = {
    "min_interval_minutes": 5,
    "marker_file": ".wp_sync_last",
    "log_file": "wp_sync.log",
    "work_dir": ".",
    "timeout": 600,
    "required_tools": ["mysqldump", "mysql"],
    "serialized_aware": True,
}

ENVIRONMENT_FIELDS = (
    "transport",
    "ssh_host",
    "ssh_user",
    "ssh_port",
    "ssh_key",
    "db_host",
    "db_port",
    "db_name",
    "db_user",
    "db_pass",
    "site_url",
    "table_prefix",
    "path",
    "auto_discover",
)

_INT_FIELDS = ("ssh_port", "db_port")
_BOOL_FIELDS = ("auto_discover",)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on", "enabled")


def _update_dict_recursive(target: Dict, source: Dict) -> None:
    """
    Updates a dictionary recursively

    Args:
        target: Destination dictionary
        source: Dictionary with new values
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _update_dict_recursive(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _env_overrides(name: str) -> Dict[str, str]:
    """
    Reads WP_SYNC_<ENVIRONMENT>_<FIELD> variables for one environment

    Example: WP_SYNC_PRODUCTION_DB_PASS=secret
    """
    overrides = {}
    for field_name in ENVIRONMENT_FIELDS:
        value = os.getenv(f"{ENV_PREFIX}_{name.upper()}_{field_name.upper()}")
        if value is not None:
            overrides[field_name] = value
    return overrides


def build_environment(name: str, raw: Dict[str, Any]) -> EnvironmentConfig:
    """
    Builds an EnvironmentConfig from a raw mapping

    Only converts types; required fields are checked later by
    EnvironmentResolver.validate_config so that each missing field can be
    reported with its environment name.

    Raises:
        ConfigError: On an unknown transport or non-numeric port
    """
    values: Dict[str, Any] = {}
    for field_name in ENVIRONMENT_FIELDS:
        if field_name in raw and raw[field_name] is not None:
            values[field_name] = raw[field_name]

    transport = values.get("transport")
    if transport is not None:
        transport = str(transport).strip().lower()
        if transport not in (TRANSPORT_LOCAL, TRANSPORT_REMOTE):
            raise ConfigError(
                f"Invalid transport '{transport}' for {name} (expected local or remote)",
                {"environment": name},
            )
        values["transport"] = transport

    for field_name in _INT_FIELDS:
        if field_name in values:
            try:
                values[field_name] = int(values[field_name])
            except (TypeError, ValueError) as e:
                raise ConfigError(
                    f"Invalid {field_name} '{values[field_name]}' for {name}",
                    {"environment": name, "field": field_name},
                ) from e

    for field_name in _BOOL_FIELDS:
        if field_name in values:
            values[field_name] = _to_bool(values[field_name])

    for field_name in ("db_pass", "db_name", "db_user", "db_host", "table_prefix"):
        if field_name in values:
            values[field_name] = str(values[field_name])

    # URLs are compared and replaced verbatim, trailing slashes would break that
    site_url = values.get("site_url")
    if site_url:
        values["site_url"] = str(site_url).rstrip("/")

    return EnvironmentConfig(name=name, **values)


def load_settings(
    config_file: Optional[str] = None,
    env_file: Optional[str] = None,
    verbose: bool = False,
) -> SyncSettings:
    """
    Loads the sync configuration

    Args:
        config_file: YAML file (defaults to ./wp-sync.yaml)
        env_file: .env file with overrides (defaults to .env next to the YAML file)
        verbose: If True, displays what was loaded

    Returns:
        SyncSettings: Settings and environment records

    Raises:
        ConfigError: If the file is missing, unreadable or malformed
    """
    path = Path(config_file or DEFAULT_CONFIG_FILE)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}. Please create {DEFAULT_CONFIG_FILE}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading configuration from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping")

    dotenv_path = Path(env_file) if env_file else path.parent / ".env"
    if dotenv_path.exists():
        if verbose:
            print(f"📝 Loading environment overrides from {dotenv_path}")
        load_dotenv(dotenv_path)

    sync_config = copy.deepcopy(DEFAULT_SYNC_SETTINGS)
    _update_dict_recursive(sync_config, data.get("sync") or {})

    raw_environments = data.get("environments") or {}
    if not isinstance(raw_environments, dict) or not raw_environments:
        raise ConfigError(f"No environments defined in {path}")

    environments: Dict[str, EnvironmentConfig] = {}
    for name, raw in raw_environments.items():
        if name not in ENVIRONMENTS:
            raise ConfigError(
                f"Unknown environment '{name}' in {path} (expected one of: {', '.join(ENVIRONMENTS)})"
            )
        merged = dict(raw or {})
        merged.update(_env_overrides(name))
        environments[name] = build_environment(name, merged)

    timeout = sync_config.get("timeout")
    settings = SyncSettings(
        environments=environments,
        min_interval_seconds=int(float(sync_config["min_interval_minutes"]) * 60),
        marker_file=str(sync_config["marker_file"]),
        log_file=str(sync_config["log_file"]),
        work_dir=str(sync_config["work_dir"]),
        timeout=int(timeout) if timeout else None,
        required_tools=tuple(sync_config["required_tools"]),
        serialized_aware=_to_bool(sync_config["serialized_aware"]),
        config_file=str(path),
    )

    if verbose:
        display(settings)

    return settings


def display(settings: SyncSettings) -> None:
    """
    Displays the loaded configuration with credentials hidden
    """
    print("\n🔧 Loaded configuration:")
    print(f"   - Rate limit: {settings.min_interval_seconds // 60} min")
    print(f"   - Marker file: {settings.marker_file}")
    print(f"   - Log file: {settings.log_file}")
    print(f"   - Timeout: {settings.timeout or 'none'}")
    for name, env in settings.environments.items():
        print(f"   - {name}:")
        print(f"      - Transport: {env.label}")
        print(f"      - URL: {env.site_url}")
        print(f"      - DB: {env.db_name or 'not configured'} @ {env.db_host or 'not configured'}")
        print(f"      - DB Pass: {'*' * 8 if env.db_pass else 'not configured'}")
    print()
