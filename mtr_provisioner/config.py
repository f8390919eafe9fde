"""Configuration loading utilities for the Teams Rooms provisioning console."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "MTR_CONFIG"
ENV_PREFIX = "MTR_"

# Variable names read by the legacy .env workflow.
LEGACY_ENV_NAMES: Dict[tuple[str, str], tuple[str, ...]] = {
    ("graph", "tenant_id"): ("AZURE_TENANT_ID", "TENANT_ID"),
    ("graph", "client_id"): ("AZURE_CLIENT_ID", "CLIENT_ID"),
    ("graph", "client_secret"): ("AZURE_CLIENT_SECRET", "CLIENT_SECRET"),
    ("groups", "resource_account"): ("MTR-ResourceAccountsID",),
    ("groups", "room_account"): ("SHARED_GROUP_ID",),
    ("groups", "pro_license"): ("PRO_GROUP_ID",),
}


@dataclass
class GraphConfig:
    """Settings for the Microsoft Graph app registration."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    timeout: int = 30

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass
class GroupsConfig:
    """Object ids of the three Entra ID groups a resource account may join."""

    resource_account: Optional[str] = None
    room_account: Optional[str] = None
    pro_license: Optional[str] = None


@dataclass
class AccountsConfig:
    """Defaults applied when creating or resetting resource accounts."""

    password_length: int = 16
    usage_location: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    directory: Optional[Path] = None


@dataclass
class WebConfig:
    host: str = "127.0.0.1"
    port: int = 5000


@dataclass
class AppConfig:
    """Aggregate configuration for the application."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    groups: GroupsConfig = field(default_factory=GroupsConfig)
    accounts: AccountsConfig = field(default_factory=AccountsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file '{path}' does not exist. "
            "Create it from 'config/settings.example.yaml' or set environment variables."
        )
    with path.open("r", encoding="utf-8") as file:
        try:
            payload = yaml.safe_load(file) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping.")
    return payload


def _apply_environment_overrides(
    config_dict: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Override configuration values with environment variables."""

    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _apply_legacy_environment(
    config_dict: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Fill unset values from the variable names of the legacy .env file."""

    environ = os.environ if environ is None else environ
    result = dict(config_dict)
    for (section, key), names in LEGACY_ENV_NAMES.items():
        raw_section = result.get(section) or {}
        if not isinstance(raw_section, dict):
            continue
        current = dict(raw_section)
        if _optional_str(current.get(key)):
            continue
        for name in names:
            value = _optional_str(environ.get(name))
            if value:
                current[key] = value
                break
        result[section] = current
    return result


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Ensure a configuration file exists, copying from the example if needed."""

    target_path = resolve_config_path(path)
    if target_path.exists():
        return target_path

    template = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not template.exists():
        raise ConfigurationError(
            "Default configuration template not found. "
            "Ensure 'config/settings.example.yaml' is present or specify a template."
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target_path)
    return target_path


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH and not resolved_path.exists():
        if DEFAULT_TEMPLATE_PATH.exists():
            ensure_default_config(resolved_path)
        else:
            # Environment-only setup, as with the legacy .env workflow.
            return _apply_legacy_environment(_apply_environment_overrides({}))

    config_dict = _load_from_file(resolved_path)
    return _apply_legacy_environment(_apply_environment_overrides(config_dict))


def _section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config_dict.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return value


def _to_int(value: Any, name: str) -> int:
    try:
        if isinstance(value, str):
            return int(value.strip())
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Configuration value '{name}' must be an integer.") from exc


def _optional_path(raw: Any) -> Optional[Path]:
    """Convert a raw config value to ``Path`` if set, otherwise ``None``."""

    if raw is None:
        return None
    if isinstance(raw, Path):
        return raw
    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return None
        return Path(stripped)
    return Path(raw)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def config_from_dict(config_dict: Dict[str, Any]) -> AppConfig:
    """Build an :class:`AppConfig` from a merged configuration mapping."""

    graph_section = _section(config_dict, "graph")
    groups_section = _section(config_dict, "groups")
    accounts_section = _section(config_dict, "accounts")
    logging_section = _section(config_dict, "logging")
    web_section = _section(config_dict, "web")

    graph = GraphConfig(
        tenant_id=_optional_str(graph_section.get("tenant_id")),
        client_id=_optional_str(graph_section.get("client_id")),
        client_secret=_optional_str(graph_section.get("client_secret")),
        timeout=_to_int(graph_section.get("timeout", GraphConfig.timeout), "graph.timeout"),
    )
    groups = GroupsConfig(
        resource_account=_optional_str(groups_section.get("resource_account")),
        room_account=_optional_str(groups_section.get("room_account")),
        pro_license=_optional_str(groups_section.get("pro_license")),
    )

    password_length = _to_int(
        accounts_section.get("password_length", AccountsConfig.password_length),
        "accounts.password_length",
    )
    if password_length < 8:
        raise ConfigurationError("Configuration value 'accounts.password_length' must be at least 8.")
    accounts = AccountsConfig(
        password_length=password_length,
        usage_location=_optional_str(accounts_section.get("usage_location")),
    )

    logging_config = LoggingConfig(
        level=(_optional_str(logging_section.get("level")) or LoggingConfig.level).upper(),
        directory=_optional_path(logging_section.get("directory")),
    )
    web = WebConfig(
        host=_optional_str(web_section.get("host")) or WebConfig.host,
        port=_to_int(web_section.get("port", WebConfig.port), "web.port"),
    )
    return AppConfig(graph=graph, groups=groups, accounts=accounts, logging=logging_config, web=web)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from disk and environment variables."""

    return config_from_dict(_load_config_dict(path))


__all__ = [
    "AccountsConfig",
    "AppConfig",
    "ConfigurationError",
    "GraphConfig",
    "GroupsConfig",
    "LoggingConfig",
    "WebConfig",
    "config_from_dict",
    "ensure_default_config",
    "load_config",
    "resolve_config_path",
]
