"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .allowlist import parse_allowlist_entry
from .errors import LabelSyntaxError, MalformedPatternError
from .fragments import DEFAULT_TOOLS_REPOSITORY
from .labels import validate_repository_name
from .semantics import (
    BZL_VISIBILITY_ALLOWLIST_IGNORES_REPOSITORY,
    EXPERIMENTAL_BZL_VISIBILITY,
    EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST,
    BuildLanguageOptions,
)

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BZLVIS_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/bzlvis/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/state/bzlvis")
DEFAULT_LOG_LEVEL = "info"


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    workspace: Path
    logging: LoggingConfig
    options: BuildLanguageOptions = field(default_factory=BuildLanguageOptions)
    repositories: dict[str, Path] = field(default_factory=dict)
    tools_repository: str = DEFAULT_TOOLS_REPOSITORY
    fragments: dict[str, dict[str, str]] = field(default_factory=dict)


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML."""

    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw, base_dir=config_path.parent)


def resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _parse_config(raw: dict[str, Any], *, base_dir: Path) -> Config:
    root_dir = Path(raw.get("rootdir") or raw.get("root_dir") or DEFAULT_ROOT_DIR).expanduser()
    workspace = _parse_path(raw.get("workspace"), "workspace", base_dir)
    repositories = _parse_repositories(raw.get("repositories"), base_dir)
    tools_repository = _parse_tools_repository(raw.get("tools_repository"))
    options = _parse_build_language(raw.get("build_language"))
    fragments = _parse_fragments(raw.get("fragments"))
    logging_config = _parse_logging(raw.get("logging"))
    config = Config(
        root_dir=root_dir,
        workspace=workspace,
        logging=logging_config,
        options=options,
        repositories=repositories,
        tools_repository=tools_repository,
        fragments=fragments,
    )
    _warn_if_allowlist_unused(config.options)
    return config


def _parse_path(value: Any, field_name: str, base_dir: Path) -> Path:
    if value is None:
        raise ConfigError(f"{field_name} must be configured.")
    if isinstance(value, Path):
        path = value
    elif isinstance(value, str) and value.strip():
        path = Path(value)
    else:
        raise ConfigError(f"{field_name} must be a string path.")
    path = path.expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path


def _parse_repositories(value: Any, base_dir: Path) -> dict[str, Path]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("repositories must be a mapping of repository name to path.")

    repositories: dict[str, Path] = {}
    for name, path in value.items():
        if not isinstance(name, str) or not name:
            raise ConfigError(f"repositories: invalid repository name {name!r}.")
        try:
            validate_repository_name(name)
        except LabelSyntaxError as exc:
            raise ConfigError(f"repositories: {exc}") from exc
        repositories[name] = _parse_path(path, f"repositories.{name}", base_dir)
    return repositories


def _parse_tools_repository(value: Any) -> str:
    if value is None:
        return DEFAULT_TOOLS_REPOSITORY
    if not isinstance(value, str):
        raise ConfigError("tools_repository must be a string.")
    name = value[1:] if value.startswith("@") else value
    try:
        return validate_repository_name(name)
    except LabelSyntaxError as exc:
        raise ConfigError(f"tools_repository: {exc}") from exc


def _parse_build_language(value: Any) -> BuildLanguageOptions:
    if value is None:
        return BuildLanguageOptions()
    if not isinstance(value, dict):
        raise ConfigError("build_language must be a mapping.")

    enabled = value.get(EXPERIMENTAL_BZL_VISIBILITY, False)
    if not isinstance(enabled, bool):
        raise ConfigError(f"build_language.{EXPERIMENTAL_BZL_VISIBILITY} must be a boolean.")
    ignores_repository = value.get(BZL_VISIBILITY_ALLOWLIST_IGNORES_REPOSITORY, False)
    if not isinstance(ignores_repository, bool):
        raise ConfigError(
            f"build_language.{BZL_VISIBILITY_ALLOWLIST_IGNORES_REPOSITORY} must be a boolean."
        )
    allowlist = _parse_allowlist(value.get(EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST))
    return BuildLanguageOptions(
        experimental_bzl_visibility=enabled,
        experimental_bzl_visibility_allowlist=allowlist,
        bzl_visibility_allowlist_ignores_repository=ignores_repository,
    )


def _parse_allowlist(value: Any) -> tuple[str, ...]:
    field_name = f"build_language.{EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST}"
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list.")

    entries: list[str] = []
    for idx, entry in enumerate(value, start=1):
        if not isinstance(entry, str):
            raise ConfigError(f"{field_name}[{idx}] must be a string.")
        try:
            parse_allowlist_entry(entry)
        except MalformedPatternError as exc:
            raise ConfigError(f"{field_name}[{idx}]: {exc}") from exc
        entries.append(entry)
    return tuple(entries)


def _parse_fragments(value: Any) -> dict[str, dict[str, str]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("fragments must be a mapping of fragment name to fields.")

    fragments: dict[str, dict[str, str]] = {}
    for name, fields in value.items():
        if fields is None:
            fragments[str(name)] = {}
            continue
        if not isinstance(fields, dict):
            raise ConfigError(f"Fragment '{name}' config must be a mapping.")
        parsed: dict[str, str] = {}
        for field_name, label in fields.items():
            if not isinstance(label, str):
                raise ConfigError(f"fragments.{name}.{field_name} must be a label string.")
            parsed[str(field_name)] = label
        fragments[str(name)] = parsed
    return fragments


def _warn_if_allowlist_unused(options: BuildLanguageOptions) -> None:
    if options.experimental_bzl_visibility:
        return
    if options.experimental_bzl_visibility_allowlist:
        LOGGER.warning(
            "%s is set but %s is disabled; visibility() calls will fail.",
            EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST,
            EXPERIMENTAL_BZL_VISIBILITY,
        )


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


__all__ = [
    "Config",
    "LoggingConfig",
    "ConfigError",
    "CONFIG_ENV_VAR",
    "load_config",
    "resolve_config_path",
]
