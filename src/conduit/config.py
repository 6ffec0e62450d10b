"""Conduit configuration loading and validation.

Reads a ``conduit.toml`` file, resolves ``${VAR}`` environment references,
and returns a validated :class:`ConduitConfig` dataclass.  Per-account
provider files (``[account]`` tables) load into the provider config models.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from conduit.db import db_params_from_env, db_params_from_url
from conduit.providers.http import DEFAULT_TIMEOUT_SECONDS
from conduit.providers.models import CalendarAccountConfig, EmailAccountConfig
from conduit.providers.oauth import (
    CALCOM_DEFAULT_API_BASE_URL,
    CALCOM_DEFAULT_API_VERSION,
    OAuthClientSettings,
    ProviderSettings,
)

CONFIG_FILENAME = "conduit.toml"

# Pattern matching ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_LOG_FORMATS = {"text", "json"}


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [conduit.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class EngineConfig:
    """Workflow engine limits from the [engine] section.

    ``http_timeout_seconds = 0`` disables the outbound timeout;
    ``max_delay_seconds`` unset leaves DELAY actions unbounded.
    """

    http_timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS
    max_delay_seconds: float | None = None
    scheduler_tick_seconds: float = 60.0


@dataclass
class CalComConfig:
    api_base_url: str = CALCOM_DEFAULT_API_BASE_URL
    api_version: str = CALCOM_DEFAULT_API_VERSION


@dataclass
class ConduitConfig:
    name: str = "conduit"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    database: dict[str, str | int | None] | None = None
    google: OAuthClientSettings = field(default_factory=OAuthClientSettings)
    microsoft: OAuthClientSettings = field(default_factory=OAuthClientSettings)
    calcom: CalComConfig = field(default_factory=CalComConfig)

    def provider_settings(self) -> ProviderSettings:
        return ProviderSettings(
            google=self.google,
            microsoft=self.microsoft,
            calcom_api_base_url=self.calcom.api_base_url,
            calcom_api_version=self.calcom.api_version,
            http_timeout_seconds=self.engine.http_timeout_seconds,
        )

    @classmethod
    def from_env(cls) -> ConduitConfig:
        """Defaults with OAuth and Cal.com settings taken from the environment."""
        return cls(
            google=OAuthClientSettings.from_env("GOOGLE"),
            microsoft=OAuthClientSettings.from_env("MICROSOFT"),
            calcom=CalComConfig(
                api_base_url=os.environ.get("CALCOM_API_URL") or CALCOM_DEFAULT_API_BASE_URL
            ),
        )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return resolve_env_vars(data)


def _section(data: dict[str, Any], key: str, label: str) -> dict[str, Any]:
    section = data.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{label}] must be a table")
    return section


def _optional_seconds(section: dict[str, Any], key: str, label: str) -> float | None:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
        raise ConfigError(f"Invalid {label}.{key}: {value!r}. Must be a non-negative number.")
    return float(value)


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"Invalid conduit.logging.level: {level!r}")
    fmt = str(section.get("format", "text")).lower()
    if fmt not in _LOG_FORMATS:
        raise ConfigError(f"Invalid conduit.logging.format: {fmt!r}. Must be 'text' or 'json'.")
    log_root = section.get("log_root")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("conduit.logging.log_root must be a string when set")
    return LoggingConfig(level=level, format=fmt, log_root=log_root)


def _parse_engine(section: dict[str, Any]) -> EngineConfig:
    timeout = _optional_seconds(section, "http_timeout_seconds", "engine")
    max_delay = _optional_seconds(section, "max_delay_seconds", "engine")
    tick = _optional_seconds(section, "scheduler_tick_seconds", "engine")
    if tick is not None and tick <= 0:
        raise ConfigError("Invalid engine.scheduler_tick_seconds: Must be a positive number.")
    return EngineConfig(
        http_timeout_seconds=DEFAULT_TIMEOUT_SECONDS if timeout is None else timeout,
        max_delay_seconds=max_delay,
        scheduler_tick_seconds=tick or 60.0,
    )


def _parse_database(section: dict[str, Any]) -> dict[str, str | int | None]:
    url = section.get("url")
    if url is not None:
        if not isinstance(url, str) or not url.strip():
            raise ConfigError("database.url must be a non-empty string")
        return db_params_from_url(url)
    params = db_params_from_env()
    for key in ("host", "port", "user", "password", "database", "ssl"):
        if key in section:
            params[key] = section[key]
    if not isinstance(params.get("port"), int):
        raise ConfigError(f"Invalid database.port: {params.get('port')!r}")
    return params


def _parse_oauth(section: dict[str, Any], prefix: str) -> OAuthClientSettings:
    fallback = OAuthClientSettings.from_env(prefix)
    return OAuthClientSettings(
        client_id=section.get("client_id") or fallback.client_id,
        client_secret=section.get("client_secret") or fallback.client_secret,
    )


def load_config(path: Path) -> ConduitConfig:
    """Load and validate ``conduit.toml`` (a file, or a directory holding one).

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path
    data = _read_toml(toml_path)

    conduit_section = _section(data, "conduit", "conduit")
    name = conduit_section.get("name", "conduit")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("conduit.name must be a non-empty string")

    oauth_section = _section(data, "oauth", "oauth")
    calcom_section = _section(data, "calcom", "calcom")
    database_section = data.get("database")
    if database_section is not None and not isinstance(database_section, dict):
        raise ConfigError("[database] must be a table")

    return ConduitConfig(
        name=name.strip(),
        logging=_parse_logging(_section(conduit_section, "logging", "conduit.logging")),
        engine=_parse_engine(_section(data, "engine", "engine")),
        database=_parse_database(database_section) if database_section is not None else None,
        google=_parse_oauth(_section(oauth_section, "google", "oauth.google"), "GOOGLE"),
        microsoft=_parse_oauth(
            _section(oauth_section, "microsoft", "oauth.microsoft"), "MICROSOFT"
        ),
        calcom=CalComConfig(
            api_base_url=calcom_section.get("api_base_url")
            or os.environ.get("CALCOM_API_URL")
            or CALCOM_DEFAULT_API_BASE_URL,
            api_version=calcom_section.get("api_version") or CALCOM_DEFAULT_API_VERSION,
        ),
    )


def load_account_config(path: Path) -> CalendarAccountConfig | EmailAccountConfig:
    """Load one connected account from the ``[account]`` table of *path*.

    ``kind = "calendar"`` or ``kind = "email"`` selects the config shape;
    the remaining keys are the account fields.
    """
    data = _read_toml(path)
    account = data.get("account")
    if not isinstance(account, dict):
        raise ConfigError(f"Missing [account] section in {path}")

    fields = dict(account)
    kind = str(fields.pop("kind", "")).strip().lower()
    try:
        if kind == "calendar":
            return CalendarAccountConfig.model_validate(fields)
        if kind == "email":
            return EmailAccountConfig.model_validate(fields)
    except ValidationError as exc:
        raise ConfigError(f"Invalid account in {path}: {exc}") from exc
    raise ConfigError(f"account.kind must be 'calendar' or 'email', got {kind!r}")
