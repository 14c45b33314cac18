"""Configuration helpers for the fumo CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fumo_sdk.auth import DEFAULT_LOGIN_PATH, DEFAULT_REFRESH_PATH
from fumo_sdk.client import AUTH_SCHEMES
from fumo_sdk.transport import DEFAULT_BASE_URL, DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT

DEFAULT_STORE_DIR = Path.home() / ".fumo"
DEFAULT_CONFIG_PATH = DEFAULT_STORE_DIR / "config.toml"
DEFAULT_PROFILE = "default"
BASE_URL_ENV_VAR = "FUMO_BASE_URL"
PROFILE_ENV_VAR = "FUMO_PROFILE"
STORE_DIR_ENV_VAR = "FUMO_STORE_DIR"
LOG_LEVEL_ENV_VAR = "FUMO_LOG_LEVEL"

_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


@dataclass(frozen=True)
class CLIConfig:
    beta_mode: bool = True
    base_url: str = DEFAULT_BASE_URL
    profile: str = DEFAULT_PROFILE
    store_dir: str = str(DEFAULT_STORE_DIR)
    auth_scheme: str = "bearer"
    login_path: str = DEFAULT_LOGIN_PATH
    refresh_path: str = DEFAULT_REFRESH_PATH
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    retries: int = 3
    log_level: str = "warning"


class ConfigError(ValueError):
    """Raised when CLI config is invalid."""


def _load_toml(path: Path) -> dict[str, Any]:
    raw = path.read_text(encoding="utf-8")

    try:  # Python 3.11+
        import tomllib  # type: ignore[attr-defined]
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    except ModuleNotFoundError:
        try:
            import tomli
        except ModuleNotFoundError as exc:
            raise ConfigError("toml parser unavailable; install tomli for Python < 3.11") from exc
        try:
            return tomli.loads(raw)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _to_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ConfigError(f"{field_name} must be a boolean")


def _to_positive_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a positive number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a positive number") from exc
    if parsed <= 0:
        raise ConfigError(f"{field_name} must be a positive number")
    return parsed


def _non_empty(source: dict[str, Any], name: str, default: str, env_var: str | None = None) -> str:
    env_value = os.getenv(env_var) if env_var else None
    value = env_value.strip() if env_value else str(source.get(name, default)).strip()
    if not value:
        raise ConfigError(f"{name} must not be empty")
    return value


def load_cli_config(path: str | Path | None = None) -> CLIConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        parsed = _load_toml(config_path)
    else:
        parsed = {}

    section = parsed.get("cli")
    if isinstance(section, dict):
        source = section
    elif section is None:
        source = parsed
    else:
        raise ConfigError("[cli] must be a table")

    beta_mode = _to_bool(source.get("beta_mode", True), "beta_mode")
    base_url = _non_empty(source, "base_url", DEFAULT_BASE_URL, BASE_URL_ENV_VAR)
    if not base_url.startswith(("https://", "http://")):
        raise ConfigError("base_url must be an http(s) URL")
    profile = _non_empty(source, "profile", DEFAULT_PROFILE, PROFILE_ENV_VAR)
    store_dir = _non_empty(source, "store_dir", str(DEFAULT_STORE_DIR), STORE_DIR_ENV_VAR)

    auth_scheme = str(source.get("auth_scheme", "bearer")).strip().lower()
    if auth_scheme not in AUTH_SCHEMES:
        raise ConfigError(f"auth_scheme must be one of: {', '.join(AUTH_SCHEMES)}")

    login_path = _non_empty(source, "login_path", DEFAULT_LOGIN_PATH)
    refresh_path = _non_empty(source, "refresh_path", DEFAULT_REFRESH_PATH)
    connect_timeout = _to_positive_float(
        source.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT), "connect_timeout"
    )
    read_timeout = _to_positive_float(
        source.get("read_timeout", DEFAULT_READ_TIMEOUT), "read_timeout"
    )

    retries = source.get("retries", 3)
    if isinstance(retries, bool) or not isinstance(retries, int) or not 0 <= retries <= 10:
        raise ConfigError("retries must be an integer between 0 and 10")

    log_level = _non_empty(source, "log_level", "warning", LOG_LEVEL_ENV_VAR).lower()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"log_level must be one of: {', '.join(sorted(_LOG_LEVELS))}")

    return CLIConfig(
        beta_mode=beta_mode,
        base_url=base_url,
        profile=profile,
        store_dir=store_dir,
        auth_scheme=auth_scheme,
        login_path=login_path,
        refresh_path=refresh_path,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries=retries,
        log_level=log_level,
    )
