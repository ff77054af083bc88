"""Aftercare configuration loading and validation.

Reads aftercare.toml, resolves ``${VAR}`` references from the environment,
and returns a validated AftercareConfig dataclass.
"""

from __future__ import annotations

import enum
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_FILENAME = "aftercare.toml"
DEFAULT_DATA_DIR = "~/.local/share/aftercare"
DEFAULT_CHECKED_ITEMS_PATH = "/checked-items"

# Pattern matching ${VAR_NAME}: alphanumeric and underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when aftercare configuration is missing, malformed, or invalid."""


class BackendKind(enum.StrEnum):
    """Which persistence backend holds the recovery records."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class LoggingConfig:
    """Logging configuration from [aftercare.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ApiConfig:
    """Remote API configuration from [aftercare.api] section.

    ``timeout_s`` of ``None`` leaves requests without a client-side timeout;
    a hung request keeps its collection's loading flag raised.
    """

    url: str | None = None
    timeout_s: float | None = None
    checked_items_path: str = DEFAULT_CHECKED_ITEMS_PATH


@dataclass
class AftercareConfig:
    """Top-level aftercare configuration."""

    backend: BackendKind = BackendKind.LOCAL
    data_dir: Path = field(default_factory=lambda: Path(DEFAULT_DATA_DIR).expanduser())
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


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


def _parse_api(section: Any) -> ApiConfig:
    """Parse the optional [aftercare.api] sub-section."""
    if not isinstance(section, dict):
        raise ConfigError("aftercare.api must be a table")

    url = section.get("url")
    if url is not None:
        url = str(url).strip().rstrip("/") or None

    timeout_raw = section.get("timeout_s")
    timeout_s: float | None = None
    if timeout_raw is not None:
        try:
            timeout_s = float(timeout_raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"aftercare.api.timeout_s must be a number, got {timeout_raw!r}"
            ) from exc
        if timeout_s <= 0:
            raise ConfigError("aftercare.api.timeout_s must be positive when set")

    checked_path = str(section.get("checked_items_path", DEFAULT_CHECKED_ITEMS_PATH)).strip()
    if not checked_path.startswith("/"):
        checked_path = f"/{checked_path}"

    return ApiConfig(url=url, timeout_s=timeout_s, checked_items_path=checked_path)


def _parse_logging(section: Any) -> LoggingConfig:
    """Parse the optional [aftercare.logging] sub-section."""
    if not isinstance(section, dict):
        raise ConfigError("aftercare.logging must be a table")

    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid aftercare.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def parse_config(data: dict[str, Any]) -> AftercareConfig:
    """Build an AftercareConfig from already-parsed TOML data."""
    data = resolve_env_vars(data)

    section = data.get("aftercare", {})
    if not isinstance(section, dict):
        raise ConfigError("[aftercare] must be a table")

    backend_raw = str(section.get("backend", BackendKind.LOCAL)).strip().lower()
    try:
        backend = BackendKind(backend_raw)
    except ValueError as exc:
        valid = ", ".join(k.value for k in BackendKind)
        raise ConfigError(
            f"Invalid aftercare.backend: {backend_raw!r}. Must be one of: {valid}"
        ) from exc

    data_dir = Path(str(section.get("data_dir", DEFAULT_DATA_DIR))).expanduser()
    api = _parse_api(section.get("api", {}))
    logging_config = _parse_logging(section.get("logging", {}))

    if backend is BackendKind.REMOTE and not api.url:
        raise ConfigError("aftercare.api.url is required when aftercare.backend is 'remote'")

    return AftercareConfig(backend=backend, data_dir=data_dir, api=api, logging=logging_config)


def load_config(path: Path) -> AftercareConfig:
    """Load and validate an aftercare.toml file.

    Parameters
    ----------
    path:
        Path to the TOML file, or a directory containing ``aftercare.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or holds invalid values.
    """
    path = Path(path)
    toml_path = path / DEFAULT_CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)


def default_config() -> AftercareConfig:
    """Return the configuration used when no config file exists (local backend)."""
    return AftercareConfig()
