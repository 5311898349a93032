"""Configuration management for the user service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

_DEFAULT_CORS_ORIGINS = ("http://localhost:3000",)
_LOG_FORMATS = {"text", "json"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_bool(key: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean for '{key}': {value!r}")


def _parse_seconds(key: str, value: object) -> float:
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid number of seconds for '{key}': {value!r}") from exc
    if seconds <= 0:
        raise ValueError(f"'{key}' must be greater than zero")
    return seconds


def _parse_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError(f"Invalid value for 'cors_origins': {value!r}")
    return tuple(item.strip() for item in items if item.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its storage."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    database_url: Optional[str] = None
    lock_timeout: float = 5.0
    audit: bool = True
    request_timeout: float = 30.0
    log_level: str = "INFO"
    log_format: str = "text"
    cors_origins: Tuple[str, ...] = _DEFAULT_CORS_ORIGINS

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from the raw contents of a YAML file."""

        settings = Settings()
        database = data.get("database") or {}
        if not isinstance(database, Mapping):
            raise ValueError("'database' must be a mapping")
        logging_section = data.get("logging") or {}
        if not isinstance(logging_section, Mapping):
            raise ValueError("'logging' must be a mapping")

        updates: Dict[str, object] = {}
        if database.get("path"):
            raw_path = Path(str(database["path"])).expanduser()
            if not raw_path.is_absolute() and base_path is not None:
                raw_path = base_path / raw_path
            updates["database_path"] = raw_path.resolve(strict=False)
        if database.get("url"):
            updates["database_url"] = str(database["url"])
        if database.get("lock_timeout") is not None:
            updates["lock_timeout"] = _parse_seconds("database.lock_timeout", database["lock_timeout"])
        if data.get("audit") is not None:
            updates["audit"] = _parse_bool("audit", data["audit"])
        if data.get("request_timeout") is not None:
            updates["request_timeout"] = _parse_seconds("request_timeout", data["request_timeout"])
        if logging_section.get("level") is not None:
            updates["log_level"] = str(logging_section["level"])
        if logging_section.get("format") is not None:
            updates["log_format"] = str(logging_section["format"])
        if data.get("cors_origins") is not None:
            updates["cors_origins"] = _parse_origins(data["cors_origins"])

        return replace(settings, **updates).validated()

    def with_env(self, environ: Mapping[str, str]) -> "Settings":
        """Return a copy with ``USERSERVICE_*`` environment overrides applied."""

        updates: Dict[str, object] = {}
        if environ.get("USERSERVICE_DB_PATH"):
            updates["database_path"] = resolve_database_path(environ["USERSERVICE_DB_PATH"])
        if environ.get("USERSERVICE_DATABASE_URL"):
            updates["database_url"] = environ["USERSERVICE_DATABASE_URL"]
        if environ.get("USERSERVICE_LOCK_TIMEOUT"):
            updates["lock_timeout"] = _parse_seconds("USERSERVICE_LOCK_TIMEOUT", environ["USERSERVICE_LOCK_TIMEOUT"])
        if environ.get("USERSERVICE_AUDIT"):
            updates["audit"] = _parse_bool("USERSERVICE_AUDIT", environ["USERSERVICE_AUDIT"])
        if environ.get("USERSERVICE_REQUEST_TIMEOUT"):
            updates["request_timeout"] = _parse_seconds(
                "USERSERVICE_REQUEST_TIMEOUT", environ["USERSERVICE_REQUEST_TIMEOUT"]
            )
        if environ.get("USERSERVICE_LOG_LEVEL"):
            updates["log_level"] = environ["USERSERVICE_LOG_LEVEL"]
        if environ.get("USERSERVICE_LOG_FORMAT"):
            updates["log_format"] = environ["USERSERVICE_LOG_FORMAT"]
        if environ.get("USERSERVICE_CORS_ORIGINS") is not None:
            updates["cors_origins"] = _parse_origins(environ["USERSERVICE_CORS_ORIGINS"])
        return replace(self, **updates).validated()

    def validated(self) -> "Settings":
        level = self.log_level.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid value for 'logging.level': {self.log_level!r}")
        log_format = self.log_format.strip().lower()
        if log_format not in _LOG_FORMATS:
            raise ValueError(f"Invalid value for 'logging.format': {self.log_format!r}")
        return replace(self, log_level=level, log_format=log_format)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the configuration file, if there is one."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "userservice.yaml").resolve(strict=False)
    if candidate.exists():
        return candidate
    return None


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from YAML (when available) and apply environment overrides."""

    if environ is None:
        environ = os.environ
    if config_path is None:
        config_path = resolve_config_path(environ.get("USERSERVICE_CONFIG"))

    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, Mapping):
            raise ValueError("Configuration file must contain a mapping at the top level")
        settings = Settings.from_dict(raw, base_path=config_path.parent)
    else:
        settings = Settings()

    return settings.with_env(environ)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
