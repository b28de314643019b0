"""Settings loading for the escape hub service."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import]

PACKAGE_DIR = Path(__file__).resolve().parent
SETTINGS_PATH = PACKAGE_DIR / "escape_hub.yaml"
DEFAULT_CATALOG_PATH = PACKAGE_DIR / "rooms.yaml"

ENV_SETTINGS_PATH = "ESCAPE_HUB_SETTINGS"
ENV_DATABASE_URL = "ESCAPE_HUB_DATABASE_URL"
ENV_CATALOG_PATH = "ESCAPE_HUB_CATALOG_PATH"
ENV_LOG_LEVEL = "ESCAPE_HUB_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class HubSettings:
    """Runtime configuration for the hub."""

    database_url: str = "sqlite:///escape_hub.db"
    catalog_path: Path = DEFAULT_CATALOG_PATH
    log_level: str = "INFO"
    max_write_retries: int = 3
    min_actions_per_player: int = 1


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> HubSettings:
    """Load settings from YAML, then apply environment overrides."""
    env = os.environ if environ is None else environ
    target = path or Path(env.get(ENV_SETTINGS_PATH) or SETTINGS_PATH)
    data: dict[str, Any] = {}
    if target.exists():
        with target.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Settings file must contain a mapping.")
        data = loaded

    settings = settings_from_mapping(data, base_dir=target.parent)
    overrides: dict[str, Any] = {}
    if env.get(ENV_DATABASE_URL):
        overrides["database_url"] = env[ENV_DATABASE_URL]
    if env.get(ENV_CATALOG_PATH):
        overrides["catalog_path"] = Path(env[ENV_CATALOG_PATH])
    if env.get(ENV_LOG_LEVEL):
        overrides["log_level"] = _validate_log_level(env[ENV_LOG_LEVEL])
    return replace(settings, **overrides) if overrides else settings


def settings_from_mapping(data: Mapping[str, Any], base_dir: Path | None = None) -> HubSettings:
    """Validate a settings mapping, resolving relative paths against ``base_dir``."""
    defaults = HubSettings()
    contribution = data.get("contribution") or {}
    if not isinstance(contribution, Mapping):
        raise ValueError("contribution settings must be a mapping.")

    catalog_path = defaults.catalog_path
    if data.get("catalog_path"):
        catalog_path = Path(str(data["catalog_path"]))
        if not catalog_path.is_absolute() and base_dir is not None:
            catalog_path = base_dir / catalog_path

    return HubSettings(
        database_url=str(data.get("database_url") or defaults.database_url),
        catalog_path=catalog_path,
        log_level=_validate_log_level(data.get("log_level", defaults.log_level)),
        max_write_retries=_bounded_int(
            data.get("max_write_retries", defaults.max_write_retries),
            "max_write_retries",
            0,
            20,
        ),
        min_actions_per_player=_bounded_int(
            contribution.get("min_actions_per_player", defaults.min_actions_per_player),
            "contribution.min_actions_per_player",
            0,
            1000,
        ),
    )


def configure_logging(level: str) -> None:
    """Install a basic root handler at the requested level."""
    logging.basicConfig(level=_validate_log_level(level), format=LOG_FORMAT)


def _validate_log_level(value: Any) -> str:
    level = str(value).strip().upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level '{value}'.")
    return level


def _bounded_int(value: Any, name: str, minimum: int, maximum: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer.")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    if not minimum <= number <= maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}.")
    return number


__all__ = [
    "DEFAULT_CATALOG_PATH",
    "HubSettings",
    "SETTINGS_PATH",
    "configure_logging",
    "load_settings",
    "settings_from_mapping",
]
