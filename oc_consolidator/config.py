from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from oc_consolidator.consolidation import (
    PREVIEW_CONSOLIDATED_SAMPLES,
    PREVIEW_DETAIL_SAMPLES,
    PREVIEW_MAIN_SAMPLES,
)
from oc_consolidator.errors import ConfigError
from oc_consolidator.headers import HEADER_SCAN_ROWS
from oc_consolidator.upsert import DEFAULT_API_URL, DEFAULT_TIMEOUT_SECONDS

ENV_KEYS = {
    "api_url": "OC_CONSOLIDATOR_API_URL",
    "api_token": "OC_CONSOLIDATOR_API_TOKEN",
    "timeout_seconds": "OC_CONSOLIDATOR_TIMEOUT",
    "header_scan_rows": "OC_CONSOLIDATOR_HEADER_SCAN_ROWS",
}
SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}
STRING_SETTINGS = {"api_url", "api_token"}
FLOAT_SETTINGS = {"timeout_seconds"}


@dataclass
class Settings:
    api_url: str = DEFAULT_API_URL
    api_token: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    header_scan_rows: int = HEADER_SCAN_ROWS
    preview_main_samples: int = PREVIEW_MAIN_SAMPLES
    preview_detail_samples: int = PREVIEW_DETAIL_SAMPLES
    preview_consolidated_samples: int = PREVIEW_CONSOLIDATED_SAMPLES

    def to_dict(self, *, redact: bool = True) -> dict[str, Any]:
        payload = asdict(self)
        if redact and payload["api_token"]:
            payload["api_token"] = "***"
        return payload


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        if name == "api_token":
            return None
        raise ConfigError(f"{name} cannot be empty")
    if name in STRING_SETTINGS:
        return str(value)
    try:
        number = float(value) if name in FLOAT_SETTINGS else int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{name} must be greater than 0, got {value!r}")
    return number


def _apply(settings: Settings, values: Mapping[str, Any], source: str) -> Settings:
    known = {item.name: item for item in fields(Settings)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ConfigError(f"Unknown setting(s) in {source}: {', '.join(unknown)}")
    updates = {name: _coerce(name, value) for name, value in values.items()}
    return replace(settings, **updates)


def load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError("Config must be .json, .yml, or .yaml")
    if suffix in {".yml", ".yaml"}:
        raise ConfigError("YAML config files are not supported yet. Use JSON for now.")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Could not read config: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object.")
    return payload


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Defaults, then the JSON file, then environment variables, then explicit overrides."""
    env = os.environ if env is None else env
    settings = Settings()
    if path is not None:
        settings = _apply(settings, load_config_file(path), str(path))
    from_env = {name: env[key] for name, key in ENV_KEYS.items() if env.get(key)}
    if from_env:
        settings = _apply(settings, from_env, "environment")
    if overrides:
        settings = _apply(settings, {k: v for k, v in overrides.items() if v is not None}, "arguments")
    return settings


def starter_config() -> dict[str, Any]:
    return Settings().to_dict(redact=False)
