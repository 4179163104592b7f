from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from dex_arbitrage.core.exceptions import ConfigurationError

from .models import Settings

DEFAULT_CONFIG_PATHS = (
    Path("config.yaml"),
    Path("config/config.yaml"),
    Path("config/config.example.yaml"),
)

# Secrets stay out of the YAML file; they come from the environment or a .env file
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "RPC_URL": ("chain", "rpc_url"),
    "PRIVATE_KEY": ("wallet", "private_key"),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token"),
    "TELEGRAM_CHAT_ID": ("telegram", "chat_id"),
    "MINIMUM_PROFIT_THRESHOLD": ("decision", "min_profit"),
    "COINGECKO_API_KEY": ("tokens", "api_key"),
}


def load_settings(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from provided path, apply environment and explicit overrides, and return validated Settings."""
    data: dict[str, Any] = {}

    candidates = [Path(path)] if path else list(DEFAULT_CONFIG_PATHS)
    if path and not candidates[0].exists():
        raise ConfigurationError(f"Config file not found: {path}")
    for candidate in candidates:
        if candidate.exists():
            with candidate.open("r", encoding="utf-8") as fp:
                data = yaml.safe_load(fp) or {}
            break

    if environ is None:
        load_dotenv()
        environ = os.environ
    _apply_environment(data, environ)

    if overrides:
        _deep_update(data, overrides)

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def find_config_path() -> Path | None:
    """Find the actual config file path being used."""
    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.exists():
            return candidate
    return None


def _apply_environment(data: dict[str, Any], environ: Mapping[str, str]) -> None:
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value:
            data.setdefault(section, {})[key] = value


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> None:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
