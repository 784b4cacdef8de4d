"""TOML config loading, profiles, and environment overrides."""

from __future__ import annotations

import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from mitate.errors import ConfigurationError

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"

# Environment variable -> (section, key)
_ENV_OVERRIDES = {
    "MITATE_DB_PATH": ("storage", "db_path"),
    "MITATE_WS_URL": ("ledger", "ws_url"),
    "MITATE_RPC_URL": ("ledger", "rpc_url"),
    "MITATE_OPERATOR_ADDRESS": ("ledger", "operator_address"),
    "MITATE_ISSUER_ADDRESS": ("ledger", "issuer_address"),
}


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def _apply_env(raw: dict[str, Any]) -> dict[str, Any]:
    result = dict(raw)
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            result[section] = {**(result.get(section) or {}), key: value}
    return result


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml, optional profile overlay, then env overrides."""
    config_dir = _find_config_dir(config_dir)
    default_path = config_dir / "default.toml"
    base: dict[str, Any] = _load_toml(default_path) if default_path.exists() else {}
    if profile:
        profile_path = config_dir / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return _apply_env(base)


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        ledger: dict[str, Any] | None = None,
        sync: dict[str, Any] | None = None,
        settlement: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.ledger = ledger or {}
        self.sync = sync or {}
        self.settlement = settlement or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            ledger=raw.get("ledger"),
            sync=raw.get("sync"),
            settlement=raw.get("settlement"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/mitate.duckdb")

    @property
    def ws_url(self) -> str:
        return self.ledger.get("ws_url", "wss://s.altnet.rippletest.net:51233")

    @property
    def rpc_url(self) -> str:
        return self.ledger.get("rpc_url", "https://s.altnet.rippletest.net:51234")

    @property
    def network_id(self) -> int:
        return int(self.ledger.get("network_id", 1))

    @property
    def rpc_timeout_sec(self) -> float:
        return float(self.ledger.get("rpc_timeout_sec", 30.0))

    @property
    def operator_address(self) -> str:
        return str(self.ledger.get("operator_address") or "")

    @property
    def issuer_address(self) -> str:
        return str(self.ledger.get("issuer_address") or "")

    def require_operator_address(self) -> str:
        if not self.operator_address:
            raise ConfigurationError("Operator address not configured (ledger.operator_address)")
        return self.operator_address

    def require_issuer_address(self) -> str:
        if not self.issuer_address:
            raise ConfigurationError("Issuer address not configured (ledger.issuer_address)")
        return self.issuer_address

    @property
    def queue_size(self) -> int:
        return int(self.sync.get("queue_size", 1000))

    @property
    def checkpoint_every(self) -> int:
        return int(self.sync.get("checkpoint_every", 100))

    @property
    def reconnect_base_delay_sec(self) -> float:
        return float(self.sync.get("reconnect_base_delay_sec", 1.0))

    @property
    def reconnect_max_delay_sec(self) -> float:
        return float(self.sync.get("reconnect_max_delay_sec", 60.0))

    @property
    def reconnect_max_retries(self) -> int:
        return int(self.sync.get("reconnect_max_retries", 0))

    @property
    def backfill_retries(self) -> int:
        return int(self.sync.get("backfill_retries", 3))

    @property
    def catch_up_on_start(self) -> bool:
        return bool(self.sync.get("catch_up_on_start", True))

    @property
    def payout_batch_size(self) -> int:
        return int(self.settlement.get("payout_batch_size", 50))

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        # stdout is reserved for command output (payloads to sign)
        logger_factory=structlog.PrintLoggerFactory(file=sys.__stderr__ or sys.stderr),
        cache_logger_on_first_use=True,
    )
