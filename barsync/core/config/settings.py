"""Configuration management for barsync."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from barsync.core.exceptions.base import ConfigurationError
from barsync.core.models.market import Period

DEFAULT_HOME = Path.home() / ".barsync"


def _require_positive(section: str, **values: float) -> None:
    for name, value in values.items():
        if value <= 0:
            raise ConfigurationError(f"{section}.{name} must be positive", {"field": f"{section}.{name}", "value": value})


def _require_non_negative(section: str, **values: float) -> None:
    for name, value in values.items():
        if value < 0:
            raise ConfigurationError(f"{section}.{name} must not be negative", {"field": f"{section}.{name}", "value": value})


@dataclass
class UpstreamConfig:
    """Upstream gateway connection settings; timeouts are in seconds."""

    base_url: str = "http://localhost:8000"
    health_timeout: float = 5.0
    search_timeout: float = 30.0
    history_timeout: float = 60.0
    realtime_timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    account_mode: str | None = None

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigurationError("upstream.base_url must be set")
        _require_positive(
            "upstream",
            health_timeout=self.health_timeout,
            search_timeout=self.search_timeout,
            history_timeout=self.history_timeout,
            realtime_timeout=self.realtime_timeout,
            backoff_max=self.backoff_max,
        )
        _require_non_negative("upstream", max_retries=self.max_retries, backoff_base=self.backoff_base)


@dataclass
class StorageConfig:
    database: str = str(DEFAULT_HOME / "bars.duckdb")
    read_only: bool = False
    threads: int | None = None
    memory_limit: str | None = None


@dataclass
class ReconcilerConfig:
    freshness_threshold_seconds: int = 2 * 60 * 60

    def __post_init__(self) -> None:
        _require_non_negative("reconciler", freshness_threshold_seconds=self.freshness_threshold_seconds)


@dataclass
class BulkConfig:
    timeframe_delay: float = 1.0
    symbol_delay: float = 2.0
    run_timeout: float = 20 * 60
    default_period: str = Period.YEAR_1.value

    def __post_init__(self) -> None:
        _require_non_negative("bulk", timeframe_delay=self.timeframe_delay, symbol_delay=self.symbol_delay)
        _require_positive("bulk", run_timeout=self.run_timeout)
        try:
            Period(self.default_period)
        except ValueError as exc:
            raise ConfigurationError(
                f"bulk.default_period must be one of {[p.value for p in Period]}",
                {"field": "bulk.default_period", "value": self.default_period},
            ) from exc


@dataclass
class QualityConfig:
    zero_volume_ratio: float = 0.1
    gap_tolerance: float = 1.5
    default_lookback_days: int = 30

    def __post_init__(self) -> None:
        if not 0 <= self.zero_volume_ratio <= 1:
            raise ConfigurationError(
                "quality.zero_volume_ratio must be between 0 and 1",
                {"field": "quality.zero_volume_ratio", "value": self.zero_volume_ratio},
            )
        _require_positive("quality", gap_tolerance=self.gap_tolerance, default_lookback_days=self.default_lookback_days)


@dataclass
class SchedulerConfig:
    collection_interval: float = 5 * 60
    strategy_interval: float = 5 * 60
    keep_alive_interval: float = 15 * 60
    keep_alive_warmup: float = 30

    def __post_init__(self) -> None:
        _require_positive(
            "scheduler",
            collection_interval=self.collection_interval,
            strategy_interval=self.strategy_interval,
            keep_alive_interval=self.keep_alive_interval,
        )
        _require_non_negative("scheduler", keep_alive_warmup=self.keep_alive_warmup)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = True
    file: str | None = None


def _build_section(section_cls: type[Any], name: str, values: Any) -> Any:
    if not isinstance(values, dict):
        raise ConfigurationError(f"[{name}] must be a table", {"section": name})
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"unknown keys in [{name}]: {', '.join(unknown)}", {"section": name, "keys": unknown})
    return section_cls(**values)


@dataclass
class BarSyncConfig:
    """Top-level barsync configuration."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "BarSyncConfig":
        sections = {f.name: f.default_factory for f in fields(cls)}  # type: ignore[misc]
        unknown = sorted(set(config_dict) - set(sections))
        if unknown:
            raise ConfigurationError(f"unknown configuration sections: {', '.join(unknown)}", {"sections": unknown})
        return cls(**{name: _build_section(section_cls, name, config_dict.get(name, {})) for name, section_cls in sections.items()})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: asdict(getattr(self, f.name)) for f in fields(self)}


class ConfigManager:
    """Loads configuration from a TOML file, falling back to defaults."""

    def __init__(self, config_path: Path | None = None, use_env: bool = True):
        self.config_path = config_path or DEFAULT_HOME / "config.toml"
        self.use_env = use_env
        self.config = self._load_config()

    def _load_config(self) -> BarSyncConfig:
        config_dict: dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    config_dict = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"invalid TOML in {self.config_path}: {exc}", {"path": str(self.config_path)}) from exc
        if self.use_env:
            _deep_update(config_dict, load_config_from_env())
        return BarSyncConfig.from_dict(config_dict)

    def get_config(self) -> BarSyncConfig:
        return self.config

    def update_config(self, **updates: Any) -> None:
        config_dict = self.config.to_dict()
        _deep_update(config_dict, updates)
        self.config = BarSyncConfig.from_dict(config_dict)


def _deep_update(target: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, dict):
            target[key] = _deep_update(dict(target.get(key, {})), value)
        else:
            target[key] = value
    return target


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


_ENV_VARS: tuple[tuple[str, str, str, Callable[[str], Any]], ...] = (
    ("BARSYNC_UPSTREAM_URL", "upstream", "base_url", str),
    ("BARSYNC_UPSTREAM_ACCOUNT_MODE", "upstream", "account_mode", str),
    ("BARSYNC_UPSTREAM_MAX_RETRIES", "upstream", "max_retries", int),
    ("BARSYNC_UPSTREAM_HISTORY_TIMEOUT", "upstream", "history_timeout", float),
    ("BARSYNC_DATABASE", "storage", "database", str),
    ("BARSYNC_FRESHNESS_THRESHOLD", "reconciler", "freshness_threshold_seconds", int),
    ("BARSYNC_BULK_TIMEFRAME_DELAY", "bulk", "timeframe_delay", float),
    ("BARSYNC_BULK_SYMBOL_DELAY", "bulk", "symbol_delay", float),
    ("BARSYNC_BULK_RUN_TIMEOUT", "bulk", "run_timeout", float),
    ("BARSYNC_COLLECTION_INTERVAL", "scheduler", "collection_interval", float),
    ("BARSYNC_KEEP_ALIVE_INTERVAL", "scheduler", "keep_alive_interval", float),
    ("BARSYNC_LOGGING_LEVEL", "logging", "level", str),
    ("BARSYNC_LOGGING_JSON", "logging", "json", _parse_bool),
    ("BARSYNC_LOGGING_FILE", "logging", "file", str),
)


def load_config_from_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Read ``BARSYNC_*`` variables into a nested config dict."""

    env = os.environ if environ is None else environ
    config: dict[str, Any] = {}
    for name, section, key, convert in _ENV_VARS:
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as exc:
            raise ConfigurationError(f"invalid value for {name}: {raw!r}", {"variable": name}) from exc
        config.setdefault(section, {})[key] = value
    return config


def get_default_config() -> BarSyncConfig:
    return BarSyncConfig()


__all__ = [
    "BarSyncConfig",
    "BulkConfig",
    "ConfigManager",
    "LoggingConfig",
    "QualityConfig",
    "ReconcilerConfig",
    "SchedulerConfig",
    "StorageConfig",
    "UpstreamConfig",
    "get_default_config",
    "load_config_from_env",
]
