from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def _to_optional_path(value: Any) -> Optional[Path]:
    if value in (None, "", "null"):
        return None
    return Path(str(value))


def _positive(value: Any, name: str, *, cast=float):
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{name}' must be a number, got {value!r}") from exc
    if number <= 0:
        raise ValueError(f"'{name}' must be positive")
    return number


def _level(value: Any, name: str) -> str:
    level = str(value).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"'{name}' must be a logging level name, got {value!r}")
    return level


@dataclass
class StorageConfig:
    url: Optional[str] = None
    probe_interval_seconds: float = 5.0
    echo: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        url = data.get("url")
        probe_interval = float(data.get("probe_interval_seconds", 5.0))
        if probe_interval < 0:
            raise ValueError("'probe_interval_seconds' must not be negative")
        return cls(
            url=str(url) if url not in (None, "", "null") else None,
            probe_interval_seconds=probe_interval,
            echo=bool(data.get("echo", False)),
        )


@dataclass
class LifecycleConfig:
    escalation_cooldown_minutes: float = 60.0
    expiry_days: float = 30.0

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.escalation_cooldown_minutes)

    @property
    def expiry(self) -> timedelta:
        return timedelta(days=self.expiry_days)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifecycleConfig":
        return cls(
            escalation_cooldown_minutes=_positive(
                data.get("escalation_cooldown_minutes", 60), "escalation_cooldown_minutes"
            ),
            expiry_days=_positive(data.get("expiry_days", 30), "expiry_days"),
        )


@dataclass
class SchedulerConfig:
    enabled: bool = True
    interval_minutes: float = 2.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchedulerConfig":
        return cls(
            enabled=bool(data.get("enabled", True)),
            interval_minutes=_positive(data.get("interval_minutes", 2), "interval_minutes"),
        )


@dataclass
class DashboardConfig:
    top_drivers_limit: int = 5
    recent_alerts_limit: int = 10
    trend_days: int = 7
    default_page_limit: int = 50
    max_page_limit: int = 100

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DashboardConfig":
        return cls(
            top_drivers_limit=_positive(data.get("top_drivers_limit", 5), "top_drivers_limit", cast=int),
            recent_alerts_limit=_positive(data.get("recent_alerts_limit", 10), "recent_alerts_limit", cast=int),
            trend_days=_positive(data.get("trend_days", 7), "trend_days", cast=int),
            default_page_limit=_positive(data.get("default_page_limit", 50), "default_page_limit", cast=int),
            max_page_limit=_positive(data.get("max_page_limit", 100), "max_page_limit", cast=int),
        )


@dataclass
class RulesConfig:
    path: Optional[Path] = None
    auto_save: bool = False
    definitions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RulesConfig":
        definitions = data.get("definitions") or {}
        if not isinstance(definitions, dict):
            raise ValueError("'rules.definitions' must be a mapping")
        return cls(
            path=_to_optional_path(data.get("path")),
            auto_save=bool(data.get("auto_save", False)),
            definitions=dict(definitions),
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"
    debug_file: Optional[Path] = Path("logs/debug.log")
    debug_level: str = "DEBUG"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=_level(data.get("level", "INFO"), "level"),
            debug_file=_to_optional_path(data.get("debug_file", "logs/debug.log")),
            debug_level=_level(data.get("debug_level", "DEBUG"), "debug_level"),
        )


@dataclass
class FleetAlertsConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Dict]) -> "FleetAlertsConfig":
        return cls(
            storage=StorageConfig.from_dict(data.get("storage") or {}),
            lifecycle=LifecycleConfig.from_dict(data.get("lifecycle") or {}),
            scheduler=SchedulerConfig.from_dict(data.get("scheduler") or {}),
            dashboard=DashboardConfig.from_dict(data.get("dashboard") or {}),
            rules=RulesConfig.from_dict(data.get("rules") or {}),
            logging=LoggingConfig.from_dict(data.get("logging") or {}),
        )


@dataclass
class AppConfig:
    fleetalerts: FleetAlertsConfig

    @classmethod
    def from_dict(cls, data: Dict[str, Dict]) -> "AppConfig":
        return cls(fleetalerts=FleetAlertsConfig.from_dict((data or {}).get("fleetalerts") or {}))


def app_config(file_path: str) -> AppConfig:
    with open(file_path, "r", encoding="utf-8") as file:
        config_dict = yaml.safe_load(file)
    return AppConfig.from_dict(config_dict or {})
