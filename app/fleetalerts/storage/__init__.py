"""Alert storage: in-process store, SQL primary store and the fallback router."""

from __future__ import annotations

from fleetalerts.config import StorageConfig

from .base import DEFAULT_INDEX_LIMIT, AlertStore
from .fallback import ConnectivityProbe, FallbackAlertStore
from .memory import InMemoryAlertStore
from .sql import SqlAlchemyAlertStore


def build_alert_store(config: StorageConfig) -> AlertStore:
    fallback = InMemoryAlertStore()
    if not config.url:
        return fallback
    primary = SqlAlchemyAlertStore(config.url, echo=config.echo)
    probe = ConnectivityProbe(primary, interval_seconds=config.probe_interval_seconds)
    return FallbackAlertStore(primary, fallback, probe)


__all__ = [
    "AlertStore",
    "ConnectivityProbe",
    "DEFAULT_INDEX_LIMIT",
    "FallbackAlertStore",
    "InMemoryAlertStore",
    "SqlAlchemyAlertStore",
    "build_alert_store",
]
