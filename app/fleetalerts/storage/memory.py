from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fleetalerts.alerts.models import Alert

from .base import DEFAULT_INDEX_LIMIT, AlertStore


debug_logger = logging.getLogger("fleetalerts.debug.storage.memory")


class InMemoryAlertStore(AlertStore):
    """
    In-process store. Records are kept serialized so every read hands back a
    fresh copy, matching what a remote backend would return.
    """

    name = "memory"

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._by_driver: Dict[str, List[str]] = {}
        self._by_vehicle: Dict[str, List[str]] = {}

    async def is_available(self) -> bool:
        return True

    async def save(self, alert: Alert) -> None:
        self._records[alert.id] = alert.to_dict()
        try:
            if alert.driver_id:
                self._touch(self._by_driver, alert.driver_id, alert.id)
            if alert.vehicle_id:
                self._touch(self._by_vehicle, alert.vehicle_id, alert.id)
        except Exception:  # noqa: BLE001 - indices are best-effort
            debug_logger.exception("storage.memory.index_failed", extra={"alert_id": alert.id})

    async def get(self, alert_id: str) -> Optional[Alert]:
        record = self._records.get(alert_id)
        return Alert.from_dict(record) if record is not None else None

    async def get_all(self) -> List[Alert]:
        return [Alert.from_dict(record) for record in list(self._records.values())]

    async def delete(self, alert_id: str) -> bool:
        removed = self._records.pop(alert_id, None) is not None
        for index in (self._by_driver, self._by_vehicle):
            for ids in index.values():
                if alert_id in ids:
                    ids.remove(alert_id)
        return removed

    async def get_by_driver(self, driver_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        return self._resolve(self._by_driver.get(driver_id, []), limit)

    async def get_by_vehicle(self, vehicle_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        return self._resolve(self._by_vehicle.get(vehicle_id, []), limit)

    @staticmethod
    def _touch(index: Dict[str, List[str]], key: str, alert_id: str) -> None:
        ids = index.setdefault(key, [])
        if alert_id in ids:
            ids.remove(alert_id)
        ids.insert(0, alert_id)

    def _resolve(self, alert_ids: List[str], limit: int) -> List[Alert]:
        alerts: List[Alert] = []
        for alert_id in alert_ids:
            if len(alerts) >= limit:
                break
            record = self._records.get(alert_id)
            if record is not None:
                alerts.append(Alert.from_dict(record))
        return alerts
