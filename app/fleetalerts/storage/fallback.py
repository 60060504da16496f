from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from fleetalerts.alerts.models import Alert
from fleetalerts.errors import StorageFailure, StorageUnavailable

from .base import DEFAULT_INDEX_LIMIT, AlertStore


T = TypeVar("T")

logger = logging.getLogger("fleetalerts.storage")
debug_logger = logging.getLogger("fleetalerts.debug.storage")


def newest(alerts: Iterable[Alert]) -> List[Alert]:
    """Collapse copies of the same alert, keeping the one with the longest history."""
    chosen: Dict[str, Alert] = {}
    for alert in alerts:
        current = chosen.get(alert.id)
        if current is None or (len(alert.history), alert.updated_at) > (len(current.history), current.updated_at):
            chosen[alert.id] = alert
    return list(chosen.values())


class ConnectivityProbe:
    """
    Caches a positive availability check for ``interval_seconds``. While the
    primary is marked down every call probes again, so a recovered primary is
    used on the next call.
    """

    def __init__(
        self,
        store: AlertStore,
        *,
        interval_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._interval = max(0.0, interval_seconds)
        self._clock = clock
        self._available: Optional[bool] = None
        self._checked_at = 0.0

    @property
    def last_known(self) -> Optional[bool]:
        return self._available

    async def available(self) -> bool:
        now = self._clock()
        if not self._available or now - self._checked_at >= self._interval:
            self._set(await self._store.is_available(), now)
        return bool(self._available)

    def mark_unavailable(self, exc: BaseException) -> None:
        debug_logger.debug("storage.primary_failed", extra={"error": str(exc)})
        self._set(False, self._clock())

    def _set(self, available: bool, checked_at: float) -> None:
        if available != self._available:
            if available:
                logger.info("Primary alert store (%s) is available", self._store.name)
            else:
                logger.warning(
                    "Primary alert store (%s) unavailable; using in-process fallback",
                    self._store.name,
                )
        self._available = available
        self._checked_at = checked_at


class FallbackAlertStore(AlertStore):
    """
    Routes each call to the primary store while it is reachable and to the
    fallback otherwise. Reads merge both so records written to the fallback
    during an outage stay visible after the primary returns.
    """

    name = "fallback"

    def __init__(self, primary: AlertStore, fallback: AlertStore, probe: ConnectivityProbe) -> None:
        self._primary = primary
        self._fallback = fallback
        self._probe = probe

    @property
    def primary(self) -> AlertStore:
        return self._primary

    @property
    def fallback(self) -> AlertStore:
        return self._fallback

    async def is_available(self) -> bool:
        return True

    async def primary_available(self) -> bool:
        return await self._probe.available()

    async def save(self, alert: Alert) -> None:
        if await self._probe.available():
            try:
                await self._primary.save(alert)
                return
            except StorageUnavailable as exc:
                self._probe.mark_unavailable(exc)
            except StorageFailure:
                logger.warning("Primary store rejected alert %s; kept in the in-process store", alert.id)
        await self._fallback.save(alert)

    async def get(self, alert_id: str) -> Optional[Alert]:
        candidates: List[Alert] = []
        primary_copy = await self._try_primary(lambda: self._primary.get(alert_id), default=None)
        if primary_copy is not None:
            candidates.append(primary_copy)
        fallback_copy = await self._fallback.get(alert_id)
        if fallback_copy is not None:
            candidates.append(fallback_copy)
        merged = newest(candidates)
        return merged[0] if merged else None

    async def get_all(self) -> List[Alert]:
        primary_alerts = await self._try_primary(self._primary.get_all, default=[])
        return newest([*primary_alerts, *await self._fallback.get_all()])

    async def delete(self, alert_id: str) -> bool:
        removed = await self._try_primary(lambda: self._primary.delete(alert_id), default=False)
        return bool(await self._fallback.delete(alert_id) or removed)

    async def get_by_driver(self, driver_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        primary_alerts = await self._try_primary(lambda: self._primary.get_by_driver(driver_id, limit), default=[])
        fallback_alerts = await self._fallback.get_by_driver(driver_id, limit)
        return self._recent(primary_alerts, fallback_alerts, limit)

    async def get_by_vehicle(self, vehicle_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        primary_alerts = await self._try_primary(lambda: self._primary.get_by_vehicle(vehicle_id, limit), default=[])
        fallback_alerts = await self._fallback.get_by_vehicle(vehicle_id, limit)
        return self._recent(primary_alerts, fallback_alerts, limit)

    @staticmethod
    def _recent(primary_alerts: List[Alert], fallback_alerts: List[Alert], limit: int) -> List[Alert]:
        if not fallback_alerts:
            return primary_alerts[:limit]
        merged = newest([*primary_alerts, *fallback_alerts])
        merged.sort(key=lambda alert: alert.updated_at, reverse=True)
        return merged[:limit]

    async def _try_primary(self, operation: Callable[[], Awaitable[T]], *, default: T) -> T:
        """Run ``operation`` on the primary; returns ``default`` when the primary is down."""
        if not await self._probe.available():
            return default
        try:
            result = await operation()
        except StorageUnavailable as exc:
            self._probe.mark_unavailable(exc)
            return default
        except StorageFailure as exc:
            debug_logger.debug("storage.primary_rejected", extra={"error": str(exc)})
            return default
        return result
