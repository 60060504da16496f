from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional, Set

from fleetalerts.alerts import Alert, RuleEngine
from fleetalerts.alerts.models import utcnow
from fleetalerts.errors import EvaluationFailure
from fleetalerts.storage import AlertStore


logger = logging.getLogger("fleetalerts.processing")
debug_logger = logging.getLogger("fleetalerts.debug.processing")


class ProcessingCoordinator:
    """
    Evaluates alerts against the rule engine and persists resulting transitions.

    At most one evaluation per alert id runs at a time; a second request for an
    id already in flight is dropped, not queued. Every mutation of a stored
    alert runs under that alert's lock and starts from the latest stored copy.
    """

    def __init__(
        self,
        store: AlertStore,
        engine: RuleEngine,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._engine = engine
        self._clock = clock
        self._in_flight: Set[str] = set()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    @asynccontextmanager
    async def locked(self, alert_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(alert_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[alert_id] = lock
        async with lock:
            yield

    async def process_alert(self, alert: Alert) -> Optional[Alert]:
        """Return the persisted alert when a transition was applied, else None."""
        # Check and claim happen without an await in between.
        if alert.id in self._in_flight:
            debug_logger.debug("processing.skipped_in_flight", extra={"alert_id": alert.id})
            return None
        self._in_flight.add(alert.id)
        try:
            return await self._evaluate_and_apply(alert)
        except Exception as exc:  # noqa: BLE001 - one alert must not abort a sweep
            failure = EvaluationFailure(alert.id, str(exc))
            logger.exception("%s", failure)
            return None
        finally:
            self._in_flight.discard(alert.id)

    async def _evaluate_and_apply(self, alert: Alert) -> Optional[Alert]:
        now = self._clock()
        snapshot = await self._store.get_all()
        subject = next((candidate for candidate in snapshot if candidate.id == alert.id), alert)
        action = self._engine.evaluate(subject, snapshot, now=now)
        if action is None:
            return None

        async with self.locked(alert.id):
            latest = await self._store.get(alert.id)
            if latest is None or not latest.is_active() or len(latest.history) != len(subject.history):
                debug_logger.debug(
                    "processing.stale_evaluation",
                    extra={"alert_id": alert.id, "status": latest.status.value if latest else None},
                )
                return None
            latest.apply(action, now=now)
            await self._store.save(latest)

        debug_logger.info(
            "processing.transition",
            extra={"alert_id": latest.id, "action": action.kind.value, "status": latest.status.value},
        )
        return latest
