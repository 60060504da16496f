from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from fleetalerts.alerts import Alert
from fleetalerts.alerts.models import utcnow
from fleetalerts.processing import ProcessingCoordinator
from fleetalerts.storage import AlertStore


logger = logging.getLogger("fleetalerts.scheduler")
debug_logger = logging.getLogger("fleetalerts.debug.scheduler")


@dataclass
class SweepResult:
    evaluated: int = 0
    transitioned: int = 0
    expired: int = 0
    failed: int = 0


class ReconciliationScheduler:
    def __init__(
        self,
        store: AlertStore,
        coordinator: ProcessingCoordinator,
        *,
        interval_minutes: float = 2.0,
        expiry: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._interval_seconds = max(1.0, interval_minutes * 60)
        self._expiry = expiry
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._sweep: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Reconciliation scheduler started (interval=%ss, expiry=%s)",
            self._interval_seconds,
            self._expiry,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        if self._sweep is not None and not self._sweep.done():
            self._sweep.cancel()
            try:
                await self._sweep
            except asyncio.CancelledError:
                pass
        self._sweep = None
        logger.info("Reconciliation scheduler stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._interval_seconds,
                )
            except asyncio.TimeoutError:
                continue

    def tick(self) -> Optional[asyncio.Task]:
        """Fire one sweep in the background unless the previous one is still running."""
        if self._sweep is not None and not self._sweep.done():
            logger.warning("Previous reconciliation sweep still running; skipping tick")
            return None
        self._sweep = asyncio.create_task(self._execute_once())
        return self._sweep

    async def _execute_once(self) -> Optional[SweepResult]:
        try:
            return await self.run_sweep()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled reconciliation sweep failed")
            return None

    async def run_sweep(self) -> SweepResult:
        result = await self.reevaluate_active()
        expiry = await self.expire_aged()
        result.expired = expiry.expired
        result.failed += expiry.failed
        return result

    async def reevaluate_active(self) -> SweepResult:
        result = SweepResult()
        alerts = await self._store.get_all()
        active = [alert for alert in alerts if alert.is_active()]
        logger.info("Processing %s active alerts", len(active))
        for alert in active:
            result.evaluated += 1
            if await self._coordinator.process_alert(alert) is not None:
                result.transitioned += 1
        debug_logger.info(
            "scheduler.reevaluation_complete",
            extra={"evaluated": result.evaluated, "transitioned": result.transitioned},
        )
        return result

    async def expire_aged(self) -> SweepResult:
        result = SweepResult()
        now = self._clock()
        cutoff = now - self._expiry
        for alert in await self._store.get_all():
            if not alert.is_active() or alert.created_at >= cutoff:
                continue
            try:
                if await self._expire(alert.id, cutoff, now):
                    result.expired += 1
            except Exception:  # noqa: BLE001 - isolate per-alert failures
                result.failed += 1
                logger.exception("Failed to expire alert %s", alert.id)
        if result.expired:
            logger.info("Expired %s old alerts", result.expired)
        return result

    async def _expire(self, alert_id: str, cutoff: datetime, now: datetime) -> bool:
        async with self._coordinator.locked(alert_id):
            latest: Optional[Alert] = await self._store.get(alert_id)
            if latest is None or not latest.is_active() or latest.created_at >= cutoff:
                return False
            latest.expire(self._expiry.total_seconds() / 86400, now=now)
            await self._store.save(latest)
        return True
