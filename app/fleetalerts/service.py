from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from fleetalerts.alerts import DEFAULT_RULES, Alert, AlertStatus, RuleConfigurationStore, RuleEngine
from fleetalerts.alerts.models import utcnow
from fleetalerts.config import FleetAlertsConfig, RulesConfig
from fleetalerts.dashboard import build_dashboard, build_stats
from fleetalerts.errors import ValidationFailure
from fleetalerts.processing import ProcessingCoordinator
from fleetalerts.scheduler import ReconciliationScheduler, SweepResult
from fleetalerts.schemas import (
    AlertCreate,
    AlertFilters,
    AlertPage,
    AlertStats,
    DashboardSnapshot,
    MetadataUpdate,
    Pagination,
)
from fleetalerts.storage import DEFAULT_INDEX_LIMIT, AlertStore, build_alert_store


logger = logging.getLogger("fleetalerts.service")
debug_logger = logging.getLogger("fleetalerts.debug.service")


def build_rule_store(config: RulesConfig) -> RuleConfigurationStore:
    if config.path is not None:
        return RuleConfigurationStore.from_file(
            config.path,
            overrides=config.definitions,
            auto_save=config.auto_save,
        )
    return RuleConfigurationStore({**DEFAULT_RULES, **config.definitions})


class AlertService:
    """
    Entry point for callers: ingestion, queries, manual resolution, rule
    management and dashboard aggregates. Owns the storage, the rule store,
    the engine and the reconciliation scheduler.
    """

    def __init__(
        self,
        config: Optional[FleetAlertsConfig] = None,
        *,
        store: Optional[AlertStore] = None,
        rules: Optional[RuleConfigurationStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or FleetAlertsConfig()
        self._clock = clock
        self._store = store if store is not None else build_alert_store(self._config.storage)
        self._rules = rules if rules is not None else build_rule_store(self._config.rules)
        self._engine = RuleEngine(self._rules, cooldown=self._config.lifecycle.cooldown)
        self._coordinator = ProcessingCoordinator(self._store, self._engine, clock=clock)
        self._scheduler = ReconciliationScheduler(
            self._store,
            self._coordinator,
            interval_minutes=self._config.scheduler.interval_minutes,
            expiry=self._config.lifecycle.expiry,
            clock=clock,
        )

    @property
    def store(self) -> AlertStore:
        return self._store

    @property
    def coordinator(self) -> ProcessingCoordinator:
        return self._coordinator

    @property
    def scheduler(self) -> ReconciliationScheduler:
        return self._scheduler

    def start(self) -> None:
        if self._config.scheduler.enabled:
            self._scheduler.start()

    async def stop(self) -> None:
        await self._scheduler.stop()
        dispose = getattr(getattr(self._store, "primary", self._store), "dispose", None)
        if callable(dispose):
            dispose()

    async def create_alert(
        self,
        source_type: Any,
        severity: Any = None,
        metadata: Any = None,
        *,
        created_at: Optional[datetime] = None,
    ) -> Alert:
        try:
            payload = AlertCreate.model_validate(
                {"sourceType": source_type, "severity": severity, "metadata": metadata}
            )
        except ValidationError as exc:
            raise ValidationFailure(f"Invalid alert: {exc}") from exc

        alert = Alert.create(
            payload.source_type,
            payload.severity,
            payload.metadata,
            created_at=created_at or self._clock(),
        )
        await self._store.save(alert)
        debug_logger.info(
            "service.alert_created",
            extra={"alert_id": alert.id, "source_type": alert.source_type},
        )
        processed = await self._coordinator.process_alert(alert)
        return processed or alert

    async def get_alerts(self, filters: Optional[Mapping[str, Any]] = None) -> List[Alert]:
        try:
            criteria = AlertFilters.model_validate(dict(filters or {}))
        except ValidationError as exc:
            raise ValidationFailure(f"Invalid filters: {exc}") from exc

        alerts = await self._store.get_all()
        if criteria.source_type:
            alerts = [alert for alert in alerts if alert.source_type == criteria.source_type]
        if criteria.severity:
            alerts = [alert for alert in alerts if alert.severity == criteria.severity]
        if criteria.status:
            alerts = [alert for alert in alerts if alert.status == criteria.status]
        if criteria.driver_id:
            alerts = [alert for alert in alerts if alert.driver_id == criteria.driver_id]
        if criteria.vehicle_id:
            alerts = [alert for alert in alerts if alert.vehicle_id == criteria.vehicle_id]
        return sorted(alerts, key=lambda alert: alert.created_at, reverse=True)

    async def get_alert_page(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> AlertPage:
        dashboard = self._config.dashboard
        limit_value = min(limit or dashboard.default_page_limit, dashboard.max_page_limit)
        if limit_value < 1 or offset < 0:
            raise ValidationFailure("limit must be positive and offset non-negative")
        alerts = await self.get_alerts(filters)
        now = self._clock()
        page = alerts[offset:offset + limit_value]
        return AlertPage(
            alerts=[alert.to_dict(now=now) for alert in page],
            pagination=Pagination(
                total=len(alerts),
                limit=limit_value,
                offset=offset,
                has_more=offset + limit_value < len(alerts),
            ),
        )

    async def get_alert_by_id(self, alert_id: str) -> Optional[Alert]:
        return await self._store.get(alert_id)

    async def get_alerts_by_driver(self, driver_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        return await self._store.get_by_driver(driver_id, limit)

    async def get_alerts_by_vehicle(self, vehicle_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        return await self._store.get_by_vehicle(vehicle_id, limit)

    async def resolve_alert(self, alert_id: str, resolution: Optional[str] = None) -> Optional[Alert]:
        async with self._coordinator.locked(alert_id):
            alert = await self._store.get(alert_id)
            if alert is None:
                return None
            if alert.status == AlertStatus.RESOLVED:
                # resolvedAt and the resolution text are written once.
                return alert
            alert.resolve(resolution, now=self._clock())
            await self._store.save(alert)
        return alert

    async def amend_alert_metadata(self, alert_id: str, updates: Mapping[str, Any]) -> Optional[Alert]:
        """Merge caller-owned metadata, then re-evaluate so a satisfied condition closes the alert."""
        try:
            payload = MetadataUpdate.model_validate({"metadata": updates})
        except ValidationError as exc:
            raise ValidationFailure(f"Invalid metadata update: {exc}") from exc

        async with self._coordinator.locked(alert_id):
            alert = await self._store.get(alert_id)
            if alert is None:
                return None
            alert.update_metadata(payload.metadata, now=self._clock())
            await self._store.save(alert)

        processed = await self._coordinator.process_alert(alert)
        return processed or alert

    async def delete_alert(self, alert_id: str) -> bool:
        async with self._coordinator.locked(alert_id):
            return await self._store.delete(alert_id)

    async def process_all_alerts(self) -> SweepResult:
        return await self._scheduler.reevaluate_active()

    async def run_reconciliation(self) -> SweepResult:
        return await self._scheduler.run_sweep()

    def get_rules(self) -> Dict[str, Dict[str, Any]]:
        return self._rules.snapshot()

    def update_rules(self, partial: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
        self._rules.update(partial)
        self._engine.invalidate()
        return self._rules.snapshot()

    async def get_stats(self) -> AlertStats:
        return build_stats(await self._store.get_all(), now=self._clock())

    async def get_dashboard(self) -> DashboardSnapshot:
        dashboard = self._config.dashboard
        return build_dashboard(
            await self._store.get_all(),
            top_drivers_limit=dashboard.top_drivers_limit,
            recent_alerts_limit=dashboard.recent_alerts_limit,
            trend_days=dashboard.trend_days,
            now=self._clock(),
        )
