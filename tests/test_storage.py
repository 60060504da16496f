from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fleetalerts.alerts import Alert, AlertStatus, Severity
from fleetalerts.config import StorageConfig
from fleetalerts.errors import StorageFailure, StorageUnavailable
from fleetalerts.storage import (
    ConnectivityProbe,
    FallbackAlertStore,
    InMemoryAlertStore,
    SqlAlchemyAlertStore,
    build_alert_store,
)
from fleetalerts.storage.fallback import newest


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _alert(minutes_ago=0, source_type="overspeed", **metadata) -> Alert:
    return Alert.create(source_type, Severity.MEDIUM, metadata, created_at=NOW - timedelta(minutes=minutes_ago))


class _SwitchableStore(InMemoryAlertStore):
    """In-memory store that behaves like an unreachable database while ``up`` is False."""

    name = "switchable"

    def __init__(self, up: bool = True) -> None:
        super().__init__()
        self.up = up

    async def is_available(self) -> bool:
        return self.up

    def _check(self) -> None:
        if not self.up:
            raise StorageUnavailable("connection refused")

    async def save(self, alert):
        self._check()
        await super().save(alert)

    async def get(self, alert_id):
        self._check()
        return await super().get(alert_id)

    async def get_all(self):
        self._check()
        return await super().get_all()

    async def delete(self, alert_id):
        self._check()
        return await super().delete(alert_id)

    async def get_by_driver(self, driver_id, limit=10):
        self._check()
        return await super().get_by_driver(driver_id, limit)


def _fallback_store(primary):
    return FallbackAlertStore(primary, InMemoryAlertStore(), ConnectivityProbe(primary, interval_seconds=0))


def test_memory_store_returns_copies():
    async def scenario():
        store = InMemoryAlertStore()
        alert = _alert(driverId="DRV001")
        await store.save(alert)

        loaded = await store.get(alert.id)
        loaded.escalate(Severity.HIGH, "local change", now=NOW)

        assert (await store.get(alert.id)).status == AlertStatus.OPEN
        assert await store.get("missing") is None

    asyncio.run(scenario())


def test_memory_indices_are_most_recent_first():
    async def scenario():
        store = InMemoryAlertStore()
        first, second, third = _alert(3, driverId="DRV001"), _alert(2, driverId="DRV001"), _alert(1, vehicleId="VEH1")
        for alert in (first, second, third):
            await store.save(alert)

        assert [alert.id for alert in await store.get_by_driver("DRV001")] == [second.id, first.id]

        await store.save(first)
        assert [alert.id for alert in await store.get_by_driver("DRV001")] == [first.id, second.id]
        assert [alert.id for alert in await store.get_by_driver("DRV001", limit=1)] == [first.id]
        assert [alert.id for alert in await store.get_by_vehicle("VEH1")] == [third.id]
        assert await store.get_by_driver("DRV404") == []

    asyncio.run(scenario())


def test_memory_delete_drops_record_and_index_entries():
    async def scenario():
        store = InMemoryAlertStore()
        alert = _alert(driverId="DRV001")
        await store.save(alert)

        assert await store.delete(alert.id) is True
        assert await store.delete(alert.id) is False
        assert await store.get_all() == []
        assert await store.get_by_driver("DRV001") == []

    asyncio.run(scenario())


def test_index_failure_does_not_fail_the_save(monkeypatch):
    def broken_touch(index, key, alert_id):
        raise RuntimeError("index corrupted")

    monkeypatch.setattr(InMemoryAlertStore, "_touch", staticmethod(broken_touch))

    async def scenario():
        store = InMemoryAlertStore()
        alert = _alert(driverId="DRV001")
        await store.save(alert)
        return store, alert

    store, alert = asyncio.run(scenario())
    assert asyncio.run(store.get(alert.id)) is not None


def test_sql_store_persists_alerts(tmp_path):
    url = f"sqlite:///{tmp_path / 'alerts.db'}"

    async def scenario():
        store = SqlAlchemyAlertStore(url)
        try:
            assert await store.is_available()
            older, newer = _alert(10, driverId="DRV001", vehicleId="VEH1"), _alert(5, driverId="DRV001")
            await store.save(older)
            await store.save(newer)

            older.escalate(Severity.CRITICAL, "3 overspeed alerts in 60 minutes", now=NOW)
            await store.save(older)

            loaded = await store.get(older.id)
            assert loaded.status == AlertStatus.ESCALATED
            assert loaded.escalation_count == 1
            assert loaded.metadata == {"driverId": "DRV001", "vehicleId": "VEH1"}
            assert {alert.id for alert in await store.get_all()} == {older.id, newer.id}
            assert [alert.id for alert in await store.get_by_driver("DRV001")] == [older.id, newer.id]
            assert [alert.id for alert in await store.get_by_vehicle("VEH1")] == [older.id]

            assert await store.delete(newer.id) is True
            assert await store.get(newer.id) is None
            assert [alert.id for alert in await store.get_by_driver("DRV001")] == [older.id]
        finally:
            store.dispose()

    asyncio.run(scenario())


def test_sql_store_survives_restart(tmp_path):
    url = f"sqlite:///{tmp_path / 'alerts.db'}"
    alert = _alert(driverId="DRV001")

    async def write():
        store = SqlAlchemyAlertStore(url)
        await store.save(alert)
        store.dispose()

    async def read():
        store = SqlAlchemyAlertStore(url)
        try:
            return await store.get(alert.id)
        finally:
            store.dispose()

    asyncio.run(write())
    loaded = asyncio.run(read())

    assert loaded is not None
    assert loaded.created_at == alert.created_at


def test_fallback_serves_everything_while_primary_is_down():
    async def scenario():
        primary = _SwitchableStore(up=False)
        store = _fallback_store(primary)
        alert = _alert(driverId="DRV001")

        await store.save(alert)

        assert (await store.get(alert.id)).id == alert.id
        assert [item.id for item in await store.get_all()] == [alert.id]
        assert [item.id for item in await store.get_by_driver("DRV001")] == [alert.id]
        assert await store.primary_available() is False
        assert await store.fallback.get(alert.id) is not None

    asyncio.run(scenario())


def test_failed_primary_write_falls_back_and_marks_primary_down():
    async def scenario():
        primary = _SwitchableStore(up=True)
        probe = ConnectivityProbe(primary, interval_seconds=300)
        store = FallbackAlertStore(primary, InMemoryAlertStore(), probe)
        assert await store.primary_available()

        primary.up = False
        alert = _alert()
        await store.save(alert)

        assert probe.last_known is False
        assert await store.fallback.get(alert.id) is not None

    asyncio.run(scenario())


def test_records_written_during_outage_stay_visible_after_recovery():
    async def scenario():
        primary = _SwitchableStore(up=True)
        store = _fallback_store(primary)
        before = _alert(10, driverId="DRV001")
        await store.save(before)

        primary.up = False
        during = _alert(5, driverId="DRV001")
        await store.save(during)
        assert [item.id for item in await store.get_all()] == [during.id]

        primary.up = True
        visible = {item.id for item in await store.get_all()}
        by_driver = [item.id for item in await store.get_by_driver("DRV001")]

        assert visible == {before.id, during.id}
        assert by_driver == [during.id, before.id]

    asyncio.run(scenario())


def test_merge_prefers_the_copy_with_more_history():
    stale = _alert(driverId="DRV001")
    fresh = Alert.from_dict(stale.to_dict())
    fresh.escalate(Severity.CRITICAL, "reason", now=NOW + timedelta(minutes=1))

    merged = newest([fresh, stale])

    assert len(merged) == 1
    assert merged[0].status == AlertStatus.ESCALATED
    assert newest([stale, fresh])[0].status == AlertStatus.ESCALATED


def test_delete_removes_from_both_stores():
    async def scenario():
        primary = _SwitchableStore(up=False)
        store = _fallback_store(primary)
        alert = _alert()
        await store.save(alert)
        primary.up = True
        await primary.save(alert)

        assert await store.delete(alert.id) is True
        assert await store.get(alert.id) is None

    asyncio.run(scenario())


class _Ticks:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_availability_is_cached_only_while_primary_is_up():
    ticks = _Ticks()
    primary = _SwitchableStore(up=True)
    probe = ConnectivityProbe(primary, interval_seconds=5, clock=ticks)

    async def scenario():
        assert await probe.available() is True
        primary.up = False
        ticks.now = 1.0
        assert await probe.available() is True
        ticks.now = 10.0
        assert await probe.available() is False

        primary.up = True
        ticks.now = 10.5
        assert await probe.available() is True

    asyncio.run(scenario())


def test_recovered_primary_takes_the_next_write():
    async def scenario():
        primary = _SwitchableStore(up=True)
        probe = ConnectivityProbe(primary, interval_seconds=300)
        store = FallbackAlertStore(primary, InMemoryAlertStore(), probe)
        primary.up = False
        during = _alert(5)
        await store.save(during)
        assert probe.last_known is False

        primary.up = True
        after = _alert()
        await store.save(after)

        assert probe.last_known is True
        assert await primary.get(after.id) is not None
        assert await store.fallback.get(after.id) is None
        assert {item.id for item in await store.get_all()} == {during.id, after.id}

    asyncio.run(scenario())


def test_sql_store_reports_rejected_statement_as_failure_not_outage(tmp_path):
    store = SqlAlchemyAlertStore(f"sqlite:///{tmp_path / 'alerts.db'}")
    alert = _alert(driverId="DRV001", seenAt=NOW)

    async def scenario():
        try:
            with pytest.raises(StorageFailure) as excinfo:
                await store.save(alert)
            assert not isinstance(excinfo.value, StorageUnavailable)
            assert await store.is_available() is True
            assert await store.get(alert.id) is None
        finally:
            store.dispose()

    asyncio.run(scenario())


def test_rejected_record_goes_to_fallback_without_marking_primary_down(tmp_path):
    store = build_alert_store(StorageConfig(url=f"sqlite:///{tmp_path / 'alerts.db'}"))
    rejected = _alert(driverId="DRV001", seenAt=NOW)
    accepted = _alert(driverId="DRV001")

    async def scenario():
        try:
            assert await store.primary_available() is True
            await store.save(rejected)
            assert await store.fallback.get(rejected.id) is not None

            await store.save(accepted)
            assert await store.primary.get(accepted.id) is not None
            assert await store.fallback.get(accepted.id) is None
            assert await store.primary_available() is True
        finally:
            store.primary.dispose()

    asyncio.run(scenario())


@pytest.mark.parametrize("url", [None, ""])
def test_build_alert_store_without_url_is_in_memory(url):
    assert isinstance(build_alert_store(StorageConfig(url=url)), InMemoryAlertStore)


def test_build_alert_store_with_url_wraps_sql_primary(tmp_path):
    store = build_alert_store(StorageConfig(url=f"sqlite:///{tmp_path / 'alerts.db'}"))

    assert isinstance(store, FallbackAlertStore)
    assert isinstance(store.primary, SqlAlchemyAlertStore)
    assert isinstance(store.fallback, InMemoryAlertStore)
