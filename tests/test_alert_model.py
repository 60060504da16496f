from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from fleetalerts.alerts import Alert, AlertStatus, AutoCloseAction, EscalateAction, HistoryAction, Severity
from fleetalerts.errors import InvalidTransition


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _alert() -> Alert:
    return Alert.create("overspeed", Severity.MEDIUM, {"driverId": "DRV001"}, created_at=NOW)


def test_new_alert_is_open_with_creation_event():
    alert = _alert()

    assert alert.status == AlertStatus.OPEN
    assert alert.is_active()
    assert [event.action for event in alert.history] == [HistoryAction.CREATED]
    assert alert.escalation_count == 0


def test_escalate_records_previous_state_and_counts():
    alert = _alert()

    alert.escalate(Severity.CRITICAL, "3 overspeed alerts in 60 minutes", now=NOW)
    alert.escalate(Severity.CRITICAL, "again", now=NOW + timedelta(hours=2))

    assert alert.status == AlertStatus.ESCALATED
    assert alert.severity == Severity.CRITICAL
    assert alert.escalation_count == 2
    assert alert.last_escalated_at == NOW + timedelta(hours=2)
    first = alert.history[1]
    assert first.action == HistoryAction.ESCALATED
    assert first.previous_status == AlertStatus.OPEN
    assert first.previous_severity == Severity.MEDIUM
    assert alert.history[2].previous_status == AlertStatus.ESCALATED


def test_cooldown_blocks_escalation_inside_window():
    alert = _alert()
    cooldown = timedelta(minutes=60)
    assert alert.can_escalate(cooldown, now=NOW)

    alert.escalate(Severity.HIGH, "reason", now=NOW)

    assert not alert.can_escalate(cooldown, now=NOW + timedelta(minutes=30))
    assert not alert.can_escalate(cooldown, now=NOW + timedelta(minutes=60))
    assert alert.can_escalate(cooldown, now=NOW + timedelta(minutes=61))


def test_terminal_states_reject_automatic_transitions():
    alert = _alert()
    alert.auto_close("speed_normalized condition met", now=NOW)

    assert alert.status == AlertStatus.AUTO_CLOSED
    assert alert.auto_closed_at == NOW
    assert not alert.is_active()
    with pytest.raises(InvalidTransition):
        alert.escalate(Severity.CRITICAL, "too late", now=NOW)
    with pytest.raises(InvalidTransition):
        alert.expire(30, now=NOW)
    assert len(alert.history) == 2


def test_resolve_is_a_manual_override_but_only_once():
    alert = _alert()
    alert.expire(30, now=NOW)

    alert.resolve("Driver counselled", now=NOW + timedelta(minutes=1))

    assert alert.status == AlertStatus.RESOLVED
    assert alert.resolution == "Driver counselled"
    assert alert.resolved_at == NOW + timedelta(minutes=1)
    with pytest.raises(InvalidTransition):
        alert.resolve("second time", now=NOW + timedelta(minutes=2))
    assert alert.resolved_at == NOW + timedelta(minutes=1)
    assert alert.expired_at == NOW


def test_apply_dispatches_on_action_kind():
    escalated = _alert()
    escalated.apply(EscalateAction(severity=Severity.HIGH, reason="aged"), now=NOW)
    closed = _alert()
    closed.apply(AutoCloseAction(reason="condition met"), now=NOW)

    assert escalated.status == AlertStatus.ESCALATED
    assert escalated.severity == Severity.HIGH
    assert closed.status == AlertStatus.AUTO_CLOSED


def test_update_metadata_merges_and_records_history():
    alert = _alert()

    alert.update_metadata({"document_valid": True}, now=NOW)

    assert alert.metadata == {"driverId": "DRV001", "document_valid": True}
    assert alert.history[-1].action == HistoryAction.METADATA_UPDATED
    assert alert.status == AlertStatus.OPEN


def test_serialized_record_restores_lifecycle_fields():
    alert = _alert()
    alert.escalate(Severity.CRITICAL, "3 overspeed alerts in 60 minutes", now=NOW)

    payload = alert.to_dict(now=NOW + timedelta(days=2))
    restored = Alert.from_dict(payload)

    assert payload["sourceType"] == "overspeed"
    assert payload["age"] == 2
    assert payload["history"][1]["previousStatus"] == "OPEN"
    assert restored.id == alert.id
    assert restored.status == AlertStatus.ESCALATED
    assert restored.last_escalated_at == NOW
    assert restored.created_at == NOW
    assert len(restored.history) == 2
