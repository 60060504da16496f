from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from fleetalerts.alerts import Alert, AlertStatus, HistoryAction, Severity
from fleetalerts.alerts.models import utcnow
from fleetalerts.schemas import (
    AlertStats,
    DashboardSnapshot,
    DashboardSummary,
    DriverAlertCount,
    TrendBucket,
)


def active_alerts(alerts: Sequence[Alert]) -> List[Alert]:
    return [alert for alert in alerts if alert.is_active()]


def severity_distribution(alerts: Sequence[Alert]) -> Dict[str, int]:
    counts = Counter(alert.severity for alert in active_alerts(alerts))
    return {severity.value: counts.get(severity, 0) for severity in reversed(list(Severity))}


def status_distribution(alerts: Sequence[Alert]) -> Dict[str, int]:
    counts = Counter(alert.status for alert in active_alerts(alerts))
    return {status.value: counts.get(status, 0) for status in (AlertStatus.OPEN, AlertStatus.ESCALATED)}


def source_type_distribution(alerts: Sequence[Alert]) -> Dict[str, int]:
    return dict(Counter(alert.source_type for alert in active_alerts(alerts)))


def top_drivers(alerts: Sequence[Alert], limit: int) -> List[DriverAlertCount]:
    counts = Counter(alert.driver_id for alert in active_alerts(alerts) if alert.driver_id)
    return [
        DriverAlertCount(driver_id=driver_id, alert_count=count)
        for driver_id, count in counts.most_common(limit)
    ]


def recent_auto_closed(alerts: Sequence[Alert], limit: int) -> List[Alert]:
    closed = [alert for alert in alerts if alert.status == AlertStatus.AUTO_CLOSED]
    closed.sort(key=lambda alert: alert.auto_closed_at or alert.created_at, reverse=True)
    return closed[:limit]


def _event_dates(alert: Alert, action: HistoryAction) -> List[date]:
    return [event.timestamp.date() for event in alert.history if event.action == action]


def alert_trends(alerts: Sequence[Alert], days: int, *, now: Optional[datetime] = None) -> List[TrendBucket]:
    """Per-day counts of alerts created, escalation events and auto-closures, oldest first."""
    today = (now or utcnow()).date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    created: Counter = Counter()
    escalated: Counter = Counter()
    auto_closed: Counter = Counter()
    for alert in alerts:
        created[alert.created_at.date()] += 1
        escalated.update(_event_dates(alert, HistoryAction.ESCALATED))
        auto_closed.update(_event_dates(alert, HistoryAction.AUTO_CLOSED))
    return [
        TrendBucket(
            date=day.isoformat(),
            created=created.get(day, 0),
            escalated=escalated.get(day, 0),
            auto_closed=auto_closed.get(day, 0),
        )
        for day in window
    ]


def escalation_rate(alerts: Sequence[Alert]) -> int:
    active = active_alerts(alerts)
    if not active:
        return 0
    escalated = sum(1 for alert in active if alert.status == AlertStatus.ESCALATED)
    return round(escalated / len(active) * 100)


def build_dashboard(
    alerts: Sequence[Alert],
    *,
    top_drivers_limit: int = 5,
    recent_alerts_limit: int = 10,
    trend_days: int = 7,
    now: Optional[datetime] = None,
) -> DashboardSnapshot:
    current = now or utcnow()
    return DashboardSnapshot(
        severity_distribution=severity_distribution(alerts),
        status_distribution=status_distribution(alerts),
        source_type_distribution=source_type_distribution(alerts),
        top_drivers=top_drivers(alerts, top_drivers_limit),
        recent_auto_closed=[alert.to_dict(now=current) for alert in recent_auto_closed(alerts, recent_alerts_limit)],
        alert_trends=alert_trends(alerts, trend_days, now=current),
        summary=DashboardSummary(
            total_active=len(active_alerts(alerts)),
            total_today=sum(1 for alert in alerts if alert.created_at.date() == current.date()),
            escalation_rate=escalation_rate(alerts),
        ),
    )


def build_stats(alerts: Sequence[Alert], *, now: Optional[datetime] = None) -> AlertStats:
    current = now or utcnow()
    statuses = Counter(alert.status for alert in alerts)
    severities = Counter(alert.severity for alert in alerts)
    avg_age = 0.0
    if alerts:
        avg_age = round(sum(alert.age_days(now=current) for alert in alerts) / len(alerts), 2)
    return AlertStats(
        total=len(alerts),
        by_status={status.value: statuses.get(status, 0) for status in AlertStatus},
        by_severity={severity.value: severities.get(severity, 0) for severity in Severity},
        by_source_type=dict(Counter(alert.source_type for alert in alerts)),
        active_count=len(active_alerts(alerts)),
        avg_age=max(avg_age, 0.0),
    )
