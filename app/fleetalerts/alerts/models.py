from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..errors import InvalidTransition


logger = logging.getLogger("fleetalerts.alerts")


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    OPEN = "OPEN"
    ESCALATED = "ESCALATED"
    AUTO_CLOSED = "AUTO_CLOSED"
    RESOLVED = "RESOLVED"
    EXPIRED = "EXPIRED"


ACTIVE_STATUSES = frozenset({AlertStatus.OPEN, AlertStatus.ESCALATED})


class HistoryAction(str, Enum):
    CREATED = "created"
    ESCALATED = "escalated"
    AUTO_CLOSED = "auto_closed"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    METADATA_UPDATED = "metadata_updated"


class ActionKind(str, Enum):
    ESCALATE = "escalate"
    AUTO_CLOSE = "auto_close"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True, frozen=True)
class EscalateAction:
    severity: Severity
    reason: str
    kind: ActionKind = ActionKind.ESCALATE


@dataclass(slots=True, frozen=True)
class AutoCloseAction:
    reason: str
    kind: ActionKind = ActionKind.AUTO_CLOSE


Action = Union[EscalateAction, AutoCloseAction]


@dataclass(slots=True)
class HistoryEvent:
    action: HistoryAction
    timestamp: datetime
    details: str
    previous_status: Optional[AlertStatus] = None
    previous_severity: Optional[Severity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
            "previousStatus": self.previous_status.value if self.previous_status else None,
            "previousSeverity": self.previous_severity.value if self.previous_severity else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEvent":
        previous_status = data.get("previousStatus")
        previous_severity = data.get("previousSeverity")
        return cls(
            action=HistoryAction(data["action"]),
            timestamp=_parse_timestamp(data["timestamp"]),
            details=str(data.get("details") or ""),
            previous_status=AlertStatus(previous_status) if previous_status else None,
            previous_severity=Severity(previous_severity) if previous_severity else None,
        )


@dataclass(slots=True)
class Alert:
    """
    A single reported incident and its lifecycle.

    Lifecycle methods only move along the edges of the state machine and each
    appends exactly one history event capturing the prior status and severity.
    """

    source_type: str
    severity: Severity = Severity.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: AlertStatus = AlertStatus.OPEN
    created_at: datetime = field(default_factory=utcnow)
    history: List[HistoryEvent] = field(default_factory=list)
    escalation_count: int = 0
    last_escalated_at: Optional[datetime] = None
    auto_closed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    resolution: Optional[str] = None

    @classmethod
    def create(
        cls,
        source_type: str,
        severity: Severity = Severity.MEDIUM,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        created_at: Optional[datetime] = None,
    ) -> "Alert":
        alert = cls(
            source_type=source_type,
            severity=severity,
            metadata=dict(metadata or {}),
            created_at=ensure_utc(created_at) if created_at else utcnow(),
        )
        alert._record(HistoryAction.CREATED, "Alert created", now=alert.created_at)
        return alert

    @property
    def driver_id(self) -> Optional[str]:
        value = self.metadata.get("driverId")
        return str(value) if value not in (None, "") else None

    @property
    def vehicle_id(self) -> Optional[str]:
        value = self.metadata.get("vehicleId")
        return str(value) if value not in (None, "") else None

    @property
    def updated_at(self) -> datetime:
        if self.history:
            return self.history[-1].timestamp
        return self.created_at

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_escalate(self, cooldown: timedelta, *, now: Optional[datetime] = None) -> bool:
        if self.last_escalated_at is None:
            return True
        current = now or utcnow()
        return current - self.last_escalated_at > cooldown

    def age_days(self, *, now: Optional[datetime] = None) -> float:
        current = now or utcnow()
        return (current - self.created_at).total_seconds() / 86400

    def escalate(self, severity: Severity, reason: str, *, now: Optional[datetime] = None) -> None:
        self._require_active(HistoryAction.ESCALATED)
        timestamp = now or utcnow()
        previous_status, previous_severity = self.status, self.severity
        self.status = AlertStatus.ESCALATED
        self.severity = Severity(severity)
        self.last_escalated_at = timestamp
        self.escalation_count += 1
        self._record(HistoryAction.ESCALATED, reason, previous_status, previous_severity, now=timestamp)
        logger.info("Alert %s escalated to %s: %s", self.id, self.severity.value, reason)

    def auto_close(self, reason: str, *, now: Optional[datetime] = None) -> None:
        self._require_active(HistoryAction.AUTO_CLOSED)
        timestamp = now or utcnow()
        previous_status = self.status
        self.status = AlertStatus.AUTO_CLOSED
        self.auto_closed_at = timestamp
        self._record(HistoryAction.AUTO_CLOSED, reason, previous_status, self.severity, now=timestamp)
        logger.info("Alert %s auto-closed: %s", self.id, reason)

    def resolve(self, resolution: Optional[str] = None, *, now: Optional[datetime] = None) -> None:
        # Manual override: any state except an already resolved alert.
        if self.status == AlertStatus.RESOLVED:
            raise InvalidTransition(self.id, self.status.value, HistoryAction.RESOLVED.value)
        timestamp = now or utcnow()
        previous_status = self.status
        self.status = AlertStatus.RESOLVED
        self.resolution = resolution
        self.resolved_at = timestamp
        self._record(
            HistoryAction.RESOLVED,
            resolution or "Manually resolved",
            previous_status,
            self.severity,
            now=timestamp,
        )
        logger.info("Alert %s resolved: %s", self.id, resolution)

    def expire(self, expiry_days: float, *, now: Optional[datetime] = None) -> None:
        self._require_active(HistoryAction.EXPIRED)
        timestamp = now or utcnow()
        previous_status = self.status
        self.status = AlertStatus.EXPIRED
        self.expired_at = timestamp
        self._record(
            HistoryAction.EXPIRED,
            f"Alert expired after {expiry_days:g} days",
            previous_status,
            self.severity,
            now=timestamp,
        )
        logger.info("Alert %s expired", self.id)

    def update_metadata(self, updates: Dict[str, Any], *, now: Optional[datetime] = None) -> None:
        self.metadata = {**self.metadata, **updates}
        keys = ", ".join(sorted(str(key) for key in updates)) or "none"
        self._record(HistoryAction.METADATA_UPDATED, f"Metadata updated: {keys}", self.status, self.severity, now=now)

    def apply(self, action: Action, *, now: Optional[datetime] = None) -> None:
        if action.kind == ActionKind.ESCALATE:
            self.escalate(action.severity, action.reason, now=now)
        elif action.kind == ActionKind.AUTO_CLOSE:
            self.auto_close(action.reason, now=now)
        else:
            raise ValueError(f"Unsupported action kind: {action.kind!r}")

    def _require_active(self, attempted: HistoryAction) -> None:
        if not self.is_active():
            raise InvalidTransition(self.id, self.status.value, attempted.value)

    def _record(
        self,
        action: HistoryAction,
        details: str,
        previous_status: Optional[AlertStatus] = None,
        previous_severity: Optional[Severity] = None,
        *,
        now: Optional[datetime] = None,
    ) -> None:
        self.history.append(
            HistoryEvent(
                action=action,
                timestamp=now or utcnow(),
                details=details,
                previous_status=previous_status,
                previous_severity=previous_severity,
            )
        )

    def to_dict(self, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceType": self.source_type,
            "severity": self.severity.value,
            "status": self.status.value,
            "metadata": dict(self.metadata),
            "history": [event.to_dict() for event in self.history],
            "escalationCount": self.escalation_count,
            "lastEscalatedAt": _format_timestamp(self.last_escalated_at),
            "autoClosedAt": _format_timestamp(self.auto_closed_at),
            "resolvedAt": _format_timestamp(self.resolved_at),
            "expiredAt": _format_timestamp(self.expired_at),
            "resolution": self.resolution,
            "createdAt": self.created_at.isoformat(),
            "age": int(self.age_days(now=now)),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        return cls(
            id=str(data["id"]),
            source_type=str(data["sourceType"]),
            severity=Severity(data.get("severity") or Severity.MEDIUM.value),
            status=AlertStatus(data.get("status") or AlertStatus.OPEN.value),
            metadata=dict(data.get("metadata") or {}),
            history=[HistoryEvent.from_dict(item) for item in data.get("history") or []],
            escalation_count=int(data.get("escalationCount") or 0),
            last_escalated_at=_parse_timestamp(data.get("lastEscalatedAt")),
            auto_closed_at=_parse_timestamp(data.get("autoClosedAt")),
            resolved_at=_parse_timestamp(data.get("resolvedAt")),
            expired_at=_parse_timestamp(data.get("expiredAt")),
            resolution=data.get("resolution"),
            created_at=_parse_timestamp(data["createdAt"]),
        )
