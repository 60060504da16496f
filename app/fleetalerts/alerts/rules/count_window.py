from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from ..models import Action, Alert, EscalateAction, Severity
from .base import AlertRule, EvaluationContext


debug_logger = logging.getLogger("fleetalerts.debug.rules")


def shares_subject(candidate: Alert, alert: Alert) -> bool:
    # Driver OR vehicle: an alert matching on the driver alone still counts.
    driver_id = alert.driver_id
    vehicle_id = alert.vehicle_id
    if driver_id is not None and candidate.driver_id == driver_id:
        return True
    return vehicle_id is not None and candidate.vehicle_id == vehicle_id


class CountInWindowRule(AlertRule):
    name = "count_in_window"

    def __init__(self, threshold: int, window_minutes: int, severity: Severity) -> None:
        self._threshold = threshold
        self._window_minutes = window_minutes
        self._window = timedelta(minutes=window_minutes)
        self._severity = severity

    def evaluate(self, alert: Alert, context: EvaluationContext) -> Optional[Action]:
        if not alert.can_escalate(context.cooldown, now=context.now):
            return None

        matches = self._matching(alert, context)
        if len(matches) < self._threshold:
            return None

        for other in matches:
            if other.id == alert.id or other.last_escalated_at is None:
                continue
            if not other.can_escalate(context.cooldown, now=context.now):
                debug_logger.debug(
                    "rules.count_in_window.group_cooldown",
                    extra={"alert_id": alert.id, "escalated_alert_id": other.id},
                )
                return None

        return EscalateAction(
            severity=self._severity,
            reason=f"{len(matches)} {alert.source_type} alerts in {self._window_minutes} minutes",
        )

    def _matching(self, alert: Alert, context: EvaluationContext) -> List[Alert]:
        window_start = context.now - self._window
        matches: List[Alert] = []
        seen_subject = False
        for candidate in context.alerts:
            if candidate.id == alert.id:
                seen_subject = True
                candidate = alert
            if candidate.source_type != alert.source_type or not candidate.is_active():
                continue
            if not window_start <= candidate.created_at <= context.now:
                continue
            if candidate is alert or shares_subject(candidate, alert):
                matches.append(candidate)
        if not seen_subject and window_start <= alert.created_at <= context.now:
            matches.append(alert)
        return matches
