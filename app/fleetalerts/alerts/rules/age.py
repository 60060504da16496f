from __future__ import annotations

import math
from typing import Optional

from ..models import Action, Alert, AlertStatus, EscalateAction, Severity
from .base import AlertRule, EvaluationContext


class AgeRule(AlertRule):
    name = "age"

    def __init__(self, days: float, severity: Severity) -> None:
        self._days = days
        self._severity = severity

    def evaluate(self, alert: Alert, context: EvaluationContext) -> Optional[Action]:
        # Only alerts that were never escalated age into an escalation.
        if alert.status != AlertStatus.OPEN:
            return None
        if not alert.can_escalate(context.cooldown, now=context.now):
            return None

        age = alert.age_days(now=context.now)
        if age < self._days:
            return None
        return EscalateAction(
            severity=self._severity,
            reason=f"Alert aged {math.floor(age)} days",
        )
