from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence

from ..models import Action, Alert


@dataclass(slots=True)
class EvaluationContext:
    """Data available to rules while evaluating one alert."""

    now: datetime
    cooldown: timedelta
    alerts: Sequence[Alert] = field(default_factory=list)


class AlertRule(Protocol):
    name: str

    def evaluate(self, alert: Alert, context: EvaluationContext) -> Optional[Action]:
        ...
