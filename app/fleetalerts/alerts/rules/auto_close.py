from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from ..models import Action, Alert, AutoCloseAction
from .base import AlertRule, EvaluationContext


# Well-known conditions reported under more than one metadata field name.
_EQUIVALENT_CONDITIONS: Tuple[Tuple[str, ...], ...] = (
    ("document_valid", "documentValid"),
    ("document_renewed", "documentRenewed"),
    ("maintenance_completed", "maintenanceCompleted"),
)


def condition_keys(condition: str) -> Tuple[str, ...]:
    for group in _EQUIVALENT_CONDITIONS:
        if condition in group:
            return (condition,) + tuple(key for key in group if key != condition)
    return (condition,)


def is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


class AutoCloseRule(AlertRule):
    name = "auto_close"

    def __init__(self, condition: str) -> None:
        self._condition = condition
        self._keys = condition_keys(condition)

    def evaluate(self, alert: Alert, context: EvaluationContext) -> Optional[Action]:
        metadata: Dict[str, Any] = alert.metadata or {}
        if not any(is_true(metadata.get(key)) for key in self._keys):
            return None
        return AutoCloseAction(reason=f"Auto-closed because {self._condition} condition met")
