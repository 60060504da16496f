from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from .models import Action, Alert, utcnow
from .registry import RuleConfigurationStore, build_rules
from .rules.base import AlertRule, EvaluationContext


class RuleEngine:
    """Stateless evaluator: returns the first matching action for an alert, or None."""

    def __init__(self, store: RuleConfigurationStore, *, cooldown: timedelta) -> None:
        self._store = store
        self._cooldown = cooldown
        self._compiled: Dict[str, List[AlertRule]] = {}
        self._compiled_version: Optional[int] = None

    @property
    def store(self) -> RuleConfigurationStore:
        return self._store

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def evaluate(
        self,
        alert: Alert,
        alerts: Sequence[Alert],
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Action]:
        if not alert.is_active():
            return None

        rules = self._rules_for(alert.source_type)
        if not rules:
            return None

        context = EvaluationContext(now=now or utcnow(), cooldown=self._cooldown, alerts=alerts)
        for rule in rules:
            action = rule.evaluate(alert, context)
            if action is not None:
                return action
        return None

    def invalidate(self) -> None:
        self._compiled = {}
        self._compiled_version = None

    def _rules_for(self, source_type: str) -> List[AlertRule]:
        rule_set = self._store.current()
        if rule_set.version != self._compiled_version:
            self._compiled = {}
            self._compiled_version = rule_set.version

        compiled = self._compiled.get(source_type)
        if compiled is None:
            definition = rule_set.rules.get(source_type)
            compiled = build_rules(definition) if definition is not None else []
            self._compiled[source_type] = compiled
        return compiled
