"""Alerts package exposing the lifecycle entity, rule store and rule engine."""

from .engine import RuleEngine
from .models import (
    Action,
    ActionKind,
    Alert,
    AlertStatus,
    AutoCloseAction,
    EscalateAction,
    HistoryAction,
    HistoryEvent,
    Severity,
)
from .registry import DEFAULT_RULES, RuleConfigurationStore, RuleSet

__all__ = [
    "Action",
    "ActionKind",
    "Alert",
    "AlertStatus",
    "AutoCloseAction",
    "DEFAULT_RULES",
    "EscalateAction",
    "HistoryAction",
    "HistoryEvent",
    "RuleConfigurationStore",
    "RuleEngine",
    "RuleSet",
    "Severity",
]
