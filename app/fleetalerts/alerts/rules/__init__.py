"""Rule evaluators compiled from per-source-type rule definitions."""

from .age import AgeRule
from .auto_close import AutoCloseRule
from .base import AlertRule, EvaluationContext
from .count_window import CountInWindowRule

__all__ = [
    "AgeRule",
    "AlertRule",
    "AutoCloseRule",
    "CountInWindowRule",
    "EvaluationContext",
]
