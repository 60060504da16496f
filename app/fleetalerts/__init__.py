"""Fleet alert lifecycle, rule evaluation and reconciliation."""

from .service import AlertService

__all__ = [
    "AlertService",
]
