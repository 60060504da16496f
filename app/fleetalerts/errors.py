from __future__ import annotations


class AlertError(RuntimeError):
    """Base class for every error raised by the alert core."""


class ValidationFailure(AlertError):
    """Raised when caller-supplied alert data is rejected before persistence."""


class ConfigurationFailure(AlertError):
    """Raised when a rule update is malformed; the prior rules stay in effect."""


class StorageFailure(AlertError):
    """Raised when a reachable backing store rejects a single operation."""


class StorageUnavailable(StorageFailure):
    """Raised by a backing store that cannot be reached."""


class EvaluationFailure(AlertError):
    """Raised when evaluating a single alert fails."""

    def __init__(self, alert_id: str, message: str) -> None:
        super().__init__(f"Evaluation of alert {alert_id} failed: {message}")
        self.alert_id = alert_id


class InvalidTransition(AlertError):
    """Raised when a lifecycle method is called from a state with no such edge."""

    def __init__(self, alert_id: str, current: str, attempted: str) -> None:
        super().__init__(f"Alert {alert_id} cannot move from {current} via {attempted}")
        self.alert_id = alert_id
        self.current = current
        self.attempted = attempted
