from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from fleetalerts.errors import ConfigurationFailure
from fleetalerts.schemas import RuleDefinition

from .rules.age import AgeRule
from .rules.auto_close import AutoCloseRule
from .rules.base import AlertRule
from .rules.count_window import CountInWindowRule


logger = logging.getLogger("fleetalerts.rules")


DEFAULT_RULES: Dict[str, Dict[str, Any]] = {
    "overspeed": {
        "escalateIfCount": 3,
        "windowMinutes": 60,
        "escalateToSeverity": "CRITICAL",
        "autoCloseIf": "speed_normalized",
    },
    "feedback_negative": {
        "escalateIfCount": 2,
        "windowMinutes": 1440,
        "escalateToSeverity": "HIGH",
        "autoCloseIf": "feedback_resolved",
    },
    "compliance": {
        "escalateIfDays": 7,
        "escalateToSeverity": "HIGH",
        "autoCloseIf": "document_valid",
    },
    "document_expiry": {
        "escalateIfDays": 3,
        "escalateToSeverity": "CRITICAL",
        "autoCloseIf": "document_renewed",
    },
    "vehicle_maintenance": {
        "escalateIfDays": 5,
        "escalateToSeverity": "HIGH",
        "autoCloseIf": "maintenance_completed",
    },
    "driver_fatigue": {
        "escalateIfCount": 1,
        "windowMinutes": 30,
        "escalateToSeverity": "CRITICAL",
        "autoCloseIf": "driver_rested",
    },
}


def parse_rules(raw: Any) -> Dict[str, RuleDefinition]:
    if not isinstance(raw, Mapping):
        raise ConfigurationFailure("Rules must be a mapping of source type to rule definition")

    parsed: Dict[str, RuleDefinition] = {}
    for source_type, definition in raw.items():
        if not isinstance(source_type, str) or not source_type.strip():
            raise ConfigurationFailure(f"Invalid source type key: {source_type!r}")
        if isinstance(definition, RuleDefinition):
            parsed[source_type] = definition
            continue
        if not isinstance(definition, Mapping):
            raise ConfigurationFailure(f"Rule for '{source_type}' must be a mapping")
        try:
            parsed[source_type] = RuleDefinition.model_validate(dict(definition))
        except ValidationError as exc:
            raise ConfigurationFailure(f"Invalid rule for '{source_type}': {exc}") from exc
    return parsed


def build_rules(definition: RuleDefinition) -> List[AlertRule]:
    """Compile a rule definition into evaluators; escalation precedes auto-close."""
    rules: List[AlertRule] = []
    if definition.escalate_if_count is not None and definition.window_minutes is not None:
        rules.append(
            CountInWindowRule(
                definition.escalate_if_count,
                definition.window_minutes,
                definition.escalate_to_severity,
            )
        )
    if definition.escalate_if_days is not None:
        rules.append(AgeRule(definition.escalate_if_days, definition.escalate_to_severity))
    if definition.auto_close_if:
        rules.append(AutoCloseRule(definition.auto_close_if))
    return rules


@dataclass(frozen=True)
class RuleSet:
    version: int
    rules: Mapping[str, RuleDefinition]

    def to_config(self) -> Dict[str, Dict[str, Any]]:
        return {source_type: rule.to_config() for source_type, rule in self.rules.items()}


class RuleConfigurationStore:
    """
    Holds the per-source-type rules.

    Readers take ``current()`` once and work from that immutable snapshot;
    updates build a complete replacement before swapping it in.
    """

    def __init__(
        self,
        rules: Optional[Mapping[str, Any]] = None,
        *,
        path: Optional[Path] = None,
        auto_save: bool = False,
    ) -> None:
        self._path = path
        self._auto_save = auto_save
        self._write_lock = threading.Lock()
        initial = parse_rules(rules if rules is not None else DEFAULT_RULES)
        self._state = RuleSet(version=0, rules=MappingProxyType(initial))

    @classmethod
    def from_file(
        cls,
        path: Path,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        auto_save: bool = False,
    ) -> "RuleConfigurationStore":
        rules: Dict[str, Any] = dict(DEFAULT_RULES)
        if path.exists():
            try:
                loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                raise ConfigurationFailure(f"Unreadable rules file {path}: {exc}") from exc
            if loaded:
                rules = dict(loaded)
            logger.info("Loaded %s rules from %s", len(rules), path)
        if overrides:
            rules.update(overrides)
        return cls(rules, path=path, auto_save=auto_save)

    def current(self) -> RuleSet:
        return self._state

    def get(self, source_type: str) -> Optional[RuleDefinition]:
        return self._state.rules.get(source_type)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return self._state.to_config()

    def update(self, partial: Mapping[str, Any]) -> RuleSet:
        """Shallow merge: listed source types are replaced whole, others untouched."""
        parsed = parse_rules(partial)
        with self._write_lock:
            previous = self._state
            merged = {**previous.rules, **parsed}
            self._state = RuleSet(version=previous.version + 1, rules=MappingProxyType(merged))
        logger.info("Rules updated (%s): %s", self._state.version, ", ".join(sorted(parsed)) or "none")
        if self._auto_save:
            self.save()
        return self._state

    def replace(self, rules: Mapping[str, Any]) -> RuleSet:
        parsed = parse_rules(rules)
        with self._write_lock:
            self._state = RuleSet(version=self._state.version + 1, rules=MappingProxyType(parsed))
        if self._auto_save:
            self.save()
        return self._state

    def save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                yaml.safe_dump(self.snapshot(), sort_keys=True),
                encoding="utf-8",
            )
        except OSError:
            logger.exception("Failed to save rules to %s", self._path)
