from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

import pytest

from fleetalerts.config import AppConfig, LoggingConfig, app_config
from fleetalerts.logging_utils import DEBUG_LOGGER, configure_logging
from main import load_configuration


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


def test_app_config_reads_every_section(tmp_path):
    path = _write_config(
        tmp_path,
        """
fleetalerts:
  storage:
    url: sqlite:///data/alerts.db
    probe_interval_seconds: 10
  lifecycle:
    escalation_cooldown_minutes: 30
    expiry_days: 14
  scheduler:
    enabled: false
    interval_minutes: 5
  dashboard:
    top_drivers_limit: 3
  rules:
    path: data/rules.yaml
    auto_save: true
    definitions:
      harsh_braking:
        escalateIfCount: 2
        windowMinutes: 10
        escalateToSeverity: HIGH
""",
    )

    config = app_config(str(path)).fleetalerts

    assert config.storage.url == "sqlite:///data/alerts.db"
    assert config.storage.probe_interval_seconds == 10.0
    assert config.lifecycle.cooldown == timedelta(minutes=30)
    assert config.lifecycle.expiry == timedelta(days=14)
    assert config.scheduler.enabled is False
    assert config.scheduler.interval_minutes == 5.0
    assert config.dashboard.top_drivers_limit == 3
    assert config.dashboard.trend_days == 7
    assert config.rules.path == Path("data/rules.yaml")
    assert config.rules.auto_save is True
    assert "harsh_braking" in config.rules.definitions


def test_empty_file_uses_defaults(tmp_path):
    config = app_config(str(_write_config(tmp_path, ""))).fleetalerts

    assert config.storage.url is None
    assert config.lifecycle.cooldown == timedelta(minutes=60)
    assert config.lifecycle.expiry == timedelta(days=30)
    assert config.scheduler.interval_minutes == 2.0
    assert config.rules.path is None


@pytest.mark.parametrize(
    "body",
    [
        "fleetalerts:\n  lifecycle:\n    expiry_days: 0\n",
        "fleetalerts:\n  scheduler:\n    interval_minutes: soon\n",
        "fleetalerts:\n  storage:\n    probe_interval_seconds: -1\n",
        "fleetalerts:\n  rules:\n    definitions: [overspeed]\n",
    ],
)
def test_invalid_values_are_rejected(tmp_path, body):
    with pytest.raises(ValueError):
        app_config(str(_write_config(tmp_path, body)))


def test_missing_config_file_falls_back_to_defaults(tmp_path):
    config = load_configuration(tmp_path / "absent.yaml")

    assert isinstance(config, AppConfig)
    assert config.fleetalerts.scheduler.enabled is True


def test_logging_section_is_read_and_normalized(tmp_path):
    path = _write_config(
        tmp_path,
        "fleetalerts:\n  logging:\n    level: warning\n    debug_file: null\n    debug_level: info\n",
    )

    config = app_config(str(path)).fleetalerts.logging

    assert config.level == "WARNING"
    assert config.debug_file is None
    assert config.debug_level == "INFO"
    assert LoggingConfig().debug_file == Path("logs/debug.log")


@pytest.mark.parametrize("body", ["level: LOUD", "debug_level: 7"])
def test_unknown_logging_levels_are_rejected(tmp_path, body):
    with pytest.raises(ValueError):
        app_config(str(_write_config(tmp_path, f"fleetalerts:\n  logging:\n    {body}\n")))


@pytest.fixture
def debug_logger():
    logger = logging.getLogger(DEBUG_LOGGER)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_debug_events_go_to_the_configured_file(tmp_path, debug_logger):
    config = LoggingConfig(debug_file=Path("var/alerts-debug.log"), debug_level="INFO")

    configure_logging(config, tmp_path)
    configure_logging(config, tmp_path)
    logging.getLogger("fleetalerts.debug.rules").info("rules.evaluated")
    logging.getLogger("fleetalerts.debug.rules").debug("rules.skipped")
    for handler in debug_logger.handlers:
        handler.flush()

    log_file = tmp_path / "var" / "alerts-debug.log"
    assert len([h for h in debug_logger.handlers if isinstance(h, logging.FileHandler)]) == 1
    assert debug_logger.propagate is False
    assert debug_logger.level == logging.INFO
    contents = log_file.read_text(encoding="utf-8")
    assert "rules.evaluated" in contents
    assert "rules.skipped" not in contents


def test_debug_events_propagate_without_a_file(tmp_path, debug_logger, caplog):
    configure_logging(LoggingConfig(debug_file=None), tmp_path)

    with caplog.at_level(logging.DEBUG, logger=DEBUG_LOGGER):
        logging.getLogger("fleetalerts.debug.storage").debug("storage.primary_failed")

    assert debug_logger.propagate is True
    assert "storage.primary_failed" in caplog.text
    assert not (tmp_path / "logs").exists()
