from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

from fleetalerts.config import AppConfig, app_config
from fleetalerts.logging_utils import configure_logging
from fleetalerts.service import AlertService


PROJECT_ROOT = Path(__file__).resolve().parent
_config_override = os.getenv("FLEETALERTS_CONFIG")
CONFIG_PATH = Path(_config_override) if _config_override else PROJECT_ROOT / "config.yaml"

logger = logging.getLogger("fleetalerts.main")


def load_configuration(path: Optional[Path] = None) -> AppConfig:
    config_path = path or CONFIG_PATH
    if not config_path.exists():
        logger.warning("Config file %s not found; using defaults", config_path)
        return AppConfig.from_dict({})
    return app_config(str(config_path))


def build_service(config: AppConfig) -> AlertService:
    return AlertService(config.fleetalerts)


async def run_once(service: AlertService) -> None:
    result = await service.run_reconciliation()
    logger.info(
        "Sweep complete: evaluated=%s transitioned=%s expired=%s failed=%s",
        result.evaluated,
        result.transitioned,
        result.expired,
        result.failed,
    )
    await service.stop()


async def run_scheduler(service: AlertService, max_runtime: Optional[float] = None) -> None:
    """
    Run reconciliation sweeps on the configured interval until cancelled.

    When max_runtime is provided, the loop stops after the given number of
    seconds.
    """
    service.start()
    start_time = time.monotonic()
    try:
        while True:
            await asyncio.sleep(1.0)
            if max_runtime is not None and time.monotonic() - start_time >= max_runtime:
                logger.info("Reached max runtime (%ss); stopping", max_runtime)
                return
    finally:
        await service.stop()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fleet alert reconciliation runner.")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the configuration file (default: app/config.yaml or $FLEETALERTS_CONFIG)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single re-evaluation and expiry sweep, then exit.",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Optional maximum runtime in seconds before exiting.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Console logging level; overrides logging.level in the config file.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = load_configuration(args.config)
    configure_logging(config.fleetalerts.logging, PROJECT_ROOT, level_override=args.log_level)

    service = build_service(config)
    try:
        if args.once:
            asyncio.run(run_once(service))
        else:
            asyncio.run(run_scheduler(service, max_runtime=args.duration))
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting")


if __name__ == "__main__":
    main()
