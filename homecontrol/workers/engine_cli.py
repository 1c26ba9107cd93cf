from __future__ import annotations

import argparse
import logging
import time

from homecontrol.config import load_config, setup_logging
from homecontrol.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homecontrol-engine",
        description="Run the pool pump, sprinkler and thermostat controllers.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--database", help="SQLite database path (overrides HOMECONTROL_DATABASE_PATH)")
    parser.add_argument("--no-pump", action="store_true", help="Do not start the pool pump controller")
    parser.add_argument("--no-irrigation", action="store_true", help="Do not start the sprinkler controller")
    parser.add_argument("--no-climate", action="store_true", help="Do not start the thermostat controller")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the engine until interrupted."""
    args = build_parser().parse_args(argv)

    config = load_config()
    if args.debug:
        config.DEBUG = True
    if args.database:
        config.database_path = args.database
    if args.no_pump:
        config.enable_pump = False
    if args.no_irrigation:
        config.enable_irrigation = False
    if args.no_climate:
        config.enable_climate = False

    setup_logging(debug=config.DEBUG, log_dir=config.log_dir)

    container = ServiceContainer.build(config)
    container.start()
    logger.info("Engine running (press Ctrl+C to stop)")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping engine...")
    finally:
        try:
            container.shutdown()
        except (RuntimeError, OSError, AttributeError, TypeError):
            logger.exception("Failed to shut down engine cleanly")
            return 1
    return 0


if __name__ == "__main__":
    import sys

    raise SystemExit(main(sys.argv[1:]))
