"""Entry point: ``python -m voicedesk``."""

import asyncio
import signal

from .config import load_config, validate_production_config
from .logging_config import configure_logging, get_logger
from .server import MediaServer

logger = get_logger(__name__)


async def main():
    config = load_config()
    configure_logging(log_level=str(config.logging.level).upper())

    errors, warnings = validate_production_config(config)
    if errors:
        logger.error("Configuration validation failed", errors=errors, warnings=warnings)
        raise RuntimeError(f"Configuration errors: {errors}")
    if warnings:
        logger.warning("Configuration warnings", warnings=warnings)
    logger.info("Configuration validation passed")

    server = MediaServer(config)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    await server.start()
    await shutdown_event.wait()
    await server.stop()


def run():
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Interrupted; shutting down")
    finally:
        logger.info("voicedesk has shut down.")


if __name__ == "__main__":
    run()
