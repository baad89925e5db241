"""Application entry point."""

import asyncio
import logging
import signal
import sys

from subsync.config import get_config
from subsync.db.pool import close_pool
from subsync.payments.server import run_server

logger = logging.getLogger(__name__)


async def boot() -> None:
    """
    Boot sequence: load config → initialize pool → serve until signalled → shutdown.

    Raises:
        SystemExit: On configuration or database errors
    """
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    try:
        config = get_config()
        logger.info(f"Configuration loaded: env={config.env}")

        await run_server(shutdown_event=shutdown_event)

    except Exception as e:
        logger.error(f"Boot sequence failed: {e}")
        raise SystemExit(1) from e

    finally:
        await close_pool()
        logger.info("Application shutdown complete")


def main() -> None:
    """Main entry point with logging configuration."""
    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(boot())
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
