"""
VeriCall entry point.

Usage:
    python -m vericall

Environment Variables:
    VERICALL_HOST / VERICALL_PORT - Bind address (default: 0.0.0.0:8080)
    VERICALL_PUBLIC_BASE_URL - Public base URL (decision endpoint for web proofs)
    GOOGLE_APPLICATION_CREDENTIALS - GCP credentials path
    VERICALL_LOG_LEVEL - Log level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import signal
import sys

from .api import VeriCallServer
from .config import get_config, setup_logging

logger = setup_logging()


async def main():
    """Main entry point."""
    config = get_config()

    if not config.gcp_project_id:
        logger.error("No GCP project configured.")
        logger.error("Set GCP_PROJECT_ID or GOOGLE_APPLICATION_CREDENTIALS.")
        sys.exit(1)

    server = VeriCallServer(config)

    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown requested...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())

    try:
        await server.start()
        await shutdown_event.wait()
    finally:
        await server.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
