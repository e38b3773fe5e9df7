"""Entry point for running the Courier dispatcher as a module.

Usage:
    python -m courier

Runs the dispatcher pool against COURIER_DATABASE_URL until SIGINT or
SIGTERM. Start more processes to scale out; they coordinate through the
delivery ledger.
"""

from __future__ import annotations

import asyncio
import signal

from courier.config import Settings
from courier.logging import configure_logging, get_logger
from courier.service import CourierService

logger = get_logger("courier.worker")


async def run(settings: Settings | None = None) -> None:
    """Run the dispatcher pool until a termination signal arrives."""
    settings = settings or Settings()
    configure_logging(level=settings.log_level, format=settings.log_format)

    async with CourierService.create(settings) as service:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, service.pool.request_stop)

        logger.info(
            "Starting Courier dispatcher",
            worker_id=service.dispatcher.worker_id,
            workers=settings.dispatcher_workers,
            disabled_endpoint_policy=settings.disabled_endpoint_policy,
        )
        await service.pool.run_until_stopped()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
