"""Dispatcher pool: N asyncio worker loops sweeping the delivery ledger.

Workers in one pool, and pools in other processes, coordinate only through
the ledger's conditional claims, so the pool can be scaled horizontally by
starting more ``python -m courier`` processes against the same database.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from courier.logging import bind_context, get_logger

if TYPE_CHECKING:
    from .dispatcher import WebhookDispatcher

logger = get_logger(__name__)


class DispatcherPool:
    """Runs a fixed number of sweep loops over one dispatcher.

    Example:
        ```python
        pool = DispatcherPool(dispatcher, workers=4, poll_interval=5.0)
        pool.start()
        ...
        await pool.stop()
        ```
    """

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        workers: int = 4,
        poll_interval: float = 5.0,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {poll_interval}")
        self._dispatcher = dispatcher
        self._workers = workers
        self._poll_interval = poll_interval
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def worker_ids(self) -> list[str]:
        """Claim identities of the pool's workers."""
        base = self._dispatcher.worker_id
        return [f"{base}/w{i}" for i in range(self._workers)]

    def start(self) -> None:
        """Start the worker loops on the running event loop."""
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._run_worker(worker_id), name=f"courier-{worker_id}")
            for worker_id in self.worker_ids()
        ]
        logger.info(
            "Dispatcher pool started",
            workers=self._workers,
            poll_interval=self._poll_interval,
        )

    async def stop(self) -> None:
        """Stop the worker loops after their current sweep completes."""
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Dispatcher pool stopped")

    async def run_until_stopped(self) -> None:
        """Start the pool and block until stop() is called."""
        self.start()
        await self._stopping.wait()
        await self.stop()

    def request_stop(self) -> None:
        """Ask the pool to stop; safe to call from a signal handler."""
        self._stopping.set()

    async def _run_worker(self, worker_id: str) -> None:
        # Each task runs in its own context copy
        bind_context(worker_id=worker_id)
        while not self._stopping.is_set():
            try:
                dispatched = await self._dispatcher.sweep(worker_id=worker_id)
            except Exception:
                logger.exception("Dispatcher sweep failed")
                dispatched = 0

            if dispatched:
                # More may be due right away
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass
