"""
Background worker that reclaims expired scratch files.

Runs TempFileStore.sweep() once at startup and then on a fixed interval
until the application shuts down.
"""

import asyncio
from typing import Optional

import structlog

from mp3relay.services.temp_store import TempFileStore

logger = structlog.get_logger()


class SweepWorker:
    """
    Periodic sweep loop owned by the application lifespan.

    Example:
        >>> worker = SweepWorker(temp_store, interval_seconds=900)
        >>> await worker.start()
        >>> ...
        >>> await worker.stop()
    """

    def __init__(self, temp_store: TempFileStore, interval_seconds: float = 900):
        self.temp_store = temp_store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("sweep_worker_already_running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("sweep_worker_started", interval_seconds=self.interval_seconds)

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal the loop to finish and wait for it, cancelling if it hangs."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("sweep_worker_stop_timeout", message="Cancelling sweep task")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
        logger.info("sweep_worker_stopped", runs=self.runs)

    async def run_once(self) -> int:
        """One sweep; errors are logged so the loop survives them."""
        try:
            deleted = await self.temp_store.sweep()
        except Exception as e:
            logger.error("sweep_failed", error=str(e), exc_info=True)
            return 0
        finally:
            self.runs += 1
        return deleted

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
