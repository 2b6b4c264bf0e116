"""
Periodic store status sweep.

The sweeper is owned by whoever starts it (the FastAPI lifespan in
``main.py``). Only one sweep task runs per sweeper: ``start()`` on a running
sweeper cancels the current task before scheduling a new one, and
``stop()`` returns only after a sweep already running in the worker thread
has finished.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.db import SessionLocal
from services.stores import StoreService, SweepResult

logger = logging.getLogger(__name__)


class StoreStatusSweeper:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: Optional[float] = None,
        name: str = "store-status-sweep",
    ):
        self.session_factory = session_factory
        self.interval = settings.STATUS_SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self.name = name
        self._task: asyncio.Task | None = None
        self._tick: asyncio.Future | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop, replacing any loop this sweeper already runs."""
        if self._task is not None:
            logger.info("Restarting %s", self.name)
            await self.stop()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("%s started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        # The worker thread cannot be cancelled; let it finish and close its session
        tick, self._tick = self._tick, None
        if tick is not None and not tick.done():
            logger.info("Waiting for in-flight %s tick", self.name)
            try:
                await tick
            except Exception:
                logger.exception("%s tick failed", self.name)
        logger.info("%s stopped", self.name)

    async def _run(self) -> None:
        # First pass runs immediately so statuses are correct at startup
        while True:
            self._tick = asyncio.ensure_future(asyncio.to_thread(self.sweep_once))
            try:
                await asyncio.shield(self._tick)
            except Exception:
                logger.exception("%s tick failed", self.name)
            await asyncio.sleep(self.interval)

    def sweep_once(self, now: Optional[datetime] = None) -> SweepResult:
        db = self.session_factory()
        try:
            return StoreService(db).sweep(now)
        finally:
            db.close()
