"""Polling scheduler for persisted step timeouts."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from .constants import DEFAULT_POLL_INTERVAL_SECONDS
from .contracts import utcnow
from .engine import WorkflowEngine
from .errors import WorkflowError
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class TimeoutScheduler:
    """Fires due timers from the repository's timer table.

    Timers survive restarts because they live in the repository; ``recover``
    handles anything that fell due while no scheduler was running.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        repository: Optional[WorkflowRepository] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._repository = repository or engine.repository
        self._poll_interval = poll_interval
        self._clock = clock
        self._stopped = asyncio.Event()

    async def recover(self) -> int:
        """Startup sweep over timers that became due while offline."""
        fired = await self.run_due()
        if fired:
            logger.info(f"Recovered {fired} overdue step timeouts")
        return fired

    async def run_due(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        fired = 0
        for timer in await self._repository.list_due_timers(now):
            await self._repository.delete_timer(timer.step_id)
            try:
                await self._engine.handle_step_timeout(timer.step_id)
            except WorkflowError as e:
                logger.warning(f"Timeout for step {timer.step_id} not handled: {e}")
                continue
            fired += 1
        return fired

    async def run(self, lifespan: Optional[float] = None, recover: bool = True) -> None:
        """Poll until stopped or ``lifespan`` seconds have passed."""
        self._stopped.clear()
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        if recover:
            await self.recover()

        while not self._stopped.is_set():
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break
            try:
                await self.run_due()
            except Exception:
                logger.exception("Timeout poll failed")
            timeout = self._poll_interval
            if lifespan and start_time is not None:
                timeout = min(timeout, max(0.0, lifespan - (loop.time() - start_time)))
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()
