import asyncio
import logging
from typing import Awaitable, Set

from rideshare.metrics import SIDE_EFFECT_FAILURES

logger = logging.getLogger(__name__)


class SideEffects:
    """Runs best-effort writes whose failure is logged, counted and never propagated.

    ``run`` awaits the write in place; ``schedule`` fires it as a task and
    returns immediately. ``drain`` waits for everything scheduled so far.
    """

    def __init__(self):
        self._pending: Set[asyncio.Task] = set()

    async def run(self, effect: str, awaitable: Awaitable, level: int = logging.WARNING) -> bool:
        try:
            await awaitable
            return True
        except Exception:
            SIDE_EFFECT_FAILURES.labels(effect=effect).inc()
            logger.log(level, "Best-effort %s failed", effect, exc_info=True)
            return False

    def schedule(self, effect: str, awaitable: Awaitable, level: int = logging.WARNING) -> asyncio.Task:
        task = asyncio.ensure_future(self.run(effect, awaitable, level=level))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))


side_effects = SideEffects()
