import asyncio
import logging
from typing import Coroutine, Dict, Optional

from core.errors import CANCELLED_MESSAGE
from core.process_store import ProcessStore

logger = logging.getLogger(__name__)


class JobRunner:
    """Owns the background tasks spawned for submitted processes"""

    def __init__(self, store: Optional[ProcessStore] = None):
        self.store = store
        self._tasks: Dict[asyncio.Task, str] = {}

    @property
    def active(self) -> int:
        return len(self._tasks)

    def spawn(self, process_id: str, job: Coroutine) -> asyncio.Task:
        """Schedule `job` without waiting for it"""
        task = asyncio.create_task(job, name=f"process-{process_id}")
        self._tasks[task] = process_id
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.pop(task, None)

    async def shutdown(self) -> None:
        """
        Cancel every job that is still running and wait for them to unwind.
        A task cancelled before its first step never runs its own cleanup,
        so its process is failed here.
        """
        if not self._tasks:
            return
        jobs = dict(self._tasks)
        logger.info("Cancelling %d running job(s)", len(jobs))
        for task in jobs:
            task.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)

        if self.store is None:
            return
        for process_id in jobs.values():
            process = await self.store.get(process_id)
            if not process.status.is_terminal:
                await self.store.fail(process_id, CANCELLED_MESSAGE)
