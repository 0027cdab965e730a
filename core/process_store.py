import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.errors import ProcessNotFoundError
from schemas.chat import CamelModel, ProcessedMessage

logger = logging.getLogger(__name__)


# Define clear states for the frontend to react to
class ProcessStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessStatus.COMPLETED, ProcessStatus.FAILED)


_STATUS_RANK = {
    ProcessStatus.PENDING: 0,
    ProcessStatus.PROCESSING: 1,
    ProcessStatus.COMPLETED: 2,
    ProcessStatus.FAILED: 2,
}

_WRITABLE_FIELDS = {"status", "result", "error"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Define the structure of a single process. Stored snapshots are never mutated.
class Process(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    status: ProcessStatus = ProcessStatus.PENDING
    result: Optional[ProcessedMessage] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class ProcessStore:
    """
    In-memory registry of processes.

    Writes to one id go through that id's lock and swap in a new snapshot,
    so readers never see a half-applied update. Reads take no lock.
    """

    def __init__(self):
        self._processes: Dict[str, Process] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._processes)

    async def create(self) -> str:
        """Register a new pending process and return its id"""
        process_id = str(uuid.uuid4())
        now = _now()
        self._locks[process_id] = asyncio.Lock()
        self._processes[process_id] = Process(id=process_id, created_at=now, updated_at=now)
        logger.info("Created process %s", process_id)
        return process_id

    async def get(self, process_id: str) -> Process:
        """Get the current snapshot for polling"""
        process = self._processes.get(process_id)
        if process is None:
            raise ProcessNotFoundError(process_id)
        return process

    async def update(self, process_id: str, **changes: Any) -> Process:
        """
        Merge `changes` into the process and refresh updated_at.

        Writes to a terminal process, and writes that would move the status
        backwards, are discarded and the stored snapshot is returned as is.
        """
        unknown = set(changes) - _WRITABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update process fields: {sorted(unknown)}")

        lock = self._locks.get(process_id)
        if lock is None:
            raise ProcessNotFoundError(process_id)

        async with lock:
            current = self._processes[process_id]
            status = ProcessStatus(changes.get("status", current.status))

            if current.status.is_terminal:
                logger.warning(
                    "Discarding write to process %s: already %s", process_id, current.status.value
                )
                return current
            if _STATUS_RANK[status] < _STATUS_RANK[current.status]:
                logger.warning(
                    "Discarding write to process %s: %s -> %s would regress",
                    process_id, current.status.value, status.value,
                )
                return current

            result = changes.get("result", current.result)
            error = changes.get("error", current.error)
            if result is not None and status != ProcessStatus.COMPLETED:
                raise ValueError("result can only be set on a completed process")
            if error is not None and status != ProcessStatus.FAILED:
                raise ValueError("error can only be set on a failed process")

            updated = current.model_copy(
                update={**changes, "status": status, "updated_at": _now()}
            )
            self._processes[process_id] = updated
            if status != current.status:
                logger.info("Process %s: %s -> %s", process_id, current.status.value, status.value)
            return updated

    async def mark_processing(self, process_id: str) -> Process:
        return await self.update(process_id, status=ProcessStatus.PROCESSING)

    async def complete(self, process_id: str, result: ProcessedMessage) -> Process:
        """Store the final result"""
        return await self.update(process_id, status=ProcessStatus.COMPLETED, result=result)

    async def fail(self, process_id: str, error: str) -> Process:
        """Mark process as failed"""
        return await self.update(process_id, status=ProcessStatus.FAILED, error=error)
