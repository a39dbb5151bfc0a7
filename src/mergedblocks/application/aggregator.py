from __future__ import annotations
import asyncio, logging
from typing import Callable

from rich.console import Console

from ..domain.models import LogEntry

logger = logging.getLogger(__name__)
console = Console()


def console_write(message: str) -> None:
    # markup off: ranges like "[100:200]" are not rich tags
    console.print(message, markup=False, highlight=False, emoji=False, soft_wrap=True)


class JobLog:
    """Per-job handle workers use to emit report lines."""
    def __init__(self, job_id: int, queue: "asyncio.Queue[LogEntry | None]") -> None:
        self.job_id = job_id
        self.queue = queue

    async def emit(self, message: str) -> None:
        await self.queue.put(LogEntry(self.job_id, message, False))

    async def done(self) -> None:
        await self.queue.put(LogEntry(self.job_id, "", True))


class OrderedLogAggregator:
    """
    Reorder buffer keyed by job id. Everything job k emits is written, in emission
    order, before anything from job k+1, whatever order the workers finish in.
    """
    def __init__(self, write: Callable[[str], None] = console_write) -> None:
        self.write = write
        self.current_job_id = 0
        self.max_job_id = -1
        self._buffered: dict[int, list[str]] = {}
        self._done: set[int] = set()
        self._closed = False

    @property
    def finished(self) -> bool:
        return self._closed and self.current_job_id > self.max_job_id

    def feed(self, entry: LogEntry) -> None:
        if entry.is_done:
            self._done.add(entry.job_id)
        if entry.job_id > self.max_job_id:
            self.max_job_id = entry.job_id

        if entry.job_id == self.current_job_id:
            self._flush(entry.job_id)
            self._write(entry.message)
            if entry.is_done:
                self._advance()
        elif entry.job_id < self.current_job_id:
            logger.warning("log entry for already completed job %d", entry.job_id)
            self._write(entry.message)
        elif entry.message:
            self._buffered.setdefault(entry.job_id, []).append(entry.message)

        self._drain()

    def close(self) -> None:
        self._closed = True
        if self._buffered:
            logger.warning("flushing output of %d unfinished job(s)", len(self._buffered))
            for job_id in sorted(self._buffered):
                self._flush(job_id)

    async def run(self, queue: "asyncio.Queue[LogEntry | None]") -> None:
        """Consume until the dispatcher enqueues `None` (no more jobs)."""
        while not self.finished:
            entry = await queue.get()
            if entry is None:
                self.close()
                break
            self.feed(entry)

    def _write(self, message: str) -> None:
        if message:
            self.write(message)

    def _flush(self, job_id: int) -> None:
        for message in self._buffered.pop(job_id, []):
            self._write(message)

    def _advance(self) -> None:
        self._done.discard(self.current_job_id)
        self.current_job_id += 1
        # the new current job may already have output waiting
        self._flush(self.current_job_id)

    def _drain(self) -> None:
        while self.current_job_id in self._done:
            self._flush(self.current_job_id)
            self._advance()
