# -----------------------------------------------------------------------------
# THE DISPATCHER - TEMPLATE WORKER POOL
# -----------------------------------------------------------------------------
# Responsibility: Decouple submission (HTTP request) from rendering.
#
# A fixed number of worker tasks share one queue of (run_id, Template) jobs.
# Each worker renders one run at a time, end to end, then takes the next.
# Submitting returns as soon as the pending run is recorded and queued.
#
# The queue is unbounded unless BLUEPRINT_QUEUE_MAXSIZE is set; a bounded
# queue rejects new submissions with QueueFull.
# -----------------------------------------------------------------------------

import asyncio
import os
import traceback

from rich.console import Console

from blueprint.core.orchestrator import RunOrchestrator
from blueprint.domain.models import RunStatus, Template

console = Console()

NUM_TEMPLATE_WORKERS = int(os.getenv("BLUEPRINT_WORKERS", "10"))
QUEUE_MAXSIZE = int(os.getenv("BLUEPRINT_QUEUE_MAXSIZE", "0"))  # 0 = unbounded


class QueueFull(Exception):
    """Raised when a bounded job queue cannot accept another run."""

    pass


class JobDispatcher:
    """
    Pool of template workers.

    Usage:
        dispatcher = JobDispatcher(orchestrator)
        dispatcher.start()
        run_id = await dispatcher.submit(template)
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        workers: int = NUM_TEMPLATE_WORKERS,
        maxsize: int = QUEUE_MAXSIZE,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._orchestrator = orchestrator
        self._num_workers = workers
        self._queue: asyncio.Queue[tuple[str, Template]] = asyncio.Queue(maxsize=maxsize)
        self._workers: list[asyncio.Task] = []
        # Slots held by submissions still creating their run record
        self._reserved = 0

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    @property
    def pending(self) -> int:
        """Jobs waiting for a worker."""
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker tasks. Must be called inside a running event loop."""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"template-worker-{n}")
            for n in range(self._num_workers)
        ]
        console.print(f"[green][DISPATCHER] {self._num_workers} template workers online[/green]")

    async def stop(self) -> None:
        """
        Cancel all workers. A run in progress is marked failed; queued jobs
        that were not started are dropped.
        """
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        console.print("[yellow][DISPATCHER] Template workers stopped[/yellow]")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    def _has_room(self) -> bool:
        maxsize = self._queue.maxsize
        return maxsize <= 0 or self._queue.qsize() + self._reserved < maxsize

    def _queue_full(self) -> QueueFull:
        return QueueFull(f"Job queue is full ({self._queue.maxsize} runs waiting)")

    def enqueue(self, run_id: str, template: Template) -> None:
        """
        Queue a run whose record already exists.

        Raises:
            QueueFull: If the queue is bounded and every slot is taken or
                reserved by a pending submission.
        """
        if not self._has_room():
            raise self._queue_full()
        try:
            self._queue.put_nowait((run_id, template))
        except asyncio.QueueFull as e:
            raise self._queue_full() from e

    async def submit(self, template: Template) -> str:
        """
        Record a pending run and queue it. Does not wait for rendering.

        The queue slot is reserved before the run record is created, so
        concurrent submissions cannot overbook a bounded queue.

        Returns:
            The run id.

        Raises:
            QueueFull: If the queue is bounded and full (no run is created).
        """
        if not self._has_room():
            raise self._queue_full()

        self._reserved += 1
        try:
            run_id = await self._orchestrator.submit(template)
        finally:
            self._reserved -= 1

        self.enqueue(run_id, template)
        return run_id

    async def _worker(self, number: int) -> None:
        """Take jobs forever; a failing job never kills the worker."""
        while True:
            run_id, template = await self._queue.get()
            try:
                summary = await self._orchestrator.run_template(run_id, template)
                if summary.status == RunStatus.SUCCEEDED:
                    console.print(
                        f"[green][DISPATCHER] worker {number}: run {run_id[:8]} succeeded[/green]"
                    )
                else:
                    console.print(
                        f"[red][DISPATCHER] worker {number}: run {run_id[:8]} failed: "
                        f"{summary.error}[/red]"
                    )
            except Exception as e:
                console.print(
                    f"[red][DISPATCHER] worker {number}: run {run_id[:8]} crashed: {e}[/red]"
                )
                console.print(f"[dim]{traceback.format_exc()}[/dim]")
            finally:
                self._queue.task_done()
