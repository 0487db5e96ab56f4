"""Background trigger dispatcher with a bounded queue and a fixed worker pool.

Side effects that follow a mutation (playbook automation, activity
records) run here, detached from the response path:
- enqueue() never blocks; a full queue drops the trigger and counts it
- failures are logged and counted, never surfaced to the caller
- a failed trigger is retried up to max_retries times (0 = no retry)

Workers start on first enqueue (or on start()) inside the running loop and
are stopped by the application lifespan. With autostart=False nothing runs
until start() or drain(); tests use that to run queued work at a known point.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)

TriggerJob = Callable[[], Awaitable[None]]


@dataclass
class Trigger:
    name: str
    job: TriggerJob
    attempt: int = 0


@dataclass
class TriggerStats:
    enqueued: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    retried: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class TriggerDispatcher:
    workers: int = 2
    queue_size: int = 1000
    max_retries: int = 0
    autostart: bool = True
    stats: TriggerStats = field(default_factory=TriggerStats)

    def __post_init__(self) -> None:
        self._queue: asyncio.Queue[Trigger] = asyncio.Queue(maxsize=self.queue_size)
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._worker(i), name=f"trigger-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info("Trigger dispatcher started with %d workers", self.workers)

    def enqueue(self, name: str, job: TriggerJob) -> bool:
        """Queue *job* without waiting. Returns False if it was dropped."""
        if self.autostart and not self.running:
            self.start()
        if not self._offer(Trigger(name=name, job=job)):
            return False
        self.stats.enqueued += 1
        return True

    def _offer(self, trigger: Trigger) -> bool:
        try:
            self._queue.put_nowait(trigger)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("Trigger queue full, dropped %s", trigger.name)
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued trigger (and its retries) has finished."""
        if self._queue.qsize() and not self.running:
            self.start()
        await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        if drain and self.running:
            await self.drain()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Trigger dispatcher stopped: %s", self.stats.as_dict())

    async def _worker(self, index: int) -> None:
        while True:
            trigger = await self._queue.get()
            try:
                await self._run(trigger)
            finally:
                self._queue.task_done()

    async def _run(self, trigger: Trigger) -> None:
        try:
            await trigger.job()
        except Exception:
            if trigger.attempt < self.max_retries:
                trigger.attempt += 1
                self.stats.retried += 1
                logger.warning(
                    "Trigger %s failed, retry %d/%d",
                    trigger.name, trigger.attempt, self.max_retries,
                    exc_info=True,
                )
                if not self._offer(trigger):
                    self.stats.failed += 1
                return
            self.stats.failed += 1
            logger.exception("Trigger %s failed", trigger.name)
            return
        self.stats.succeeded += 1
