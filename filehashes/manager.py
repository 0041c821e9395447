"""filehashes manager: schedules hashing tasks and multiplexes their messages."""
from __future__ import annotations
import asyncio
import logging
import uuid
from typing import AsyncIterator, Iterable, Optional

from filehashes.algorithms import AlgorithmRegistry, DEFAULT_REGISTRY
from filehashes.config import EngineConfig
from filehashes.errors import NoFileToHash
from filehashes.limiter import CancelToken, ConcurrencyLimiter
from filehashes.protocol import Message, MSG_ERROR, MSG_EXITED, STATE_EXITED
from filehashes.request import WorkRequest
from filehashes.task import HashTask

logger = logging.getLogger("filehashes.manager")


class TaskHandle:
    """Caller-owned handle of one submitted request."""

    def __init__(self, request: WorkRequest, task: HashTask):
        self.request_id = str(uuid.uuid4())
        self.request = request
        self.task = task
        self._future: Optional[asyncio.Task] = None

    @property
    def cancel_token(self) -> CancelToken:
        return self.task.cancel_token

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    @property
    def state(self) -> str:
        return self.task.state

    def cancel(self) -> None:
        """Ask the task to stop at its next checkpoint."""
        self.cancel_token.cancel()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    async def wait(self) -> Message:
        """Wait until the task exited and return its terminal message."""
        return await self._future

    def __repr__(self) -> str:
        return f"<TaskHandle {self.request_id} {self.request.file_path} {self.state}>"


class Manager:
    """
    Accepts work requests and runs one HashTask per request, at most
    ``concurrency`` of them past the start gate at a time.
    All task messages go to one shared stream, read with ``get()`` or
    ``messages()``. The stream is never closed.
    """

    def __init__(self, concurrency: Optional[int] = None, buffer_size: Optional[int] = None,
                 registry: Optional[AlgorithmRegistry] = None,
                 queue_size: Optional[int] = None,
                 config: Optional[EngineConfig] = None):
        cfg = config or EngineConfig()
        if not concurrency or concurrency <= 0:
            concurrency = cfg.concurrency if cfg.concurrency > 0 else EngineConfig.concurrency
        if not buffer_size or buffer_size <= 0:
            buffer_size = cfg.buffer_size if cfg.buffer_size > 0 else EngineConfig.buffer_size
        if queue_size is None:
            queue_size = cfg.queue_size
        self.concurrency = concurrency
        self.buffer_size = buffer_size
        self.registry = registry or DEFAULT_REGISTRY
        self.limiter = ConcurrencyLimiter(concurrency)
        self._queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=max(0, queue_size))
        self._live: set[TaskHandle] = set()
        self._orphans: set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return len(self._live)

    async def _put(self, msg: Message) -> None:
        await self._queue.put(msg)

    def submit_one(self, request: WorkRequest, cancel: Optional[CancelToken] = None) -> TaskHandle:
        """Schedule one request. Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        task = HashTask(request, self.limiter, self.registry, self._put,
                        cancel=cancel, buffer_size=self.buffer_size)
        handle = TaskHandle(request, task)
        handle._future = loop.create_task(self._run(handle), name=f"filehashes-{handle.request_id}")
        self._live.add(handle)
        handle._future.add_done_callback(lambda _: self._live.discard(handle))
        logger.info("Scheduled %s: %s", handle.request_id, request)
        return handle

    def submit_many(self, requests: Iterable[WorkRequest],
                    cancel: Optional[CancelToken] = None) -> list[TaskHandle]:
        """Schedule a batch. A shared ``cancel`` token stops the whole batch."""
        requests = list(requests)
        if not requests:
            logger.warning("Empty submission batch")
            self._spawn_error(NoFileToHash())
            return []
        return [self.submit_one(req, cancel) for req in requests]

    def _spawn_error(self, exc: Exception) -> None:
        loop = asyncio.get_running_loop()
        future = loop.create_task(self._put(Message(MSG_ERROR, None, str(exc))))
        self._orphans.add(future)
        future.add_done_callback(self._orphans.discard)

    async def _run(self, handle: TaskHandle) -> Message:
        result = await handle.task.run()
        handle.task.state = STATE_EXITED
        await self._put(Message(MSG_EXITED, handle.request))
        return result

    async def get(self) -> Message:
        return await self._queue.get()

    async def messages(self) -> AsyncIterator[Message]:
        while True:
            yield await self._queue.get()

    def cancel_all(self) -> None:
        for handle in list(self._live):
            handle.cancel()

    async def join(self) -> None:
        """Wait until every submitted task has exited."""
        while self._live:
            await asyncio.gather(*(h._future for h in list(self._live)))
