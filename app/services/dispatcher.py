import asyncio
from typing import Any, Callable, Optional

from app.logging_config import get_logger
from app.services.ingestion_service import InboundMessage

logger = get_logger("dispatcher")


class MessageDispatcher:
    """
    Runs one pipeline task per inbound message without blocking the webhook response.

    At most `max_concurrency` pipelines run at once. Messages from the same
    user run one after another so session read-modify-write never overlaps
    inside this process.
    """

    def __init__(self, handler: Callable[[InboundMessage], Any], max_concurrency: int = 8):
        self._handler = handler
        self._max_concurrency = max(1, max_concurrency)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, message: InboundMessage) -> asyncio.Task:
        """Schedule processing and return immediately. Must be called from the event loop."""
        task = asyncio.get_running_loop().create_task(self._run(message), name=f"pipeline:{message.message_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(self, message: InboundMessage) -> Any:
        lock = self._user_lock(message.user_id)
        try:
            async with lock:
                async with self._get_semaphore():
                    return await asyncio.to_thread(self._handler, message)
        finally:
            self._release_user_lock(message.user_id)

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        return self._semaphore

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        return lock

    def _release_user_lock(self, user_id: str) -> None:
        remaining = self._lock_users.get(user_id, 1) - 1
        if remaining <= 0:
            self._lock_users.pop(user_id, None)
            self._user_locks.pop(user_id, None)
        else:
            self._lock_users[user_id] = remaining

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Pipeline task failed",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"context": {"task": task.get_name()}},
            )

    async def wait_idle(self) -> None:
        """Wait for every submitted task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks. Work already running in a thread is abandoned, not drained."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Dispatcher stopped", extra={"context": {"cancelled": len(tasks)}})
