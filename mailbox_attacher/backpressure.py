"""Flow control between the poller and a downstream consumer.

Saved attachment paths go into a bounded :class:`asyncio.Queue`.  When the
queue is full the gate pauses ingestion (normally ``poller.stop``) and
blocks until there is room; the consumer reports every drain back to the
gate, which resumes ingestion (``poller.start``).  Nothing is dropped and
ingestion never stays paused once the queue is empty.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog

from .logging import component_logger
from .models import Attachment, Message

Hook = Callable[[], Awaitable[None] | None]
Handler = Callable[[Path], Awaitable[None] | None]


async def _call(func: Callable, *args: object) -> None:
    result = func(*args)
    if inspect.isawaitable(result):
        await result


class FlowGate:
    """Admission gate in front of the downstream queue."""

    def __init__(
        self,
        queue: asyncio.Queue[Path],
        *,
        on_pause: Hook,
        on_resume: Hook,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._queue = queue
        self._on_pause = on_pause
        self._on_resume = on_resume
        self._lock = asyncio.Lock()
        self._paused = False
        self._pauses = 0
        self._logger = component_logger("flow_gate", logger)

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def pause_count(self) -> int:
        return self._pauses

    @property
    def queue(self) -> asyncio.Queue[Path]:
        return self._queue

    def try_acquire(self, item: Path) -> bool:
        """Enqueue without waiting.  Returns ``False`` when the queue is full."""
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    async def blocking_acquire(self, item: Path) -> None:
        """Pause ingestion (once) and wait until *item* fits in the queue."""
        async with self._lock:
            if not self._paused:
                self._paused = True
                self._pauses += 1
                self._logger.info("ingestion_paused", queue_size=self._queue.qsize())
                await _call(self._on_pause)
        await self._queue.put(item)

    async def release(self) -> None:
        """Idle notification from the consumer: resume ingestion if paused."""
        async with self._lock:
            if self._paused:
                await _call(self._on_resume)
                self._paused = False
                self._logger.info("ingestion_resumed")

    async def submit(self, item: Path) -> None:
        if not self.try_acquire(item):
            await self.blocking_acquire(item)

    def attachment_callback(self) -> Callable[[Message, Attachment, Path], Awaitable[None]]:
        """Adapter for :meth:`Poller.on_attachment_saved`."""

        async def _enqueue(message: Message, attachment: Attachment, path: Path) -> None:
            await self.submit(path)

        return _enqueue


class QueueConsumer:
    """Worker that drains the queue into *handler*.

    Handler errors are logged and the item is still counted as done.
    Whenever the queue becomes empty the gate is released.
    """

    def __init__(
        self,
        queue: asyncio.Queue[Path],
        gate: FlowGate,
        handler: Handler,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._queue = queue
        self._gate = gate
        self._handler = handler
        self._handled = 0
        self._failed = 0
        self._logger = component_logger("queue_consumer", logger)

    @property
    def handled(self) -> int:
        return self._handled

    @property
    def failed(self) -> int:
        return self._failed

    async def run(self) -> None:
        """Consume until cancelled."""
        self._logger.info("queue_consumer_started")
        try:
            while True:
                path = await self._queue.get()
                try:
                    await _call(self._handler, path)
                except Exception:
                    self._failed += 1
                    self._logger.exception("queue_handler_failed", path=str(path))
                finally:
                    self._handled += 1
                    self._queue.task_done()

                if self._queue.empty():
                    await self._gate.release()
        finally:
            self._logger.info("queue_consumer_stopped", handled=self._handled)
