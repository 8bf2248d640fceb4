"""AttacherService: wires the poller, the flow gate and the consumer together."""

from __future__ import annotations

import asyncio
import signal
import time

import structlog
import uvicorn

from .backpressure import FlowGate, Handler, QueueConsumer
from .config import AttacherConfig
from .errors import AttacherError
from .health import create_health_app
from .logging import component_logger
from .poller import Poller

logger = structlog.get_logger()


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Register SIGTERM and SIGINT handlers that set *shutdown_event*."""
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)


class AttacherService:
    """Runs the attachment pipeline until shutdown.

    ``run()`` builds the poller from config and starts concurrently via
    :class:`asyncio.TaskGroup`:

    * the queue consumer feeding *handler*
    * the FastAPI health server (unless ``health_port`` is 0)
    * the poller loop, paused and resumed by the flow gate
    """

    def __init__(
        self,
        config: AttacherConfig,
        handler: Handler | None = None,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.start_time: float = time.monotonic()
        self._handler = handler or self._log_path
        self._injected_logger = logger
        self._logger = component_logger("service", logger)
        self._shutdown_event = asyncio.Event()
        self.poller: Poller | None = None
        self.gate: FlowGate | None = None

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.start_time

    @property
    def is_ready(self) -> bool:
        return self.poller is not None and self.poller.is_running

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def _log_path(self, path) -> None:
        self._logger.info("attachment_ready", path=str(path))

    async def _log_error(self, error: Exception, provider: str) -> None:
        self._logger.warning(
            "pipeline_error",
            provider=provider,
            error_type=type(error).__name__,
            error=str(error),
        )

    def _resume(self) -> None:
        if self.poller is not None and not self._shutdown_event.is_set():
            self.poller.start()

    def _pause(self) -> None:
        if self.poller is not None:
            self.poller.stop()

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, *, install_signals: bool = True) -> None:
        """Run until SIGTERM/SIGINT or :meth:`request_shutdown`.

        Raises :class:`AttacherError` when no configured provider could be
        registered.
        """
        if install_signals:
            install_signal_handlers(self._shutdown_event)
        self.start_time = time.monotonic()
        self._logger.info("service_starting", providers=len(self.config.providers))

        poller = await Poller.from_config(self.config, logger=self._injected_logger)
        if not poller.providers:
            await poller.close()
            raise AttacherError("no mailbox provider could be registered")
        self.poller = poller

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        self.gate = FlowGate(
            queue,
            on_pause=self._pause,
            on_resume=self._resume,
            logger=self._injected_logger,
        )
        poller.on_attachment_saved(self.gate.attachment_callback())
        poller.on_error(self._log_error)
        consumer = QueueConsumer(queue, self.gate, self._handler, logger=self._injected_logger)

        try:
            async with asyncio.TaskGroup() as tg:
                consumer_task = tg.create_task(consumer.run())
                if self.config.health_port:
                    tg.create_task(self._run_health_server())

                poller.start()
                await self._shutdown_event.wait()
                self._logger.info("service_stopping")

                poller.stop()
                await poller.wait_stopped()
                await queue.join()
                consumer_task.cancel()
        except* Exception:
            self._logger.exception("service_task_group_error")
        finally:
            await poller.close()
            self._logger.info("service_stopped", attachments_saved=poller.attachments_saved)
