"""Poller: owns the mailbox clients and runs the polling loop.

One cycle walks every client in registration order::

    fetch unread (retried) -> skip processed -> save attachments
        -> mark read (retried) -> record as processed

Failures are reported through the error callbacks and never end the loop;
only :meth:`Poller.stop` does.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog

from .config import AttacherConfig, RetryConfig
from .errors import AttacherError, ProcessedStoreError, RetryCancelledError
from .factory import create_client
from .interface import MailboxClient
from .logging import component_logger
from .models import Attachment, Message, PollerState
from .processed import ProcessedStore
from .retry import retry_with_config
from .storage import AttachmentStore, assign_storage_names

AttachmentCallback = Callable[[Message, Attachment, Path], Awaitable[None] | None]
ErrorCallback = Callable[[Exception, str], Awaitable[None] | None]


@dataclass(frozen=True)
class FailedRegistration:
    """A configured provider that could not be brought up at startup."""

    provider: str
    username: str
    error: Exception


class Poller:
    """Periodically ingests attachments from a fixed set of mailboxes.

    Call :meth:`start` from inside a running event loop; it schedules the
    loop task and returns at once.  :meth:`stop` only requests the loop to
    end; use :meth:`wait_stopped` or :meth:`close` to wait for it.
    """

    def __init__(
        self,
        clients: Sequence[MailboxClient],
        processed: ProcessedStore,
        attachments: AttachmentStore,
        *,
        poll_interval: float = 60.0,
        retry: RetryConfig | None = None,
        failed_registrations: Sequence[FailedRegistration] = (),
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._clients = list(clients)
        self._processed = processed
        self._attachments = attachments
        self._poll_interval = poll_interval
        self._retry = retry or RetryConfig()
        self._failed = list(failed_registrations)
        self._logger = component_logger("poller", logger)

        self._attachment_callbacks: list[AttachmentCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._state = PollerState.CREATED
        self._last_poll_time: datetime | None = None
        self._cycles_completed = 0
        self._attachments_saved = 0

    @classmethod
    async def from_config(
        cls,
        config: AttacherConfig,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> Poller:
        """Build stores and clients from *config*.

        A provider that is unsupported or cannot connect is logged and
        left out; the remaining providers still run.  A processed-set
        file that cannot be loaded is fatal.
        """
        log = component_logger("poller", logger)
        processed = await asyncio.to_thread(ProcessedStore, config.processed_path, logger=logger)
        attachments = AttachmentStore(config.attachment_dir, logger=logger)

        clients: list[MailboxClient] = []
        failed: list[FailedRegistration] = []
        for entry in config.providers:
            try:
                client = create_client(
                    entry.type,
                    accepted_extensions=config.accepted_extensions,
                    logger=logger,
                )
                await client.init(entry)
            except AttacherError as exc:
                log.error(
                    "provider_registration_failed",
                    provider=entry.type,
                    username=entry.username,
                    error=str(exc),
                )
                failed.append(FailedRegistration(entry.type, entry.username, exc))
                continue
            clients.append(client)
            log.info("provider_registered", provider=entry.type, username=entry.username)

        return cls(
            clients,
            processed,
            attachments,
            poll_interval=config.poll_interval_seconds,
            retry=config.retry,
            failed_registrations=failed,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stop_event.is_set()

    @property
    def providers(self) -> list[str]:
        return [client.get_provider() for client in self._clients]

    @property
    def failed_registrations(self) -> list[FailedRegistration]:
        return list(self._failed)

    @property
    def last_poll_time(self) -> datetime | None:
        return self._last_poll_time

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed

    @property
    def attachments_saved(self) -> int:
        return self._attachments_saved

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    # ------------------------------------------------------------------
    # Callback registration
    # ------------------------------------------------------------------

    def on_attachment_saved(self, callback: AttachmentCallback) -> None:
        """Register ``callback(message, attachment, path)``; may be async."""
        self._attachment_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register ``callback(error, provider)``; may be async."""
        self._error_callbacks.append(callback)

    async def _invoke(self, event: str, callbacks: list, *args: object) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._logger.exception("callback_failed", callback_event=event)

    async def _report_error(self, error: Exception, provider: str) -> None:
        await self._invoke("error", self._error_callbacks, error, provider)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop, or withdraw a pending stop if it is still running.

        Must be called with a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._stop_event.clear()
        if self._task is not None and not self._task.done():
            self._logger.info("poller_resumed")
            return
        self._task = loop.create_task(self._run(), name="mailbox-poller")
        self._logger.info(
            "poller_started",
            providers=self.providers,
            poll_interval_seconds=self._poll_interval,
        )

    def stop(self) -> None:
        """Request the loop to stop.  Idempotent and non-blocking."""
        if not self._stop_event.is_set():
            self._stop_event.set()
            self._logger.info("poller_stop_requested")

    async def wait_stopped(self) -> None:
        """Wait for the loop task to finish."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def close(self) -> None:
        """Stop the loop, wait for it, then close every client."""
        self.stop()
        await self.wait_stopped()
        for client in self._clients:
            try:
                await client.close()
            except Exception as exc:
                self._logger.warning(
                    "client_close_failed",
                    provider=client.get_provider(),
                    error=str(exc),
                )
        self._state = PollerState.STOPPED

    async def _run(self) -> None:
        self._logger.info("poll_loop_started")
        try:
            while not self._stop_event.is_set():
                try:
                    await self.poll_once()
                except Exception:
                    self._logger.exception("poll_cycle_failed")

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                except TimeoutError:
                    pass
        finally:
            self._state = PollerState.STOPPED
            self._logger.info("poll_loop_stopped", cycles_completed=self._cycles_completed)

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> None:
        """Run a single cycle over all clients."""
        self._state = PollerState.POLLING
        self._logger.info("poll_cycle_started", providers=len(self._clients))
        try:
            for client in self._clients:
                if self._stop_event.is_set():
                    self._logger.info("poll_cycle_interrupted")
                    break
                await self._poll_client(client)
        finally:
            self._last_poll_time = datetime.now(UTC)
            self._cycles_completed += 1
            self._state = PollerState.IDLE
            self._logger.info("poll_cycle_completed", cycle=self._cycles_completed)

    async def _poll_client(self, client: MailboxClient) -> None:
        provider = client.get_provider()
        log = self._logger.bind(provider=provider)

        try:
            messages = await retry_with_config(
                client.list_unread_messages,
                self._retry,
                cancel=self._stop_event,
                operation_name=f"{provider}.list_unread_messages",
                logger=log,
            )
        except RetryCancelledError:
            log.info("fetch_unread_abandoned")
            return
        except Exception as exc:
            log.error("fetch_unread_failed", error=str(exc))
            await self._report_error(exc, provider)
            return

        log.info("unread_messages_fetched", count=len(messages))
        for exc in client.take_fetch_errors():
            await self._report_error(exc, provider)
        for message in messages:
            if self._stop_event.is_set():
                log.info("provider_poll_interrupted")
                return
            if self._processed.is_processed(message.id):
                log.debug("message_already_processed", message_id=message.id)
                continue
            await self._process_message(client, message, log)

    async def _process_message(
        self,
        client: MailboxClient,
        message: Message,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        provider = client.get_provider()
        log = log.bind(message_id=message.id)
        save_dir = self._attachments.resolve_dir(provider, message)
        assign_storage_names(message.attachments)

        for attachment in message.attachments:
            try:
                path = await self._attachments.save(client, attachment, save_dir)
            except Exception as exc:
                log.warning(
                    "attachment_save_failed",
                    filename=attachment.filename,
                    error=str(exc),
                )
                await self._report_error(exc, provider)
                continue
            if path is None:
                continue
            self._attachments_saved += 1
            log.info("attachment_saved", filename=attachment.filename, path=str(path))
            await self._invoke("attachment_saved", self._attachment_callbacks, message, attachment, path)

        try:
            await retry_with_config(
                functools.partial(client.mark_read, message.id),
                self._retry,
                cancel=self._stop_event,
                operation_name=f"{provider}.mark_read",
                logger=log,
            )
        except RetryCancelledError:
            log.info("mark_read_abandoned")
            return
        except Exception as exc:
            log.error("mark_read_failed", error=str(exc))
            await self._report_error(exc, provider)
            return

        try:
            await asyncio.to_thread(self._processed.mark_processed, message.id)
        except ProcessedStoreError as exc:
            log.error("processed_record_failed", error=str(exc))
            await self._report_error(exc, provider)
            return
        log.debug("message_processed", attachments=len(message.attachments))
