"""Async IMAP mailbox client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
from collections.abc import Collection
from pathlib import Path

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .config import ProviderConfig
from .errors import (
    AttachmentContentMissingError,
    MailboxConnectionError,
    MailboxProtocolError,
)
from .interface import MailboxClient
from .logging import component_logger
from .mime import parse_message
from .models import Attachment, Message
from .storage import storage_filename

_CONNECTION_ERRORS = (imaplib.IMAP4.abort, OSError)


def _quote(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class ImapMailboxClient(MailboxClient):
    """Generic IMAP client; provider variants override the dialect hooks.

    All blocking ``imaplib`` operations run via ``asyncio.to_thread()``
    and are serialized on one connection.  A connection-level failure
    drops the connection so that the next call reconnects.

    Message ids have the form ``{provider}:{username}/{mailbox}:{uidvalidity}:{uid}``.
    """

    provider = "imap"

    #: Fixed connection/login policy, separate from the runtime retry policy.
    connect_attempts: int = 3
    connect_interval_seconds: float = 2.0

    def __init__(
        self,
        *,
        accepted_extensions: Collection[str] = (".pdf",),
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._config: ProviderConfig | None = None
        self._conn: imaplib.IMAP4 | None = None
        self._selected = False
        self._uidvalidity = "0"
        self._fetch_errors: list[Exception] = []
        self._accepted = frozenset(ext.lower() for ext in accepted_extensions)
        self._logger = component_logger("mailbox_client", logger).bind(provider=self.provider)
        self._lock = asyncio.Lock()

    @property
    def config(self) -> ProviderConfig:
        if self._config is None:
            raise MailboxConnectionError(f"{self.provider} client used before init()")
        return self._config

    @property
    def scope(self) -> str:
        return f"{self.provider}:{self.config.username}/{self.config.mailbox}"

    @property
    def accepted_extensions(self) -> frozenset[str]:
        return self._accepted

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, config: ProviderConfig) -> None:
        """Connect and log in, retrying with a fixed interval."""
        self._config = config
        self._logger = self._logger.bind(username=config.username, host=config.host)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.connect_attempts),
            wait=wait_fixed(self.connect_interval_seconds),
            retry=retry_if_exception_type(MailboxConnectionError),
            reraise=True,
        )
        await retrying(self._connect)

    async def _connect(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._connect_sync)
        self._logger.info("imap_connected", mailbox=self.config.mailbox)

    def _connect_sync(self) -> None:
        cfg = self.config
        try:
            if cfg.use_ssl:
                conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(cfg.host, cfg.resolved_port)
            else:
                conn = imaplib.IMAP4(cfg.host, cfg.resolved_port)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailboxConnectionError(f"cannot reach {cfg.host}:{cfg.resolved_port}: {exc}") from exc

        try:
            conn.login(cfg.username, cfg.password.get_secret_value())
            self._after_login(conn)
        except (imaplib.IMAP4.error, OSError) as exc:
            self._safe_logout(conn)
            raise MailboxConnectionError(f"login failed for {cfg.username}: {exc}") from exc

        self._conn = conn
        self._selected = False

    def _after_login(self, conn: imaplib.IMAP4) -> None:
        """Dialect hook run once after a successful login."""

    async def close(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            async with self._lock:
                await asyncio.to_thread(self._disconnect_sync)
            self._logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        if self._selected:
            try:
                conn.close()
            except (imaplib.IMAP4.error, OSError):
                pass
        self._selected = False
        self._safe_logout(conn)

    @staticmethod
    def _safe_logout(conn: imaplib.IMAP4) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    def _ensure_connected_sync(self) -> imaplib.IMAP4:
        if self._conn is None:
            self._connect_sync()
        assert self._conn is not None
        return self._conn

    def _select_sync(self, conn: imaplib.IMAP4) -> None:
        status, data = conn.select(self.config.mailbox)
        if status != "OK":
            raise MailboxProtocolError(f"cannot select {self.config.mailbox}: {data!r}")
        _, validity = conn.response("UIDVALIDITY")
        if validity and validity[0]:
            self._uidvalidity = validity[0].decode() if isinstance(validity[0], bytes) else str(validity[0])
        self._selected = True

    def _drop_connection(self) -> None:
        conn, self._conn = self._conn, None
        self._selected = False
        if conn is not None:
            try:
                conn.shutdown()
            except OSError:
                pass

    async def _run(self, func, *args):
        """Run a blocking IMAP helper, translating connection failures."""
        async with self._lock:
            try:
                return await asyncio.to_thread(func, *args)
            except _CONNECTION_ERRORS as exc:
                self._drop_connection()
                raise MailboxConnectionError(f"{self.provider} connection lost: {exc}") from exc
            except imaplib.IMAP4.error as exc:
                raise MailboxProtocolError(f"{self.provider} command failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    def search_criteria(self) -> list[str | bytes | None]:
        """Arguments for ``UID SEARCH``: unseen, optionally body keywords."""
        keywords = self.config.search_keywords
        if not keywords:
            return [None, "UNSEEN"]
        terms = [f"BODY {_quote(k)}" for k in keywords]
        expr = terms[-1]
        for term in reversed(terms[:-1]):
            expr = f"OR {term} {expr}"
        criteria = f"UNSEEN {expr}"
        if criteria.isascii():
            return [None, criteria]
        return ["CHARSET", "UTF-8", criteria.encode("utf-8")]

    async def list_unread_messages(self) -> list[Message]:
        messages: list[Message] = await self._run(self._list_unread_sync)
        self._logger.debug("imap_poll_complete", fetched=len(messages))
        return messages

    def take_fetch_errors(self) -> list[Exception]:
        errors, self._fetch_errors = self._fetch_errors, []
        return errors

    def _list_unread_sync(self) -> list[Message]:
        conn = self._ensure_connected_sync()
        self._select_sync(conn)

        status, data = conn.uid("SEARCH", *self.search_criteria())
        if status != "OK":
            raise MailboxProtocolError(f"UID SEARCH failed: {data!r}")
        uid_list = data[0].split() if data and data[0] else []

        messages: list[Message] = []
        self._fetch_errors = []
        for uid_bytes in uid_list:
            uid = uid_bytes.decode()
            try:
                messages.append(self._fetch_message_sync(conn, uid))
            except (MailboxProtocolError, ValueError, LookupError) as exc:
                self._logger.warning("imap_fetch_message_failed", uid=uid, error=str(exc))
                self._fetch_errors.append(exc)
        return messages

    def _fetch_message_sync(self, conn: imaplib.IMAP4, uid: str) -> Message:
        status, msg_data = conn.uid("FETCH", uid, "(FLAGS BODY.PEEK[])")
        if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            raise MailboxProtocolError(f"UID FETCH {uid} returned no message")

        meta, raw_bytes = msg_data[0]
        flags = imaplib.ParseFlags(meta)
        return parse_message(
            raw_bytes,
            message_id=f"{self.scope}:{self._uidvalidity}:{uid}",
            uid=uid,
            provider=self.provider,
            is_read=b"\\Seen" in flags,
            accepted_extensions=self._accepted,
            logger=self._logger,
        )

    # ------------------------------------------------------------------
    # Acknowledgement
    # ------------------------------------------------------------------

    async def mark_read(self, message_id: str) -> None:
        await self._run(self._mark_read_sync, message_id)
        self._logger.debug("imap_marked_read", message_id=message_id)

    def _mark_read_sync(self, message_id: str) -> None:
        _, validity, uid = message_id.rsplit(":", 2) if message_id.count(":") >= 2 else ("", "", "")
        if not uid.isdigit():
            raise MailboxProtocolError(f"invalid message id: {message_id}")

        conn = self._ensure_connected_sync()
        if not self._selected:
            self._select_sync(conn)
        if validity != self._uidvalidity:
            raise MailboxProtocolError(
                f"UIDVALIDITY changed ({validity} -> {self._uidvalidity}); {message_id} is stale"
            )

        status, data = conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise MailboxProtocolError(f"UID STORE {uid} failed: {data!r}")

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def save_attachment(self, attachment: Attachment, destination_dir: Path) -> Path | None:
        if attachment.extension not in self._accepted:
            self._logger.debug("attachment_type_skipped", filename=attachment.filename)
            return None
        if attachment.content is None:
            raise AttachmentContentMissingError(
                f"{attachment.filename} has no decoded content"
            ) from attachment.decode_error

        path = Path(destination_dir) / storage_filename(attachment)
        await asyncio.to_thread(path.write_bytes, attachment.content)
        return path
