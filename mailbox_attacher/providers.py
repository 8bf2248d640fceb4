"""Provider-specific IMAP dialects."""

from __future__ import annotations

import imaplib

from .errors import MailboxConnectionError
from .factory import register_provider
from .imap_client import ImapMailboxClient

CLIENT_ID = '("name" "mailbox-attacher" "version" "1.0" "vendor" "mailbox-attacher")'


@register_provider("qq")
class QQMailboxClient(ImapMailboxClient):
    """QQ Mail (imap.qq.com).  Logs in with an authorization code."""


@register_provider("netease")
class NeteaseMailboxClient(ImapMailboxClient):
    """NetEase 163/126 mail (imap.163.com).

    NetEase rejects ``SELECT`` with "Unsafe Login" until the client has
    identified itself with the RFC 2971 ``ID`` command.
    """

    def _after_login(self, conn: imaplib.IMAP4) -> None:
        status, data = conn.xatom("ID", CLIENT_ID)
        if status != "OK":
            raise MailboxConnectionError(f"IMAP ID rejected: {data!r}")
        self._logger.debug("imap_id_sent")


@register_provider("gmail")
class GmailMailboxClient(ImapMailboxClient):
    """Gmail (imap.gmail.com).

    Narrows the unseen search server-side with ``X-GM-RAW has:attachment``.
    """

    def search_criteria(self) -> list[str | bytes | None]:
        criteria = super().search_criteria()
        expr = criteria[-1]
        if isinstance(expr, bytes):
            return [*criteria[:-1], expr + b' X-GM-RAW "has:attachment"']
        return [*criteria[:-1], f'{expr} X-GM-RAW "has:attachment"']


@register_provider("outlook")
class OutlookMailboxClient(ImapMailboxClient):
    """Outlook / Office 365 (outlook.office365.com)."""
