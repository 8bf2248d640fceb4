"""Shared test fixtures for the mailbox attacher test suite."""

from __future__ import annotations

from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mailbox_attacher.config import AttacherConfig, ProviderConfig, RetryConfig
from mailbox_attacher.errors import AttachmentContentMissingError, MailboxProtocolError
from mailbox_attacher.interface import MailboxClient
from mailbox_attacher.models import Attachment, Message
from mailbox_attacher.processed import ProcessedStore
from mailbox_attacher.storage import AttachmentStore, storage_filename

PDF_BYTES = b"%PDF-1.4 fake pdf content"


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        type="qq",
        address="imap.test.com",
        username="testuser@qq.com",
        password="testpass",
    )


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, interval_seconds=0, max_interval_seconds=0)


@pytest.fixture
def attacher_config(tmp_path: Path) -> AttacherConfig:
    return AttacherConfig(
        poll_interval_seconds=0.05,
        attachment_dir=tmp_path / "attachments",
        processed_path=tmp_path / "processed.json",
        providers=[
            {
                "type": "qq",
                "address": "imap.qq.com",
                "username": "a@qq.com",
                "password": "secret",
            }
        ],
        health_port=0,
        retry={"max_attempts": 3, "interval_seconds": 0, "max_interval_seconds": 0},
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_email_with_attachments(
    attachments: list[tuple[str, str, bytes]] | None = None,
    *,
    subject: str = "Resume",
    from_addr: str = "Alice <alice@example.com>",
    to_addr: str = "hr@example.com, boss@example.com",
    body_text: str = "Please find attached.",
) -> bytes:
    """Build a multipart/mixed email with base64-encoded attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = "<attach-001@example.com>"
    msg["Date"] = "Mon, 02 Jun 2025 12:00:00 +0000"
    msg.attach(MIMEText(body_text, "plain"))

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def _build_raw_part_email(filename: str, encoding: str, body: bytes) -> bytes:
    """Build an email whose single attachment carries *body* verbatim."""
    return (
        b"From: sender@example.com\r\n"
        b"To: recipient@example.com\r\n"
        b"Subject: Raw part\r\n"
        b"Date: Mon, 02 Jun 2025 12:00:00 +0000\r\n"
        b"MIME-Version: 1.0\r\n"
        b'Content-Type: multipart/mixed; boundary="XYZ"\r\n'
        b"\r\n"
        b"--XYZ\r\n"
        b"Content-Type: text/plain\r\n"
        b"\r\n"
        b"body\r\n"
        b"--XYZ\r\n"
        b"Content-Type: application/pdf\r\n"
        b"Content-Transfer-Encoding: " + encoding.encode() + b"\r\n"
        b'Content-Disposition: attachment; filename="' + filename.encode() + b'"\r\n'
        b"\r\n" + body + b"\r\n"
        b"--XYZ--\r\n"
    )


@pytest.fixture
def pdf_eml_bytes() -> bytes:
    return _build_email_with_attachments(
        [
            ("resume.pdf", "application/pdf", PDF_BYTES),
            ("notes.docx", "application/octet-stream", b"docx bytes"),
        ]
    )


# ------------------------------------------------------------------
# Mock IMAP connection
# ------------------------------------------------------------------


def _make_mock_imap(
    *,
    search_uids: list[bytes] | None = None,
    fetch_data: dict[bytes, bytes] | None = None,
    seen: set[bytes] | None = None,
    uidvalidity: bytes = b"42",
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL with programmed responses."""
    mock = MagicMock()
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.select.return_value = ("OK", [b"1"])
    mock.response.return_value = ("UIDVALIDITY", [uidvalidity])
    mock.close.return_value = ("OK", [b"Closed"])
    mock.logout.return_value = ("BYE", [b"Bye"])
    mock.xatom.return_value = ("OK", [b"ID completed"])

    uid_data = b" ".join(search_uids) if search_uids else b""
    mock.uid.side_effect = _make_uid_handler(uid_data, fetch_data or {}, seen or set())
    return mock


def _make_uid_handler(search_data: bytes, fetch_data: dict[bytes, bytes], seen: set[bytes]):
    """Build a side_effect function for mock.uid() handling SEARCH, FETCH and STORE."""

    def handler(command: str, *args):
        if command == "SEARCH":
            return ("OK", [search_data])
        if command == "FETCH":
            uid = args[0].encode() if isinstance(args[0], str) else args[0]
            raw = fetch_data.get(uid, b"")
            if raw:
                flags = b"\\Seen" if uid in seen else b""
                meta = b"1 (UID %s FLAGS (%s) BODY[] {%d}" % (uid, flags, len(raw))
                return ("OK", [(meta, raw), b")"])
            return ("OK", [None])
        if command == "STORE":
            return ("OK", [b"1 (FLAGS (\\Seen))"])
        return ("NO", [b"unknown"])

    return handler


# ------------------------------------------------------------------
# In-memory mailbox client
# ------------------------------------------------------------------


def make_message(
    provider: str,
    uid: str,
    attachments: list[Attachment] | None = None,
) -> Message:
    return Message(
        id=f"{provider}:user/INBOX:1:{uid}",
        uid=uid,
        provider=provider,
        sender="alice@example.com",
        recipients=["hr@example.com"],
        subject=f"message {uid}",
        attachments=attachments if attachments is not None else [],
    )


def make_pdf(name: str = "resume.pdf", content: bytes | None = PDF_BYTES) -> Attachment:
    return Attachment(
        id=f"{name}:2",
        filename=name,
        size=len(content or b""),
        content_type="application/pdf",
        transfer_encoding="base64",
        content=content,
    )


class FakeMailboxClient(MailboxClient):
    """Scriptable client backed by a list of unread messages."""

    def __init__(
        self,
        provider: str = "fake",
        messages: list[Message] | None = None,
        *,
        accepted_extensions=(".pdf",),
        logger=None,
    ) -> None:
        self.provider = provider
        self.messages = list(messages or [])
        self.accepted = {ext.lower() for ext in accepted_extensions}
        self.list_failures = 0
        self.mark_failures = 0
        self.list_calls = 0
        self.mark_calls: list[str] = []
        self.fetch_errors: list[Exception] = []
        self.closed = False

    async def init(self, config) -> None:
        pass

    async def list_unread_messages(self) -> list[Message]:
        self.list_calls += 1
        if self.list_failures:
            self.list_failures -= 1
            raise MailboxProtocolError("search failed")
        return [m for m in self.messages if not m.is_read]

    def take_fetch_errors(self) -> list[Exception]:
        errors, self.fetch_errors = self.fetch_errors, []
        return errors

    async def save_attachment(self, attachment: Attachment, destination_dir: Path) -> Path | None:
        if attachment.extension not in self.accepted:
            return None
        if attachment.content is None:
            raise AttachmentContentMissingError(attachment.filename) from attachment.decode_error
        path = destination_dir / storage_filename(attachment)
        path.write_bytes(attachment.content)
        return path

    async def mark_read(self, message_id: str) -> None:
        self.mark_calls.append(message_id)
        if self.mark_failures:
            self.mark_failures -= 1
            raise MailboxProtocolError("store failed")
        for message in self.messages:
            if message.id == message_id:
                message.is_read = True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def processed_store(tmp_path: Path) -> ProcessedStore:
    return ProcessedStore(tmp_path / "processed.json")


@pytest.fixture
def attachment_store(tmp_path: Path) -> AttachmentStore:
    return AttachmentStore(tmp_path / "attachments")
