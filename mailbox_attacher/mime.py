"""MIME structure walk and transfer decoding for fetched messages.

Each message is parsed from its raw RFC 822 bytes, the part tree is walked
with IMAP-style section numbers, and every attachment-disposed (or named)
leaf part becomes an :class:`Attachment`.  Only parts with an accepted
extension have their transfer encoding decoded; everything else keeps
metadata only.
"""

from __future__ import annotations

import base64
import binascii
import email
import email.policy
import email.utils
import quopri
from collections.abc import Collection, Iterator
from datetime import datetime
from email.message import Message as MimeMessage

import structlog

from .errors import AttachmentDecodeError
from .models import Attachment, Message

IDENTITY_ENCODINGS = frozenset({"7bit", "8bit", "binary", ""})


def decode_transfer_encoding(payload: bytes, encoding: str) -> bytes:
    """Decode *payload* according to its Content-Transfer-Encoding.

    Unrecognized encodings return the payload unchanged.  Raises
    :class:`AttachmentDecodeError` for malformed base64 or quoted-printable.
    """
    encoding = encoding.strip().lower()
    if encoding == "base64":
        compact = b"".join(payload.split())
        try:
            return base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AttachmentDecodeError(f"malformed base64 payload: {exc}") from exc
    if encoding == "quoted-printable":
        try:
            return quopri.decodestring(payload)
        except (binascii.Error, ValueError) as exc:
            raise AttachmentDecodeError(f"malformed quoted-printable payload: {exc}") from exc
    return payload


def iter_sections(part: MimeMessage, section: str = "") -> Iterator[tuple[str, MimeMessage]]:
    """Yield ``(section, part)`` for every leaf of the MIME tree.

    Section numbers follow IMAP BODYSTRUCTURE numbering: children of a
    multipart are numbered from 1, and a single-part message is section 1.
    """
    if part.is_multipart():
        for idx, child in enumerate(part.get_payload(), start=1):
            child_section = f"{section}.{idx}" if section else str(idx)
            yield from iter_sections(child, child_section)
    else:
        yield section or "1", part


def _raw_payload(part: MimeMessage) -> bytes:
    payload = part.get_payload(decode=False)
    if isinstance(payload, bytes):
        return payload
    if not isinstance(payload, str):
        return b""
    # The parser keeps undecodable 8-bit octets as surrogates.
    return payload.encode("ascii", "surrogateescape")


def extract_attachments(
    msg: MimeMessage,
    *,
    message_uid: str,
    accepted_extensions: Collection[str],
    logger: structlog.stdlib.BoundLogger | None = None,
) -> list[Attachment]:
    """Walk *msg* and collect its attachments.

    A decode failure is recorded on the attachment (``content`` stays
    ``None``) and never stops the walk.
    """
    log = logger or structlog.get_logger()
    attachments: list[Attachment] = []

    for section, part in iter_sections(msg):
        filename = part.get_filename()
        disposition = part.get_content_disposition()
        if not filename:
            if disposition == "attachment":
                log.debug("attachment_without_filename_skipped", uid=message_uid, section=section)
            continue

        raw = _raw_payload(part)
        encoding = str(part.get("Content-Transfer-Encoding", "7bit")).strip().lower()
        attachment = Attachment(
            id=f"{message_uid}:{section}",
            filename=filename,
            size=len(raw),
            content_type=part.get_content_type(),
            transfer_encoding=encoding,
        )

        if attachment.extension in accepted_extensions:
            if encoding not in IDENTITY_ENCODINGS | {"base64", "quoted-printable"}:
                log.warning(
                    "unknown_transfer_encoding",
                    uid=message_uid,
                    filename=filename,
                    encoding=encoding,
                )
            try:
                attachment.content = decode_transfer_encoding(raw, encoding)
                attachment.size = len(attachment.content)
            except AttachmentDecodeError as exc:
                attachment.decode_error = exc
                log.warning(
                    "attachment_decode_failed",
                    uid=message_uid,
                    filename=filename,
                    encoding=encoding,
                    error=str(exc),
                )

        attachments.append(attachment)

    return attachments


def parse_message(
    raw_bytes: bytes,
    *,
    message_id: str,
    uid: str,
    provider: str,
    is_read: bool,
    accepted_extensions: Collection[str],
    logger: structlog.stdlib.BoundLogger | None = None,
) -> Message:
    """Build a :class:`Message` from raw RFC 822 bytes."""
    msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

    _, sender = email.utils.parseaddr(str(msg.get("From", "")))
    recipients = [
        addr for _, addr in email.utils.getaddresses([str(msg.get("To", ""))]) if addr
    ]

    return Message(
        id=message_id,
        uid=uid,
        provider=provider,
        sender=sender,
        recipients=recipients,
        subject=str(msg.get("Subject", "")),
        sent_at=_parse_date(msg.get("Date")),
        attachments=extract_attachments(
            msg,
            message_uid=uid,
            accepted_extensions=accepted_extensions,
            logger=logger,
        ),
        is_read=is_read,
    )


def _parse_date(value: object) -> datetime | None:
    if not value:
        return None
    try:
        return email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None
