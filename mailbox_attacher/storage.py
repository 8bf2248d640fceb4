"""Attachment store: resolves save paths and delegates writes to the client.

Directory creation runs via ``asyncio.to_thread()``; the byte transfer
itself belongs to the mailbox client that fetched the attachment.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from .logging import component_logger
from .models import Attachment, Message

if TYPE_CHECKING:
    from .interface import MailboxClient


def sanitize_filename(name: str) -> str:
    """Replace characters unsafe for a single path component."""
    safe = re.sub(r"[^\w.\-]", "_", name).strip()
    if safe in ("", ".", ".."):
        return "unnamed"
    return safe


def storage_filename(attachment: Attachment) -> str:
    """File name to write *attachment* under inside its message directory."""
    return attachment.storage_name or sanitize_filename(attachment.filename)


def assign_storage_names(attachments: Iterable[Attachment]) -> None:
    """Give every attachment a file name that is unique within its message.

    The first attachment keeps its sanitized name; a later one whose name
    is already taken gets its MIME section appended to the stem, so a
    re-parsed message maps to the same files again.
    """
    taken: set[str] = set()
    for attachment in attachments:
        name = sanitize_filename(attachment.filename)
        if name in taken:
            stem, dot, ext = name.rpartition(".")
            if not stem:
                stem, dot, ext = name, "", ""
            section = sanitize_filename(attachment.id.rpartition(":")[2])
            candidate = f"{stem}_{section}{dot}{ext}"
            counter = 1
            while candidate in taken:
                counter += 1
                candidate = f"{stem}_{section}_{counter}{dot}{ext}"
            name = candidate
        taken.add(name)
        attachment.storage_name = name


class AttachmentStore:
    """Lays out saved attachments under ``<root>/<provider>/<message id>/``."""

    def __init__(
        self,
        root: str | Path,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._root = Path(root)
        self._logger = component_logger("attachment_store", logger)

    @property
    def root(self) -> Path:
        return self._root

    def resolve_dir(self, provider: str, message: Message) -> Path:
        return self._root / sanitize_filename(provider) / sanitize_filename(message.id)

    async def save(
        self,
        client: MailboxClient,
        attachment: Attachment,
        save_dir: Path,
    ) -> Path | None:
        """Write *attachment* into *save_dir* through *client*.

        Returns the written path, or ``None`` when the client skipped the
        attachment.  Errors from the client propagate unchanged.
        """
        await asyncio.to_thread(save_dir.mkdir, parents=True, exist_ok=True)
        path = await client.save_attachment(attachment, save_dir)
        if path is not None:
            self._logger.debug(
                "attachment_written",
                provider=client.get_provider(),
                filename=attachment.filename,
                path=str(path),
            )
        return path
