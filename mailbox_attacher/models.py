"""Data models for the attachment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


@dataclass
class Attachment:
    """A single attachment located in a message's MIME structure.

    ``content`` holds the decoded bytes and is only populated for accepted
    extensions.  When decoding fails, ``content`` stays ``None`` and
    ``decode_error`` carries the reason.

    ``storage_name`` is the on-disk file name, unique within the message;
    it is assigned by the attachment store before saving.
    """

    id: str
    filename: str
    size: int
    content_type: str = "application/octet-stream"
    transfer_encoding: str = "7bit"
    url: str | None = None
    content: bytes | None = None
    decode_error: Exception | None = field(default=None, repr=False)
    storage_name: str = ""

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return f".{ext.lower()}" if dot else ""


@dataclass
class Message:
    """An unread message as observed during one poll cycle.

    ``id`` is the opaque key used for de-duplication; ``uid`` is the
    mailbox-native UID used for IMAP commands.
    """

    id: str
    uid: str
    provider: str
    sender: str = ""
    recipients: list[str] = field(default_factory=list)
    subject: str = ""
    sent_at: datetime | None = None
    attachments: list[Attachment] = field(default_factory=list)
    is_read: bool = False


class PollerState(str, Enum):
    """Runtime state of a :class:`~mailbox_attacher.poller.Poller`."""

    CREATED = "created"
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    service: str = Field(default="mailbox-attacher", description="Service name")
    state: PollerState = Field(description="Current poller state")
    uptime_seconds: float = Field(description="Seconds since the service started")
    providers: list[str] = Field(description="Provider tags with an active client")
    failed_providers: list[str] = Field(
        default_factory=list,
        description="Provider tags whose registration failed at startup",
    )
    last_poll_time: datetime | None = Field(
        default=None,
        description="Completion time of the most recent poll cycle (UTC)",
    )
    cycles_completed: int = Field(default=0, description="Poll cycles completed")
    attachments_saved: int = Field(default=0, description="Attachments saved and reported")
    processed_messages: int = Field(default=0, description="Size of the processed set")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Flow-control details (queue depth, paused flag)",
    )
