"""MailboxClient: the ABC that every provider client must implement."""

from __future__ import annotations

import abc
from pathlib import Path

from .config import ProviderConfig
from .models import Attachment, Message


class MailboxClient(abc.ABC):
    """Capability interface over one provider's IMAP dialect.

    A client connects and authenticates in :meth:`init`, lists unread
    messages with their attachment metadata (and decoded content for
    accepted types), writes attachment bytes, and acknowledges messages by
    setting their read flag.  The poller only ever talks to this interface,
    so adding a provider never touches the poller.
    """

    #: Provider tag this client is registered under (e.g. ``"qq"``).
    provider: str = ""

    @abc.abstractmethod
    async def init(self, config: ProviderConfig) -> None:
        """Connect and authenticate.  Raises on exhausted connection retries."""

    @abc.abstractmethod
    async def list_unread_messages(self) -> list[Message]:
        """Return unread messages in the order the server reports them."""

    @abc.abstractmethod
    async def save_attachment(self, attachment: Attachment, destination_dir: Path) -> Path | None:
        """Write *attachment* into *destination_dir*.

        Returns the written path, or ``None`` when the attachment's type is
        not accepted (a no-op, not an error).  Raises when an accepted
        attachment has no content.
        """

    @abc.abstractmethod
    async def mark_read(self, message_id: str) -> None:
        """Set the read flag on *message_id*.  Idempotent."""

    def take_fetch_errors(self) -> list[Exception]:
        """Return and clear the per-message failures of the last listing.

        A message that could not be fetched is left out of
        :meth:`list_unread_messages`; its error is kept here so the poller
        can report it.  The default has none.
        """
        return []

    async def close(self) -> None:
        """Release the connection.  The default does nothing."""

    def get_provider(self) -> str:
        return self.provider
