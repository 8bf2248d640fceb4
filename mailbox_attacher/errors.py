"""Exception hierarchy for the attachment pipeline."""

from __future__ import annotations


class AttacherError(Exception):
    """Base class for all errors raised by mailbox_attacher."""


class UnsupportedProviderError(AttacherError):
    """No mailbox client is registered for the requested provider tag."""

    def __init__(self, provider: str, supported: list[str]) -> None:
        self.provider = provider
        self.supported = supported
        super().__init__(
            f"Unsupported provider {provider!r} (supported: {', '.join(supported) or 'none'})"
        )


class MailboxConnectionError(AttacherError):
    """Connecting or authenticating to the mail server failed."""


class MailboxProtocolError(AttacherError):
    """The server answered an IMAP command with a non-OK status."""


class AttachmentDecodeError(AttacherError):
    """A MIME part could not be decoded with its transfer encoding."""


class AttachmentContentMissingError(AttacherError):
    """An accepted attachment has no decoded content to write."""


class ProcessedStoreError(AttacherError):
    """The processed-set file could not be read or written."""


class RetryCancelledError(AttacherError):
    """A retried operation was abandoned because cancellation was requested."""
