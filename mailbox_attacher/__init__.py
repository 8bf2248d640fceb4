"""Mailbox attachment ingestion.

Public API re-exported here for convenience::

    from mailbox_attacher import AttacherConfig, Poller, create_client
"""

from .backpressure import FlowGate, QueueConsumer
from .config import AttacherConfig, LoggingConfig, ProviderConfig, RetryConfig
from .errors import (
    AttacherError,
    AttachmentContentMissingError,
    AttachmentDecodeError,
    MailboxConnectionError,
    MailboxProtocolError,
    ProcessedStoreError,
    RetryCancelledError,
    UnsupportedProviderError,
)
from .factory import create_client, register_provider, supported_providers
from .health import create_health_app
from .imap_client import ImapMailboxClient
from .interface import MailboxClient
from .logging import setup_logging, teardown_logging
from .models import Attachment, HealthStatus, Message, PollerState
from .poller import FailedRegistration, Poller
from .processed import ProcessedStore
from .retry import retry_call, retry_with_config
from .service import AttacherService
from .storage import AttachmentStore

__all__ = [
    "AttacherConfig",
    "AttacherError",
    "AttacherService",
    "Attachment",
    "AttachmentContentMissingError",
    "AttachmentDecodeError",
    "AttachmentStore",
    "FailedRegistration",
    "FlowGate",
    "HealthStatus",
    "ImapMailboxClient",
    "LoggingConfig",
    "MailboxClient",
    "MailboxConnectionError",
    "MailboxProtocolError",
    "Message",
    "Poller",
    "PollerState",
    "ProcessedStore",
    "ProcessedStoreError",
    "ProviderConfig",
    "QueueConsumer",
    "RetryCancelledError",
    "RetryConfig",
    "UnsupportedProviderError",
    "create_client",
    "create_health_app",
    "register_provider",
    "retry_call",
    "retry_with_config",
    "setup_logging",
    "supported_providers",
    "teardown_logging",
]
