"""Client factory: maps provider tags to mailbox client classes."""

from __future__ import annotations

from collections.abc import Callable, Collection
from typing import TypeVar

import structlog

from .errors import UnsupportedProviderError
from .interface import MailboxClient

logger = structlog.get_logger()

C = TypeVar("C", bound=type[MailboxClient])


class ClientRegistry:
    """Registry of mailbox client classes, keyed by lowercase provider tag."""

    def __init__(self) -> None:
        self._clients: dict[str, type[MailboxClient]] = {}

    def register(self, tag: str, client_cls: type[MailboxClient]) -> None:
        """Register *client_cls* under *tag*, replacing any earlier entry."""
        key = tag.strip().lower()
        if not key:
            raise ValueError("provider tag must not be empty")
        self._clients[key] = client_cls
        logger.debug("mailbox_client_registered", provider=key, client=client_cls.__name__)

    def get(self, tag: str) -> type[MailboxClient] | None:
        return self._clients.get(tag.strip().lower())

    @property
    def supported_providers(self) -> list[str]:
        return sorted(self._clients)


registry = ClientRegistry()


def register_provider(tag: str) -> Callable[[C], C]:
    """Class decorator that registers a client class under *tag*.

    The class's ``provider`` attribute is set to the tag so that clients
    report the name they were registered under.
    """

    def decorator(client_cls: C) -> C:
        client_cls.provider = tag.strip().lower()
        registry.register(tag, client_cls)
        return client_cls

    return decorator


def _load_builtin_providers() -> None:
    from . import providers  # noqa: F401


def supported_providers() -> list[str]:
    """Sorted list of provider tags that can be created."""
    _load_builtin_providers()
    return registry.supported_providers


def create_client(
    provider: str,
    *,
    accepted_extensions: Collection[str] = (".pdf",),
    logger: structlog.stdlib.BoundLogger | None = None,
) -> MailboxClient:
    """Instantiate an uninitialized client for *provider*.

    Raises :class:`UnsupportedProviderError` for unknown tags.  The caller
    is responsible for awaiting ``client.init(config)``.
    """
    _load_builtin_providers()
    client_cls = registry.get(provider)
    if client_cls is None:
        raise UnsupportedProviderError(provider, registry.supported_providers)
    return client_cls(accepted_extensions=accepted_extensions, logger=logger)
