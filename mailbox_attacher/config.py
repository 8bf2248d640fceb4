"""Attacher configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Provider entries are passed as a JSON list in ``ATTACHER_PROVIDERS``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class RetryConfig(BaseSettings):
    """Retry / backoff settings for fetch and mark-read calls."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, ge=1, description="Maximum attempts per operation")
    interval_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Initial backoff interval; doubles after every failed attempt",
    )
    max_interval_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Upper bound for a single backoff interval",
    )


class LoggingConfig(BaseSettings):
    """Log output settings."""

    model_config = {"env_prefix": "LOG_"}

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=True, description="Emit JSON lines instead of console output")
    file: Path | None = Field(default=None, description="Optional file that also receives JSON logs")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in _LOG_LEVELS:
            raise ValueError(f"unsupported log level {value!r}")
        return level


class ProviderConfig(BaseModel):
    """One mailbox to poll.

    ``address`` is the IMAP server, either ``host`` or ``host:port``.
    """

    type: str = Field(description="Provider tag (qq, netease, gmail, outlook)")
    address: str = Field(min_length=1, description="IMAP server host or host:port")
    username: str = Field(min_length=1, description="IMAP login username")
    password: SecretStr = Field(description="IMAP password or app authorization code")
    port: int | None = Field(default=None, ge=1, le=65535, description="IMAP port override")
    use_ssl: bool = Field(default=True, description="Connect with implicit TLS")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")
    search_keywords: list[str] = Field(
        default_factory=list,
        description="Only match unseen messages whose body contains one of these terms",
    )

    @field_validator("type")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        from .factory import supported_providers

        tag = value.strip().lower()
        supported = supported_providers()
        if tag not in supported:
            raise ValueError(f"unsupported provider {value!r} (supported: {', '.join(supported)})")
        return tag

    @property
    def host(self) -> str:
        host, _, _ = self.address.partition(":")
        return host

    @property
    def resolved_port(self) -> int:
        _, sep, port = self.address.partition(":")
        if sep and port:
            return int(port)
        if self.port is not None:
            return self.port
        return 993 if self.use_ssl else 143

    @field_validator("address")
    @classmethod
    def _valid_address(cls, value: str) -> str:
        host, sep, port = value.strip().partition(":")
        if not host:
            raise ValueError("address must include a host")
        if sep and not (port.isdigit() and 1 <= int(port) <= 65535):
            raise ValueError(f"invalid port in address {value!r}")
        return value.strip()


class AttacherConfig(BaseSettings):
    """Root configuration for an attacher instance.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "ATTACHER_"}

    poll_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between poll cycles",
    )
    attachment_dir: Path = Field(description="Root directory for saved attachments")
    processed_path: Path = Field(description="JSON file recording processed message ids")
    providers: list[ProviderConfig] = Field(
        min_length=1,
        description="Mailboxes to poll, in processing order",
    )
    accepted_extensions: list[str] = Field(
        default_factory=lambda: [".pdf"],
        description="Attachment extensions whose content is downloaded",
    )
    queue_size: int = Field(default=100, ge=1, description="Capacity of the downstream work queue")
    health_port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="Port for health endpoints (0 disables the server)",
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("accepted_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        normalized = []
        for ext in value:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("at least one accepted extension is required")
        return normalized

    @model_validator(mode="after")
    def _unique_providers(self) -> AttacherConfig:
        seen: set[tuple[str, str, str, str]] = set()
        for idx, provider in enumerate(self.providers, start=1):
            key = (provider.type, provider.address, provider.username, provider.mailbox)
            if key in seen:
                raise ValueError(f"provider #{idx} duplicates an earlier entry ({provider.type})")
            seen.add(key)
        return self
