"""Tests for mailbox_attacher.config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import SecretStr, ValidationError

from mailbox_attacher.config import AttacherConfig, LoggingConfig, ProviderConfig, RetryConfig


def _provider(**overrides) -> dict:
    entry = {"type": "qq", "address": "imap.qq.com", "username": "u@qq.com", "password": "p"}
    entry.update(overrides)
    return entry


class TestProviderConfig:
    def test_defaults(self):
        cfg = ProviderConfig(**_provider())
        assert cfg.host == "imap.qq.com"
        assert cfg.resolved_port == 993
        assert cfg.mailbox == "INBOX"
        assert cfg.search_keywords == []

    def test_port_in_address(self):
        cfg = ProviderConfig(**_provider(address="imap.163.com:994"))
        assert cfg.host == "imap.163.com"
        assert cfg.resolved_port == 994

    def test_plain_imap_default_port(self):
        cfg = ProviderConfig(**_provider(use_ssl=False))
        assert cfg.resolved_port == 143

    def test_explicit_port_field(self):
        cfg = ProviderConfig(**_provider(port=1993))
        assert cfg.resolved_port == 1993

    def test_type_normalized(self):
        assert ProviderConfig(**_provider(type=" NetEase ")).type == "netease"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError, match="unsupported provider"):
            ProviderConfig(**_provider(type="yahoo"))

    @pytest.mark.parametrize("address", ["", ":993", "imap.qq.com:abc", "imap.qq.com:70000"])
    def test_bad_address_rejected(self, address):
        with pytest.raises(ValidationError):
            ProviderConfig(**_provider(address=address))

    def test_password_is_secret(self):
        cfg = ProviderConfig(**_provider(password="hunter2"))
        assert isinstance(cfg.password, SecretStr)
        assert "hunter2" not in repr(cfg)


class TestRetryConfig:
    def test_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_attempts == 3
        assert cfg.interval_seconds == 5.0
        assert cfg.max_interval_seconds == 60.0

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "7")
        assert RetryConfig().max_attempts == 7


class TestLoggingConfig:
    def test_warn_alias(self):
        assert LoggingConfig(level="warn").level == "WARNING"

    def test_unknown_level_rejected(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="chatty")


class TestAttacherConfig:
    def test_defaults(self, tmp_path: Path):
        cfg = AttacherConfig(
            attachment_dir=tmp_path,
            processed_path=tmp_path / "p.json",
            providers=[_provider()],
        )
        assert cfg.poll_interval_seconds == 60.0
        assert cfg.accepted_extensions == [".pdf"]
        assert cfg.queue_size == 100
        assert cfg.health_port == 8080
        assert isinstance(cfg.retry, RetryConfig)

    def test_extensions_normalized(self, tmp_path: Path):
        cfg = AttacherConfig(
            attachment_dir=tmp_path,
            processed_path=tmp_path / "p.json",
            providers=[_provider()],
            accepted_extensions=["PDF", ".Docx", " "],
        )
        assert cfg.accepted_extensions == [".pdf", ".docx"]

    def test_requires_a_provider(self, tmp_path: Path):
        with pytest.raises(ValidationError):
            AttacherConfig(attachment_dir=tmp_path, processed_path=tmp_path / "p.json", providers=[])

    def test_non_positive_interval_rejected(self, tmp_path: Path):
        with pytest.raises(ValidationError):
            AttacherConfig(
                attachment_dir=tmp_path,
                processed_path=tmp_path / "p.json",
                providers=[_provider()],
                poll_interval_seconds=0,
            )

    def test_duplicate_providers_rejected(self, tmp_path: Path):
        with pytest.raises(ValidationError, match="duplicates"):
            AttacherConfig(
                attachment_dir=tmp_path,
                processed_path=tmp_path / "p.json",
                providers=[_provider(), _provider()],
            )

    def test_same_account_different_mailbox_allowed(self, tmp_path: Path):
        cfg = AttacherConfig(
            attachment_dir=tmp_path,
            processed_path=tmp_path / "p.json",
            providers=[_provider(), _provider(mailbox="Resumes")],
        )
        assert len(cfg.providers) == 2

    def test_from_env(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("ATTACHER_ATTACHMENT_DIR", str(tmp_path / "out"))
        monkeypatch.setenv("ATTACHER_PROCESSED_PATH", str(tmp_path / "p.json"))
        monkeypatch.setenv("ATTACHER_PROVIDERS", json.dumps([_provider(type="gmail")]))
        monkeypatch.setenv("ATTACHER_POLL_INTERVAL_SECONDS", "15")
        cfg = AttacherConfig()
        assert cfg.attachment_dir == tmp_path / "out"
        assert cfg.providers[0].type == "gmail"
        assert cfg.poll_interval_seconds == 15
