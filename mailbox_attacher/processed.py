"""Disk-backed set of message ids that have been fully handled.

The file is a JSON object mapping each id to ``true``.  Every insertion
rewrites the whole file through a temporary sibling and ``os.replace()``,
so a crash leaves either the old or the new set on disk, never a torn one.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import structlog

from .errors import ProcessedStoreError
from .logging import component_logger


class ProcessedStore:
    """Append-only set of processed message ids.

    Membership tests are lock-free; insertions hold a lock across the
    in-memory update and the flush to disk.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._path = Path(path)
        self._logger = component_logger("processed_store", logger).bind(path=str(self._path))
        self._lock = threading.Lock()
        self._ids: frozenset[str] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> frozenset[str]:
        if not self._path.exists():
            self._logger.info("processed_store_created")
            self._write(frozenset())
            return frozenset()

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ProcessedStoreError(f"cannot read {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ProcessedStoreError(f"{self._path} does not contain a JSON object")

        ids = frozenset(key for key, value in data.items() if value)
        self._logger.info("processed_store_loaded", count=len(ids))
        return ids

    def _write(self, ids: frozenset[str]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps({key: True for key in sorted(ids)}, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp, self._path)
        except OSError as exc:
            raise ProcessedStoreError(f"cannot write {self._path}: {exc}") from exc

    def is_processed(self, message_id: str) -> bool:
        return message_id in self._ids

    def mark_processed(self, message_id: str) -> None:
        """Add *message_id* and persist the whole set.

        On a write failure the id stays in memory and
        :class:`ProcessedStoreError` is raised.
        """
        with self._lock:
            if message_id in self._ids:
                return
            self._ids = self._ids | {message_id}
            self._write(self._ids)
        self._logger.debug("message_marked_processed", message_id=message_id)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
