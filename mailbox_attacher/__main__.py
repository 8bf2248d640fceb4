"""Entry point for the attacher service.

Usage::

    ATTACHER_ATTACHMENT_DIR=./attachments \\
    ATTACHER_PROCESSED_PATH=./processed.json \\
    ATTACHER_PROVIDERS='[{"type": "qq", "address": "imap.qq.com", ...}]' \\
    python -m mailbox_attacher
"""

from __future__ import annotations

import asyncio
import sys

from pydantic import ValidationError

from .config import AttacherConfig
from .errors import AttacherError
from .logging import setup_logging, teardown_logging
from .service import AttacherService


def main() -> None:
    try:
        config = AttacherConfig()
    except ValidationError as exc:
        print(f"Invalid configuration:\n{exc}", file=sys.stderr)
        sys.exit(2)

    setup_logging(
        json=config.logging.json_output,
        level=config.logging.level,
        log_file=config.logging.file,
    )
    try:
        asyncio.run(AttacherService(config).run())
    except AttacherError as exc:
        print(f"mailbox-attacher: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        teardown_logging()


if __name__ == "__main__":
    main()
