#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from tqe.config import load_settings
from tqe.logging import configure_logging, get_logger
from tqe.storage import DocumentStore, QueueStore


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    store = DocumentStore()
    QueueStore(store, settings.queue_root).ensure_initialized()
    store.ensure_dir(settings.tasks_root)

    log.info("Queue initialized at %s (tasks under %s)", settings.queue_root, settings.tasks_root)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
