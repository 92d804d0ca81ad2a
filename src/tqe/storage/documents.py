# src/tqe/storage/documents.py
from __future__ import annotations

import json
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from tqe.logging import get_logger

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class DocumentStore:
    """
    Atomic read / write of the small JSON documents the engine persists.

    Notes:
    - Every write goes to a uniquely named temp file in the target's directory and is
      then renamed over the target (os.replace), so readers see the old or the new
      document, never a partial one.
    - Reads never raise: missing, unreadable or malformed documents come back as None
      and the caller picks the fallback.
    - This is the only place that touches document and log files on disk.
    """
    fsync: bool = True

    def read_document(self, path: Path) -> Optional[Any]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            _LOG.warning("Cannot read %s: %s", path, e)
            return None
        try:
            return json.loads(raw)
        except ValueError:
            _LOG.warning("Malformed JSON document at %s", path)
            return None

    def write_document_atomic(self, path: Path, value: Any) -> None:
        self.write_text_atomic(path, json.dumps(value, indent=2, ensure_ascii=False) + "\n")

    def write_text_atomic(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp.{os.getpid()}.{secrets.token_hex(4)}")
        try:
            with tmp.open("w", encoding="utf-8") as fh:
                fh.write(text)
                if self.fsync:
                    fh.flush()
                    os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def exists(self, path: Path) -> bool:
        return path.exists()

    def ensure_dir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def list_dirs(self, path: Path) -> list[Path]:
        if not path.is_dir():
            return []
        return sorted(p for p in path.iterdir() if p.is_dir() and not p.name.startswith("."))

    def list_files(self, path: Path) -> list[Path]:
        """Regular files, sorted by name. Hidden entries (including in-flight temp files) are skipped."""
        if not path.is_dir():
            return []
        return sorted(p for p in path.iterdir() if p.is_file() and not p.name.startswith("."))

    def quarantine(self, path: Path, suffix: str) -> Optional[Path]:
        """
        Moves a corrupt document aside (<name>.corrupt-<suffix>) so it can be inspected.
        Returns the new path, or None if the document vanished in the meantime.
        """
        target = path.with_name(f"{path.name}.corrupt-{suffix}")
        try:
            os.replace(path, target)
        except FileNotFoundError:
            return None
        return target
