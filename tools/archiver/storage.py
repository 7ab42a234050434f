"""Disk layout – per-thread directories, JSON/HTML snapshots, media paths."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from .models import MediaInfo

logger = logging.getLogger("archiver.storage")

_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9\-_]")


def sanitize_title(subject: str | None) -> str:
    return _UNSAFE_RE.sub("_", subject) if subject else ""


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a temp file beside ``path`` and rename it into place.

    Readers see either the previous file or the complete new one.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class ThreadStorage:
    """Filesystem sink rooted at the configured output directory."""

    def __init__(self, output_dir: str | Path) -> None:
        self.root = Path(output_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def folder_name(board: str, thread_no: int, subject: str | None) -> str:
        return f"{board}_{thread_no}_{sanitize_title(subject)}"

    def thread_dir(self, board: str, thread_no: int, subject: str | None) -> Path:
        """Return (creating it if needed) the directory for one thread."""
        path = self.root / self.folder_name(board, thread_no, subject)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def write_snapshot(self, directory: Path, posts: list[dict[str, Any]], html: str) -> tuple[Path, Path]:
        """Write ``<dir>.json`` (pretty-printed posts) and ``<dir>.html``."""
        json_path = directory / f"{directory.name}.json"
        html_path = directory / f"{directory.name}.html"
        atomic_write_text(json_path, json.dumps(posts, indent=2, ensure_ascii=False) + "\n")
        atomic_write_text(html_path, html)
        logger.debug("Wrote snapshot %s", json_path.parent)
        return json_path, html_path

    @staticmethod
    def media_path(directory: Path, media: MediaInfo) -> Path:
        return directory / media.local_name
