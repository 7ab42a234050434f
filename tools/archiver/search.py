"""Catalog search – find threads whose subject or body mention a keyword."""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Iterable
from typing import Any

from .api import FourChanAPI
from .models import ThreadSummary

logger = logging.getLogger("archiver.search")

_STRIP_RE = re.compile(r"[^a-z0-9\s]")


def normalize_text(text: str | None) -> str:
    """Lowercase, drop diacritics and every character that is not [a-z0-9] or whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _STRIP_RE.sub("", without_marks)


def thread_matches(thread: dict[str, Any], needle: str | None) -> bool:
    """Match a catalog entry against an already-normalized keyword.

    ``needle=None`` matches every thread (download-all mode).  Threads with
    no last_modified marker never match.
    """
    if not thread.get("last_modified"):
        return False
    if needle is None:
        return True
    return needle in normalize_text(thread.get("sub")) or needle in normalize_text(thread.get("com"))


class CatalogSearch:
    def __init__(self, api: FourChanAPI) -> None:
        self.api = api

    async def search(self, board: str, keyword: str | None) -> list[ThreadSummary]:
        """Return the threads of ``board`` matching ``keyword``, in catalog order."""
        return await self.search_board(board, [keyword])

    async def search_board(self, board: str, keywords: Iterable[str | None]) -> list[ThreadSummary]:
        """Fetch one catalog and return threads matching any of ``keywords``.

        Keywords that normalize to nothing would match every thread, so they
        are skipped with a warning.
        """
        needles: list[str | None] = []
        for keyword in keywords:
            if keyword is None:
                needles.append(None)
                continue
            needle = normalize_text(keyword)
            if not needle:
                logger.warning("Ignoring keyword %r: nothing left to match after normalization", keyword)
                continue
            needles.append(needle)
        if not needles:
            return []
        catalog = await self.api.get_catalog(board)
        matches: list[ThreadSummary] = []
        for page in catalog:
            if not isinstance(page, dict):
                continue
            for thread in page.get("threads", []):
                if not any(thread_matches(thread, needle) for needle in needles):
                    continue
                try:
                    matches.append(ThreadSummary.from_catalog(board, thread))
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Skipping malformed catalog entry on /%s/: %s", board, exc)
        logger.debug("/%s/: %d matching thread(s)", board, len(matches))
        return matches

    async def search_all(
        self, boards: Iterable[str], keywords: Iterable[str | None]
    ) -> list[ThreadSummary]:
        """Search every board for every keyword; each thread appears once."""
        keywords = list(keywords)
        seen: set[tuple[str, int]] = set()
        results: list[ThreadSummary] = []
        for board in boards:
            for summary in await self.search_board(board, keywords):
                if summary.key not in seen:
                    seen.add(summary.key)
                    results.append(summary)
        return results
