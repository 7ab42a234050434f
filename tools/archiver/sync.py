"""Thread sync engine – conditional polling, snapshots and deduplicated media.

Each watched thread moves NEW -> SYNCED on its first successful fetch and
then stays SYNCED, polled every ``interval`` seconds:

  * changed   – snapshot rewritten, new media fetched, interval reset to base
  * unchanged – interval doubled, up to ``max_interval``; a thread that
                answers 404 (pruned or archived) is treated the same way
  * error     – logged, interval kept
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from .api import FetchStatus, FourChanAPI
from .config import WatchConfig
from .db import Database
from .media import MediaFetcher
from .models import MalformedResponse, MediaInfo, MediaKey, Post, ThreadSummary, WatchState, parse_posts
from .render import render_thread
from .storage import ThreadStorage, sanitize_title

logger = logging.getLogger("archiver.sync")


class SyncOutcome(Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    ERROR = "error"


def next_interval(current: float, outcome: SyncOutcome, base: float, cap: float) -> float:
    if outcome is SyncOutcome.CHANGED:
        return base
    if outcome is SyncOutcome.UNCHANGED:
        return min(current * 2, cap)
    return current


class ThreadSyncEngine:
    """Owns the watch registry and performs sync cycles for watched threads."""

    def __init__(
        self,
        api: FourChanAPI,
        db: Database,
        storage: ThreadStorage,
        fetcher: MediaFetcher | None = None,
        cfg: WatchConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.api = api
        self.db = db
        self.storage = storage
        self.fetcher = fetcher or MediaFetcher(api)
        self.cfg = cfg or WatchConfig()
        self._sleep = sleep
        self._states: dict[tuple[str, int], WatchState] = {}
        # Media keys claimed by a running download; checked together with the
        # store so two cycles never fetch the same file at once.
        self._inflight: set[MediaKey] = set()
        self.stats = {"threads": 0, "posts": 0, "media": 0, "skipped": 0, "errors": 0}

    # ── registry ─────────────────────────────────────────────────

    @property
    def watched(self) -> list[tuple[str, int]]:
        return list(self._states)

    def state(self, key: tuple[str, int]) -> WatchState:
        return self._states[key]

    def watch(self, summary: ThreadSummary) -> bool:
        """Add a thread to the watch set.  Returns False if already watched."""
        if summary.key in self._states:
            return False
        self._states[summary.key] = WatchState(summary=summary, interval=self.cfg.base_interval)
        logger.info("Watching /%s/%d %s", summary.board, summary.no, summary.subject or "")
        return True

    # ── sync cycle ───────────────────────────────────────────────

    async def sync_once(self, key: tuple[str, int]) -> SyncOutcome:
        """Run one fetch cycle for a watched thread and update its backoff."""
        state = self._states[key]
        outcome = await self._poll(state)
        state.polls += 1
        state.interval = next_interval(
            state.interval, outcome, self.cfg.base_interval, self.cfg.max_interval
        )
        logger.debug(
            "/%s/%d %s, next poll in %.0fs", key[0], key[1], outcome.value, state.interval
        )
        return outcome

    async def run_watch(self, key: tuple[str, int]) -> None:
        """Poll one thread until the task is cancelled."""
        while True:
            try:
                await self.sync_once(key)
            except Exception:
                logger.exception("Unexpected error while syncing /%s/%d", *key)
                self.stats["errors"] += 1
            await self._sleep(self._states[key].interval)

    def _conditional_since(self, state: WatchState) -> int | None:
        if state.last_modified is not None:
            return state.last_modified
        board, no = state.key
        if self.db.thread_exists(board, no):
            return self.db.get_thread_last_modified(board, no)
        return None

    async def _poll(self, state: WatchState) -> SyncOutcome:
        board, no = state.key
        since = self._conditional_since(state)
        result = await self.api.get_thread(board, no, since)

        if result.status is FetchStatus.NOT_MODIFIED:
            state.last_modified = result.last_modified or since
            logger.debug("/%s/%d unchanged", board, no)
            return SyncOutcome.UNCHANGED
        if result.status is FetchStatus.ERROR and result.status_code == 404:
            # Pruned or archived.
            state.gone = True
            logger.info("/%s/%d is gone (404)", board, no)
            return SyncOutcome.UNCHANGED
        if result.status is FetchStatus.ERROR:
            logger.warning("Poll of /%s/%d failed: %s", board, no, result.error)
            self.stats["errors"] += 1
            return SyncOutcome.ERROR

        try:
            raw, posts = parse_posts(result.body)
        except MalformedResponse as exc:
            logger.error("Malformed thread /%s/%d: %s", board, no, exc)
            self.stats["errors"] += 1
            return SyncOutcome.ERROR

        subject = state.summary.subject if state.summary.subject is not None else posts[0].subject
        try:
            directory = state.directory or self.storage.thread_dir(board, no, subject)
            self.storage.write_snapshot(directory, raw, render_thread(posts, board))
        except OSError as exc:
            logger.error("Could not write snapshot for /%s/%d: %s", board, no, exc)
            self.stats["errors"] += 1
            return SyncOutcome.ERROR
        state.directory = directory

        if self.cfg.download_media:
            await self.fetch_media(board, no, directory, posts)

        try:
            self.db.remember_thread(
                board, no, title=sanitize_title(subject), last_modified=result.last_modified
            )
        except sqlite3.Error as exc:
            logger.error("Could not record /%s/%d: %s", board, no, exc)
            self.stats["errors"] += 1
            return SyncOutcome.ERROR

        if not state.synced:
            self.stats["threads"] += 1
        state.synced = True
        state.gone = False
        state.last_modified = result.last_modified
        self.stats["posts"] += len(posts)
        logger.info("Synced /%s/%d (%d posts)", board, no, len(posts))
        return SyncOutcome.CHANGED

    # ── media ────────────────────────────────────────────────────

    async def fetch_media(self, board: str, thread_no: int, directory: Path, posts: list[Post]) -> int:
        """Download every attachment not yet captured.  Returns the number saved."""
        jobs = []
        for post in posts:
            if post.media is None:
                continue
            key = MediaKey(board, thread_no, post.no, post.media.filename, post.media.ext)
            if key in self._inflight or self.db.media_exists(key):
                self.stats["skipped"] += 1
                continue
            self._inflight.add(key)
            jobs.append(self._capture(key, post.media, directory))
        if not jobs:
            return 0
        results = await asyncio.gather(*jobs)
        return sum(results)

    async def _capture(self, key: MediaKey, media: MediaInfo, directory: Path) -> bool:
        try:
            dest = self.storage.media_path(directory, media)
            if dest.exists():
                logger.debug("Recording %s already on disk", dest)
                saved = True
            else:
                saved = await self.fetcher.download(self.api.media_url(key.board, media), dest)
            if not saved:
                self.stats["errors"] += 1
                return False
            self.db.remember_media(key)
            self.stats["media"] += 1
            return True
        except (OSError, sqlite3.Error) as exc:
            logger.error("Could not capture %s: %s", media.original_name, exc)
            self.stats["errors"] += 1
            return False
        finally:
            self._inflight.discard(key)
