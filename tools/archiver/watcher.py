"""Core orchestration – search boards, seed the watch set, run watch tasks."""

from __future__ import annotations

import asyncio
import logging

import httpx

from .api import FourChanAPI
from .config import ArchiverConfig
from .db import Database
from .models import ThreadSummary
from .search import CatalogSearch
from .storage import ThreadStorage
from .sync import SyncOutcome, ThreadSyncEngine

logger = logging.getLogger("archiver.core")


class Archiver:
    """Orchestrates the catalog search → thread sync → disk pipeline."""

    def __init__(
        self,
        cfg: ArchiverConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cfg = cfg or ArchiverConfig()
        # Opening the store and the output directory are the only fatal steps.
        self.db = Database(self.cfg.storage.db_path)
        self.db.connect()
        self.storage = ThreadStorage(self.cfg.storage.output_dir)
        self.api = FourChanAPI(self.cfg.fourchan, transport=transport)
        self.search = CatalogSearch(self.api)
        self.engine = ThreadSyncEngine(self.api, self.db, self.storage, cfg=self.cfg.watch)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def stats(self) -> dict[str, int]:
        return self.engine.stats

    # ── search / seeding ─────────────────────────────────────────

    async def boards(self) -> list[str]:
        """Configured boards, or every board from boards.json when none are set."""
        if self.cfg.watch.boards:
            return list(self.cfg.watch.boards)
        boards = [b["board"] for b in await self.api.get_boards()]
        logger.info("Fetched %d boards", len(boards))
        return boards

    def keywords(self) -> list[str | None]:
        if self.cfg.watch.download_all:
            return [None]
        return list(self.cfg.watch.keywords)

    async def search_and_seed(self) -> int:
        """Run one search pass and start watching new matches.  Returns how many."""
        keywords = self.keywords()
        if not keywords:
            logger.warning("No search keywords configured; nothing to watch")
            return 0
        matches = await self.search.search_all(await self.boards(), keywords)
        added = 0
        for summary in matches:
            if self.engine.watch(summary):
                self._spawn(summary)
                added += 1
        logger.info("Search complete: %d match(es), %d newly watched", len(matches), added)
        return added

    def _spawn(self, summary: ThreadSummary) -> None:
        task = asyncio.create_task(
            self.engine.run_watch(summary.key), name=f"watch-{summary.board}-{summary.no}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Search now and every ``search_interval`` seconds until ``stop`` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.search_and_seed()
            except Exception:
                logger.exception("Search pass failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.cfg.watch.search_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Stopping %d watch task(s)", len(self._tasks))

    # ── single thread ────────────────────────────────────────────

    async def sync_thread(self, board: str, thread_no: int) -> SyncOutcome:
        """Sync one thread once, outside the watch loop."""
        summary = ThreadSummary(board=board, no=thread_no, subject=None, body=None, last_modified=0)
        self.engine.watch(summary)
        outcome = await self.engine.sync_once(summary.key)
        if self.engine.state(summary.key).gone:
            logger.warning("Thread /%s/%d not found", board, thread_no)
            return SyncOutcome.ERROR
        return outcome

    # ── lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.api.close()
        self.db.close()

    async def __aenter__(self) -> Archiver:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
