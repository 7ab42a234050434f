"""4chan API client – rate-limited, conditional-GET fetcher."""

from __future__ import annotations

import asyncio
import time
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from enum import Enum
from typing import Any

import httpx

from .config import FourChanConfig
from .models import MediaInfo

logger = logging.getLogger("archiver.api")


class FetchStatus(Enum):
    OK = "ok"
    NOT_MODIFIED = "not_modified"
    ERROR = "error"


@dataclass(frozen=True)
class FetchResult:
    status: FetchStatus
    body: Any = None
    last_modified: int | None = None
    status_code: int | None = None
    error: str | None = None


class RateLimiter:
    """Grants request permits in FIFO order, at least ``interval`` seconds apart.

    One instance is shared by every caller of a FourChanAPI, so the spacing
    holds across boards, threads and media downloads alike.  Waiters on an
    asyncio.Lock are woken in the order they queued.
    """

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self.granted = 0
        self._lock = asyncio.Lock()
        self._last_grant: float | None = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_grant is not None:
                wait = self.interval - (time.monotonic() - self._last_grant)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_grant = time.monotonic()
            self.granted += 1


def _http_date(ts: int) -> str:
    return formatdate(ts, usegmt=True)


def _parse_last_modified(resp: httpx.Response) -> int | None:
    raw = resp.headers.get("Last-Modified")
    if not raw:
        return None
    try:
        return int(parsedate_to_datetime(raw).timestamp())
    except (TypeError, ValueError):
        logger.debug("Unparseable Last-Modified header: %r", raw)
        return None


def _newest_post_time(body: Any) -> int | None:
    if not isinstance(body, dict) or not isinstance(body.get("posts"), list):
        return None
    times = [
        p["time"] for p in body["posts"]
        if isinstance(p, dict) and type(p.get("time")) is int
    ]
    return max(times) if times else None


class FourChanAPI:
    """Thin async wrapper around the 4chan JSON API with rate limiting."""

    def __init__(
        self,
        cfg: FourChanConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cfg = cfg or FourChanConfig()
        self.limiter = RateLimiter(self.cfg.request_delay)
        self._client = httpx.AsyncClient(
            timeout=self.cfg.timeout,
            headers={"User-Agent": self.cfg.user_agent},
            follow_redirects=True,
            transport=transport,
        )

    # ── fetching ─────────────────────────────────────────────────

    async def fetch(self, url: str, since: int | None = None) -> FetchResult:
        """GET a JSON resource, optionally only if changed since ``since``.

        Network failures and unexpected status codes come back as
        FetchStatus.ERROR; nothing is raised.
        """
        headers = {"If-Modified-Since": _http_date(since)} if since is not None else {}
        await self.limiter.acquire()
        try:
            resp = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Request failed for %s: %s", url, exc)
            return FetchResult(FetchStatus.ERROR, error=str(exc) or type(exc).__name__)

        if resp.status_code == 304:
            return FetchResult(
                FetchStatus.NOT_MODIFIED,
                last_modified=_parse_last_modified(resp) or since,
                status_code=304,
            )
        if resp.status_code != 200:
            logger.warning("HTTP %d: %s", resp.status_code, url)
            return FetchResult(
                FetchStatus.ERROR,
                status_code=resp.status_code,
                error=f"HTTP {resp.status_code}",
            )
        try:
            body = resp.json()
        except ValueError as exc:
            logger.warning("Invalid JSON from %s: %s", url, exc)
            return FetchResult(FetchStatus.ERROR, status_code=200, error=f"invalid JSON: {exc}")

        last_modified = _parse_last_modified(resp) or _newest_post_time(body) or since
        return FetchResult(FetchStatus.OK, body=body, last_modified=last_modified, status_code=200)

    @asynccontextmanager
    async def stream(self, url: str) -> AsyncIterator[httpx.Response]:
        """Stream a binary resource once the rate limiter grants a permit."""
        await self.limiter.acquire()
        async with self._client.stream("GET", url) as resp:
            yield resp

    # ── public API ───────────────────────────────────────────────

    async def get_boards(self) -> list[dict]:
        """Fetch all boards from boards.json."""
        result = await self.fetch(f"{self.cfg.api_base}/boards.json")
        if result.status is not FetchStatus.OK or not isinstance(result.body, dict):
            return []
        return [b for b in result.body.get("boards", []) if isinstance(b, dict) and "board" in b]

    async def get_catalog(self, board: str) -> list[dict]:
        """Fetch the catalog for a board (pages with threads)."""
        result = await self.fetch(f"{self.cfg.api_base}/{board}/catalog.json")
        if result.status is not FetchStatus.OK or not isinstance(result.body, list):
            return []
        return result.body

    async def get_thread(self, board: str, thread_no: int, since: int | None = None) -> FetchResult:
        """Fetch a full thread (OP + all replies), conditionally if ``since`` is set."""
        return await self.fetch(f"{self.cfg.api_base}/{board}/thread/{thread_no}.json", since)

    def media_url(self, board: str, media: MediaInfo) -> str:
        return f"{self.cfg.media_base}/{board}/{media.remote_id}{media.ext}"

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FourChanAPI:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
