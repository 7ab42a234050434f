from __future__ import annotations

import re
from collections.abc import AsyncIterator
from email.utils import formatdate, parsedate_to_datetime
from typing import Any

import httpx
import pytest

from archiver.config import FourChanConfig, WatchConfig

API_HOST = "a.4cdn.org"
MEDIA_HOST = "i.4cdn.org"

_CATALOG_RE = re.compile(r"/(\w+)/catalog\.json")
_THREAD_RE = re.compile(r"/(\w+)/thread/(\d+)\.json")


class BrokenStream(httpx.AsyncByteStream):
    """Yields one chunk, then fails like a dropped connection."""

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield b"\x89PNG partial"
        raise httpx.ReadError("connection reset by peer")


class FakeChan:
    """In-memory stand-in for the 4chan JSON API and media host."""

    def __init__(self) -> None:
        self.boards: list[dict[str, Any]] = []
        self.catalogs: dict[str, list[dict[str, Any]]] = {}
        self.threads: dict[tuple[str, int], list[dict[str, Any]]] = {}
        self.modified: dict[tuple[str, int], int] = {}
        self.media: dict[str, bytes] = {}
        self.broken_media: set[str] = set()
        self.fail_threads: set[tuple[str, int]] = set()
        self.requests: list[httpx.Request] = []

    # ── setup helpers ────────────────────────────────────────────

    def add_thread(self, board: str, posts: list[dict[str, Any]], *, modified: int = 1_700_000_000) -> None:
        key = (board, posts[0]["no"])
        self.threads[key] = posts
        self.modified[key] = modified
        for post in posts:
            if post.get("tim"):
                self.media[f"/{board}/{post['tim']}{post['ext']}"] = f"media-{post['tim']}".encode()

    def update_thread(self, board: str, posts: list[dict[str, Any]], *, modified: int) -> None:
        self.add_thread(board, posts, modified=modified)

    # ── transport ────────────────────────────────────────────────

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.url.host == MEDIA_HOST:
            if path in self.broken_media:
                return httpx.Response(200, stream=BrokenStream())
            if path in self.media:
                return httpx.Response(200, content=self.media[path])
            return httpx.Response(404)

        if path == "/boards.json":
            return httpx.Response(200, json={"boards": self.boards})
        if m := _CATALOG_RE.fullmatch(path):
            if m.group(1) not in self.catalogs:
                return httpx.Response(404)
            return httpx.Response(200, json=self.catalogs[m.group(1)])
        if m := _THREAD_RE.fullmatch(path):
            key = (m.group(1), int(m.group(2)))
            if key in self.fail_threads:
                return httpx.Response(503)
            if key not in self.threads:
                return httpx.Response(404)
            modified = self.modified[key]
            since = request.headers.get("If-Modified-Since")
            if since and parsedate_to_datetime(since).timestamp() >= modified:
                return httpx.Response(304)
            return httpx.Response(
                200,
                json={"posts": self.threads[key]},
                headers={"Last-Modified": formatdate(modified, usegmt=True)},
            )
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def media_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == MEDIA_HOST]

    def thread_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if _THREAD_RE.fullmatch(r.url.path)]


def make_post(
    no: int,
    *,
    time: int = 1_700_000_000,
    com: str | None = None,
    sub: str | None = None,
    name: str | None = "Anonymous",
    tim: int | None = None,
    filename: str = "image",
    ext: str = ".jpg",
) -> dict[str, Any]:
    post: dict[str, Any] = {"no": no, "time": time, "resto": 0}
    if name is not None:
        post["name"] = name
    if sub is not None:
        post["sub"] = sub
    if com is not None:
        post["com"] = com
    if tim is not None:
        post.update({"tim": tim, "filename": filename, "ext": ext, "w": 640, "h": 480, "fsize": 1234})
    return post


@pytest.fixture
def fake_chan() -> FakeChan:
    return FakeChan()


@pytest.fixture
def api_cfg() -> FourChanConfig:
    return FourChanConfig(request_delay=0.0, timeout=5.0)


@pytest.fixture
def watch_cfg() -> WatchConfig:
    return WatchConfig(boards=("x",), keywords=("rocket",), base_interval=10.0, max_interval=160.0)
