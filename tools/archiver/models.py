"""Data types shared by the archiver components."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, NamedTuple

VIDEO_EXTENSIONS = frozenset({".webm", ".mp4"})


class MalformedResponse(ValueError):
    """Raised when API JSON does not have the expected shape."""


class MediaKey(NamedTuple):
    """Dedup key of one captured media file."""
    board: str
    thread_no: int
    post_no: int
    filename: str
    ext: str


@dataclass(frozen=True)
class ThreadSummary:
    """A catalog entry for a thread."""
    board: str
    no: int
    subject: str | None
    body: str | None
    last_modified: int
    replies: int = 0

    @property
    def key(self) -> tuple[str, int]:
        return (self.board, self.no)

    @classmethod
    def from_catalog(cls, board: str, thread: dict[str, Any]) -> ThreadSummary:
        return cls(
            board=board,
            no=int(thread["no"]),
            subject=thread.get("sub"),
            body=thread.get("com"),
            last_modified=int(thread["last_modified"]),
            replies=int(thread.get("replies", 0)),
        )


@dataclass(frozen=True)
class MediaInfo:
    filename: str
    ext: str
    remote_id: int
    width: int | None = None
    height: int | None = None
    size: int | None = None

    @property
    def is_video(self) -> bool:
        return self.ext.lower() in VIDEO_EXTENSIONS

    @property
    def local_name(self) -> str:
        """On-disk name; remote ids are unique per board, original names are not."""
        return f"{self.remote_id}{self.ext}"

    @property
    def original_name(self) -> str:
        return f"{self.filename}{self.ext}"


@dataclass(frozen=True)
class Post:
    no: int
    time: int
    name: str | None = None
    subject: str | None = None
    comment: str | None = None
    media: MediaInfo | None = None

    @classmethod
    def from_api(cls, data: Any) -> Post:
        """Map a 4chan post object, raising MalformedResponse on bad shape."""
        if not isinstance(data, dict) or "no" not in data:
            raise MalformedResponse(f"post without a number: {data!r:.80}")
        try:
            media = None
            if data.get("filename") and data.get("ext") and data.get("tim"):
                media = MediaInfo(
                    filename=str(data["filename"]),
                    ext=str(data["ext"]),
                    remote_id=int(data["tim"]),
                    width=data.get("w"),
                    height=data.get("h"),
                    size=data.get("fsize"),
                )
            return cls(
                no=int(data["no"]),
                time=int(data.get("time", 0)),
                name=data.get("name"),
                subject=data.get("sub"),
                comment=data.get("com"),
                media=media,
            )
        except (TypeError, ValueError) as exc:
            raise MalformedResponse(f"bad post fields in {data.get('no')!r}: {exc}") from exc


def parse_posts(body: Any) -> tuple[list[dict[str, Any]], list[Post]]:
    """Validate a thread response, returning the raw and mapped post lists."""
    if not isinstance(body, dict) or not isinstance(body.get("posts"), list):
        raise MalformedResponse("thread response has no posts list")
    raw = body["posts"]
    if not raw:
        raise MalformedResponse("thread response has an empty posts list")
    return raw, [Post.from_api(p) for p in raw]


@dataclass
class WatchState:
    """Per-thread polling state owned by the sync engine."""
    summary: ThreadSummary
    interval: float
    last_modified: int | None = None
    directory: Path | None = None
    synced: bool = False
    gone: bool = False
    polls: int = 0

    @property
    def key(self) -> tuple[str, int]:
        return self.summary.key
