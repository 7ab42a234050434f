"""Static HTML snapshot of a thread."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from jinja2 import Environment, PackageLoader, StrictUndefined

from .models import MediaInfo, Post

# Map file extension → MIME type
MIME_MAP: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webm": "video/webm",
    ".mp4": "video/mp4",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}


def format_post_date(ts: int) -> str:
    """Render a unix timestamp as a UTC date, independent of the host locale."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%m/%d/%y (%a) %H:%M:%S UTC")


def guess_mime(media: MediaInfo) -> str:
    return MIME_MAP.get(media.ext.lower(), "application/octet-stream")


_env = Environment(
    loader=PackageLoader("archiver", "templates"),
    autoescape=True,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)
_env.filters["post_date"] = format_post_date
_env.filters["mime"] = guess_mime


def render_thread(posts: Sequence[Post], board: str) -> str:
    """Render ``posts`` (in thread order) as a standalone HTML document.

    The first post is styled as the opening post.  Comment, name and subject
    fields are inlined as-is: the API already delivers them as escaped HTML.
    """
    return _env.get_template("thread.html.j2").render(board=board, posts=list(posts))
