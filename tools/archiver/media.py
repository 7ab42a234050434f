"""Media fetcher – stream attachments to disk without leaving partial files."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import httpx

from .api import FourChanAPI

logger = logging.getLogger("archiver.media")

CHUNK_SIZE = 64 * 1024


class MediaFetcher:
    def __init__(self, api: FourChanAPI) -> None:
        self.api = api

    async def download(self, url: str, dest: Path) -> bool:
        """Stream ``url`` into ``dest``.  Returns True on success.

        The body goes to ``<dest>.part`` and is renamed once complete; on any
        error the partial file is removed.  An existing ``dest`` is never
        overwritten.
        """
        if dest.exists():
            logger.debug("%s already on disk, not overwriting", dest)
            return False
        part = dest.with_name(dest.name + ".part")
        try:
            async with self.api.stream(url) as resp:
                if resp.status_code != 200:
                    logger.warning("HTTP %d for media %s", resp.status_code, url)
                    return False
                with open(part, "wb") as fh:
                    async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                        fh.write(chunk)
            os.replace(part, dest)
        except asyncio.CancelledError:
            part.unlink(missing_ok=True)
            raise
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Failed to download %s: %s", url, exc)
            part.unlink(missing_ok=True)
            return False
        logger.debug("Saved %s", dest)
        return True
