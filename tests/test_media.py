from __future__ import annotations

import asyncio

from archiver.api import FourChanAPI
from archiver.media import MediaFetcher

URL = "https://i.4cdn.org/x/1111.jpg"


def _download(fake_chan, api_cfg, dest):
    async def scenario():
        async with FourChanAPI(api_cfg, transport=fake_chan.transport) as api:
            return await MediaFetcher(api).download(URL, dest)

    return asyncio.run(scenario())


def test_download_writes_complete_file(fake_chan, api_cfg, tmp_path) -> None:
    fake_chan.media["/x/1111.jpg"] = b"jpeg-bytes"
    dest = tmp_path / "1111.jpg"

    assert _download(fake_chan, api_cfg, dest) is True
    assert dest.read_bytes() == b"jpeg-bytes"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["1111.jpg"]


def test_failure_mid_stream_leaves_no_file(fake_chan, api_cfg, tmp_path) -> None:
    fake_chan.broken_media.add("/x/1111.jpg")
    dest = tmp_path / "1111.jpg"

    assert _download(fake_chan, api_cfg, dest) is False
    assert not dest.exists()
    assert list(tmp_path.iterdir()) == []


def test_http_error_status_leaves_no_file(fake_chan, api_cfg, tmp_path) -> None:
    dest = tmp_path / "1111.jpg"

    assert _download(fake_chan, api_cfg, dest) is False
    assert list(tmp_path.iterdir()) == []


def test_existing_file_is_never_overwritten(fake_chan, api_cfg, tmp_path) -> None:
    fake_chan.media["/x/1111.jpg"] = b"new"
    dest = tmp_path / "1111.jpg"
    dest.write_bytes(b"original")

    assert _download(fake_chan, api_cfg, dest) is False
    assert dest.read_bytes() == b"original"
    assert fake_chan.media_requests() == []
