"""Tests for attachment collection and the download policy."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from chatbridge.attachments import (
    AttachmentDownloader,
    InboundAttachment,
    append_descriptions,
    collect_attachments,
    failure_placeholder,
    sanitize_filename,
)
from chatbridge.models import MessageAttachment, NewMessage

MB = 1024 * 1024


def _att(path: str) -> MessageAttachment:
    return MessageAttachment(filename=path, path=path, mime_type="image/png", size=1, is_image=True)


def _msg(attachments: list[MessageAttachment] | None) -> NewMessage:
    return NewMessage(
        id="m",
        chat_jid="dc:1",
        sender="u",
        sender_name="U",
        content="",
        timestamp="t",
        attachments=attachments,
    )


def _mock_client(response: MagicMock | None = None, side_effect: Exception | None = None) -> AsyncMock:
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.get = AsyncMock(return_value=response, side_effect=side_effect)
    return client


def _response(content: bytes, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    return resp


class TestCollectAttachments:
    def test_deduplicates_by_path_keeping_first_seen_order(self):
        a, b, a2, c = _att("inbox/a"), _att("inbox/b"), _att("inbox/a"), _att("inbox/c")
        result = collect_attachments([_msg([a, b]), _msg(None), _msg([a2, c])])
        assert [x.path for x in result] == ["inbox/a", "inbox/b", "inbox/c"]
        assert result[0] is a

    def test_idempotent(self):
        once = collect_attachments([_msg([_att("x"), _att("y"), _att("x")])])
        twice = collect_attachments([_msg(once)])
        assert twice == once

    def test_empty(self):
        assert collect_attachments([]) == []


class TestHelpers:
    def test_sanitize_filename(self):
        assert sanitize_filename("my photo(1).png") == "my_photo_1_.png"
        assert sanitize_filename("ok-name_1.txt") == "ok-name_1.txt"

    def test_failure_placeholder_by_media_type(self):
        assert failure_placeholder("a.png", "image/png") == "[Image: a.png]"
        assert failure_placeholder("a.mp4", "video/mp4") == "[Video: a.mp4]"
        assert failure_placeholder("a.ogg", "audio/ogg") == "[Audio: a.ogg]"
        assert failure_placeholder("a.pdf", "application/pdf") == "[File: a.pdf]"

    def test_append_descriptions(self):
        assert append_descriptions("hi", ["[File: a]", "[File: b]"]) == "hi\n[File: a]\n[File: b]"
        assert append_descriptions("", ["[File: a]"]) == "[File: a]"
        assert append_descriptions("hi", []) == "hi"


class TestAttachmentDownloader:
    @pytest.mark.asyncio
    async def test_oversized_attachment_becomes_placeholder_without_fetch(self, tmp_path):
        client = _mock_client(_response(b""))
        downloader = AttachmentDownloader(max_size_bytes=25 * MB)

        with patch("chatbridge.attachments.httpx.AsyncClient", return_value=client):
            descriptions, saved = await downloader.download_all(
                tmp_path, [InboundAttachment(name="big.zip", url="https://cdn/big", size=30 * MB)]
            )

        assert descriptions == ["[File too large: big.zip (30MB, max 25MB)]"]
        assert saved == []
        client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_size_is_rounded_to_megabytes(self, tmp_path):
        client = _mock_client(_response(b""))
        downloader = AttachmentDownloader(max_size_bytes=1 * MB)

        with patch("chatbridge.attachments.httpx.AsyncClient", return_value=client):
            descriptions, _ = await downloader.download_all(
                tmp_path, [InboundAttachment(name="v.mp4", url="u", size=int(2.6 * MB))]
            )

        assert descriptions == ["[File too large: v.mp4 (3MB, max 1MB)]"]

    @pytest.mark.asyncio
    async def test_stores_image_in_inbox(self, tmp_path):
        client = _mock_client(_response(b"\x89PNG data"))
        downloader = AttachmentDownloader(max_size_bytes=25 * MB)

        with (
            patch("chatbridge.attachments.httpx.AsyncClient", return_value=client),
            patch("chatbridge.attachments.time.time", return_value=1709123456.0),
        ):
            descriptions, saved = await downloader.download_all(
                tmp_path,
                [InboundAttachment(name="my photo(1).png", url="https://cdn/p", content_type="image/png", size=9)],
            )

        assert descriptions == ["[Image: my photo(1).png → inbox/1709123456000-my_photo_1_.png]"]
        assert saved == [
            MessageAttachment(
                filename="my photo(1).png",
                path="inbox/1709123456000-my_photo_1_.png",
                mime_type="image/png",
                size=9,
                is_image=True,
            )
        ]
        assert (tmp_path / "inbox" / "1709123456000-my_photo_1_.png").read_bytes() == b"\x89PNG data"

    @pytest.mark.asyncio
    async def test_non_image_gets_file_reference_and_default_name(self, tmp_path):
        client = _mock_client(_response(b"%PDF"))
        downloader = AttachmentDownloader(max_size_bytes=25 * MB)

        with (
            patch("chatbridge.attachments.httpx.AsyncClient", return_value=client),
            patch("chatbridge.attachments.time.time", return_value=1.0),
        ):
            descriptions, saved = await downloader.download_all(
                tmp_path, [InboundAttachment(name=None, url="https://cdn/f")]
            )

        assert descriptions == ["[File: file → inbox/1000-file]"]
        assert saved[0].mime_type == "application/octet-stream"
        assert saved[0].is_image is False

    @pytest.mark.asyncio
    async def test_fetch_failure_becomes_media_placeholder(self, tmp_path):
        client = _mock_client(side_effect=httpx.ConnectError("boom"))
        downloader = AttachmentDownloader(max_size_bytes=25 * MB)

        with patch("chatbridge.attachments.httpx.AsyncClient", return_value=client):
            descriptions, saved = await downloader.download_all(
                tmp_path,
                [InboundAttachment(name="clip.mp4", url="https://cdn/c", content_type="video/mp4", size=10)],
            )

        assert descriptions == ["[Video: clip.mp4]"]
        assert saved == []

    @pytest.mark.asyncio
    async def test_http_error_status_becomes_placeholder(self, tmp_path):
        client = _mock_client(_response(b"", status_code=404))
        downloader = AttachmentDownloader(max_size_bytes=25 * MB)

        with patch("chatbridge.attachments.httpx.AsyncClient", return_value=client):
            descriptions, saved = await downloader.download_all(
                tmp_path,
                [InboundAttachment(name="pic.jpg", url="https://cdn/x", content_type="image/jpeg", size=10)],
            )

        assert descriptions == ["[Image: pic.jpg]"]
        assert saved == []
        assert list((tmp_path / "inbox").iterdir()) == []

    @pytest.mark.asyncio
    async def test_multiple_attachments_keep_encounter_order(self, tmp_path):
        client = _mock_client(_response(b"data"))
        downloader = AttachmentDownloader(max_size_bytes=10)

        with (
            patch("chatbridge.attachments.httpx.AsyncClient", return_value=client),
            patch("chatbridge.attachments.time.time", return_value=5.0),
        ):
            descriptions, saved = await downloader.download_all(
                tmp_path,
                [
                    InboundAttachment(name="a.txt", url="u1", content_type="text/plain", size=4),
                    InboundAttachment(name="huge.bin", url="u2", size=11),
                    InboundAttachment(name="a.txt", url="u3", content_type="text/plain", size=4),
                ],
            )

        assert descriptions == [
            "[File: a.txt → inbox/5000-a.txt]",
            "[File too large: huge.bin (0MB, max 0MB)]",
            "[File: a.txt → inbox/5001-a.txt]",
        ]
        assert [a.path for a in saved] == ["inbox/5000-a.txt", "inbox/5001-a.txt"]
        assert [c.args[0] for c in client.get.call_args_list] == ["u1", "u3"]

    @pytest.mark.asyncio
    async def test_unwritable_inbox_becomes_placeholder(self, tmp_path):
        group_dir = tmp_path / "team"
        group_dir.write_text("not a directory", encoding="utf-8")
        client = _mock_client(_response(b"data"))
        downloader = AttachmentDownloader(max_size_bytes=25 * MB)

        with patch("chatbridge.attachments.httpx.AsyncClient", return_value=client):
            descriptions, saved = await downloader.download_all(
                group_dir,
                [InboundAttachment(name="pic.png", url="https://cdn/p", content_type="image/png", size=4)],
            )

        assert descriptions == ["[Image: pic.png]"]
        assert saved == []

    @pytest.mark.asyncio
    async def test_no_attachments_creates_nothing(self, tmp_path):
        descriptions, saved = await AttachmentDownloader(10).download_all(tmp_path, [])
        assert (descriptions, saved) == ([], [])
        assert not (tmp_path / "inbox").exists()
