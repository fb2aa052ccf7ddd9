"""Attachment handling for inbound messages.

Downloads land in the group's ``inbox`` directory. Anything that cannot be
stored (too large, fetch or write failure) degrades to a text placeholder so
the message itself is always delivered.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import httpx

from chatbridge.group_folder import INBOX_DIRNAME, ensure_inbox_dir
from chatbridge.models import MessageAttachment, NewMessage

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_BYTES_PER_MB = 1024 * 1024


@dataclass(slots=True)
class InboundAttachment:
    """An attachment as advertised by the platform, before download."""

    name: str | None
    url: str
    content_type: str | None = None
    size: int | None = None


class _FetchError(Exception):
    pass


def collect_attachments(messages: Iterable[NewMessage]) -> list[MessageAttachment]:
    """Return attachments across a batch with duplicate paths removed.

    The first occurrence of each path wins and first-seen order is kept.
    """
    seen: set[str] = set()
    result: list[MessageAttachment] = []
    for message in messages:
        for attachment in message.attachments or ():
            if attachment.path in seen:
                continue
            seen.add(attachment.path)
            result.append(attachment)
    return result


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def failure_placeholder(name: str, content_type: str) -> str:
    if content_type.startswith("image/"):
        return f"[Image: {name}]"
    if content_type.startswith("video/"):
        return f"[Video: {name}]"
    if content_type.startswith("audio/"):
        return f"[Audio: {name}]"
    return f"[File: {name}]"


def append_descriptions(content: str, descriptions: Sequence[str]) -> str:
    """Append attachment reference lines to a message body."""

    if not descriptions:
        return content
    joined = "\n".join(descriptions)
    return f"{content}\n{joined}" if content else joined


def _megabytes(size: int) -> int:
    # Half-up rounding so 2.5MB reads as 3MB.
    return int(size / _BYTES_PER_MB + 0.5)


class AttachmentDownloader:
    """Applies the size limit and stores attachments in a group inbox."""

    def __init__(self, max_size_bytes: int, timeout_seconds: float = 30.0) -> None:
        self._max_size_bytes = max_size_bytes
        self._timeout_seconds = timeout_seconds

    async def download_all(
        self,
        group_dir: Path,
        attachments: Sequence[InboundAttachment],
        chat_jid: str = "",
    ) -> tuple[list[str], list[MessageAttachment]]:
        """Download attachments one at a time in encounter order.

        Returns:
            The reference/placeholder lines, in order, and the attachments
            that were stored successfully.
        """
        descriptions: list[str] = []
        saved: list[MessageAttachment] = []
        if not attachments:
            return descriptions, saved

        async with httpx.AsyncClient(timeout=self._timeout_seconds, follow_redirects=True) as client:
            for item in attachments:
                name = item.name or "file"
                content_type = item.content_type or DEFAULT_CONTENT_TYPE
                size = item.size or 0

                if size > self._max_size_bytes:
                    descriptions.append(
                        f"[File too large: {name} ({_megabytes(size)}MB, "
                        f"max {_megabytes(self._max_size_bytes)}MB)]"
                    )
                    LOGGER.info("Skipping oversized attachment %s (%d bytes) in %s", name, size, chat_jid)
                    continue

                try:
                    stored = await self._fetch_and_store(client, group_dir, item.url, name, content_type)
                except (httpx.HTTPError, OSError, _FetchError) as exc:
                    LOGGER.warning("Failed to download attachment %s in %s: %s", name, chat_jid, exc)
                    descriptions.append(failure_placeholder(name, content_type))
                    continue

                saved.append(stored)
                label = "Image" if stored.is_image else "File"
                descriptions.append(f"[{label}: {name} → {stored.path}]")
                LOGGER.debug("Stored attachment %s (%d bytes) at %s", name, stored.size, stored.path)

        return descriptions, saved

    async def _fetch_and_store(
        self,
        client: httpx.AsyncClient,
        group_dir: Path,
        url: str,
        name: str,
        content_type: str,
    ) -> MessageAttachment:
        inbox = ensure_inbox_dir(group_dir)
        response = await client.get(url)
        if not 200 <= response.status_code < 300:
            raise _FetchError(f"HTTP {response.status_code}")
        data = response.content

        safe_name = sanitize_filename(name)
        stamp = int(time.time() * 1000)
        dest = inbox / f"{stamp}-{safe_name}"
        while dest.exists():
            stamp += 1
            dest = inbox / f"{stamp}-{safe_name}"
        await asyncio.to_thread(dest.write_bytes, data)

        return MessageAttachment(
            filename=name,
            path=f"{INBOX_DIRNAME}/{dest.name}",
            mime_type=content_type,
            size=len(data),
            is_image=content_type.startswith("image/"),
        )
