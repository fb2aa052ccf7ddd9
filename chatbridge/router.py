"""Outbound dispatch from logical addresses to live channels.

Channels are consulted in registration order and the first match wins.
Ownership sets must be disjoint; overlapping prefixes are a configuration
error this module does not try to resolve.
"""

from __future__ import annotations

import logging
from typing import Sequence

from chatbridge.channels.base import Channel, ComponentSender, FileSender, TypingIndicator, supports
from chatbridge.components import ActionRow
from chatbridge.errors import CapabilityUnsupported, NoChannelForAddress

LOGGER = logging.getLogger(__name__)


def find_channel(channels: Sequence[Channel], jid: str) -> Channel | None:
    """Return the channel owning ``jid`` regardless of its connection state."""

    return next((c for c in channels if c.owns_jid(jid)), None)


def _live_channel(channels: Sequence[Channel], jid: str) -> Channel:
    channel = next((c for c in channels if c.owns_jid(jid) and c.is_connected()), None)
    if channel is None:
        raise NoChannelForAddress(jid)
    return channel


async def route_outbound(channels: Sequence[Channel], jid: str, text: str) -> None:
    channel = _live_channel(channels, jid)
    await channel.send_message(jid, text)


async def route_file(
    channels: Sequence[Channel],
    jid: str,
    file_path: str,
    caption: str | None = None,
) -> None:
    channel = _live_channel(channels, jid)
    if not supports(channel, FileSender):
        raise CapabilityUnsupported(channel.name, "file sending")
    await channel.send_file(jid, file_path, caption)  # type: ignore[attr-defined]


async def route_components(
    channels: Sequence[Channel],
    jid: str,
    text: str,
    rows: list[ActionRow],
) -> str:
    """Send interactive components and return the platform message id."""

    channel = _live_channel(channels, jid)
    if not supports(channel, ComponentSender):
        raise CapabilityUnsupported(channel.name, "interactive components")
    return await channel.send_components(jid, text, rows)  # type: ignore[attr-defined]


async def route_typing(channels: Sequence[Channel], jid: str, is_typing: bool) -> None:
    """Best-effort typing indicator; silently skipped when unavailable."""

    channel = next((c for c in channels if c.owns_jid(jid) and c.is_connected()), None)
    if channel is None or not supports(channel, TypingIndicator):
        LOGGER.debug("No typing indicator available for %s", jid)
        return
    await channel.set_typing(jid, is_typing)  # type: ignore[attr-defined]
