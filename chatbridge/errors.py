"""Exceptions surfaced to callers of the bridge core.

Recoverable conditions (oversized or failed attachments, unresolvable reply
context, rejected platform sends) never reach this module: channels degrade
them to placeholders or log lines. What is left here is what the caller must
handle.
"""

from __future__ import annotations


class ChatBridgeError(Exception):
    """Base class for bridge errors."""


class NoChannelForAddress(ChatBridgeError):
    """No connected channel owns the address."""

    def __init__(self, jid: str) -> None:
        super().__init__(f"No channel for JID: {jid}")
        self.jid = jid


class CapabilityUnsupported(ChatBridgeError):
    """The owning channel lacks an optional capability."""

    def __init__(self, channel_name: str, capability: str) -> None:
        super().__init__(f"Channel {channel_name} does not support {capability}")
        self.channel_name = channel_name
        self.capability = capability


class ChannelConnectionError(ChatBridgeError):
    """A channel could not establish or use its platform session."""


class MountViolation(ChatBridgeError):
    """A mount request was rejected by the allowlist."""

    def __init__(self, host_path: str, reason: str) -> None:
        super().__init__(f"Mount rejected for {host_path}: {reason}")
        self.host_path = host_path
        self.reason = reason
