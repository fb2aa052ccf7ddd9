"""Channel contract shared by every platform adapter.

Core operations are abstract methods on :class:`Channel`. Optional
capabilities are not declared there at all: a channel supports typing
indicators, file sending or interactive components exactly when it defines
the matching methods, which :func:`supports` checks structurally. Callers
branch on that check and never assume a capability is present.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Protocol, runtime_checkable

from chatbridge.components import ActionRow
from chatbridge.models import NewMessage

# (chat_jid, message)
OnInboundMessage = Callable[[str, NewMessage], None]
# (chat_jid, timestamp, name, channel, is_group)
OnChatMetadata = Callable[[str, str, "str | None", "str | None", "bool | None"], None]


class Channel(ABC):
    """Abstract platform adapter."""

    name: str

    @abstractmethod
    async def connect(self) -> None:
        """Open the platform session; return only once the channel is live.

        Raises:
            ChannelConnectionError: if the session cannot be established.
        """

    @abstractmethod
    def is_connected(self) -> bool:
        """Report liveness without side effects."""

    @abstractmethod
    def owns_jid(self, jid: str) -> bool:
        """Return True if this channel understands the address format."""

    @abstractmethod
    async def send_message(self, jid: str, text: str) -> None:
        """Deliver plain text."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session. Safe to call repeatedly or before connect()."""


@runtime_checkable
class TypingIndicator(Protocol):
    async def set_typing(self, jid: str, is_typing: bool) -> None: ...


@runtime_checkable
class FileSender(Protocol):
    async def send_file(self, jid: str, file_path: str, caption: str | None = None) -> None: ...


@runtime_checkable
class ComponentSender(Protocol):
    async def send_components(self, jid: str, text: str, rows: list[ActionRow]) -> str: ...

    async def update_components(
        self,
        jid: str,
        message_id: str,
        text: str | None = None,
        rows: list[ActionRow] | None = None,
    ) -> None: ...


def supports(channel: Channel, capability: type) -> bool:
    """Return True if ``channel`` implements the optional ``capability``."""

    return isinstance(channel, capability)
