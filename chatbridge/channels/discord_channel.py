"""Discord channel built on discord.py.

Addresses look like ``dc:<channel id>``. Inbound messages are normalized
here: bot mentions become the assistant trigger, replies get a
``[Reply to <author>]`` marker and attachments of registered channels are
downloaded into the group inbox. Button and select interactions come back
as synthetic messages addressed to the assistant.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

import discord

from chatbridge.attachments import AttachmentDownloader, InboundAttachment, append_descriptions
from chatbridge.channels.base import Channel, OnChatMetadata, OnInboundMessage
from chatbridge.components import MAX_ACTION_ROWS, ActionRow, Button, StringSelect
from chatbridge.config import trigger_pattern
from chatbridge.errors import ChannelConnectionError
from chatbridge.group_folder import resolve_group_folder_path
from chatbridge.models import NewMessage, RegisteredGroup

LOGGER = logging.getLogger(__name__)

JID_PREFIX = "dc:"
DISCORD_MAX_LENGTH = 2000
DISCORD_MAX_ROWS = MAX_ACTION_ROWS

_STYLE_MAP: dict[str, discord.ButtonStyle] = {
    "primary": discord.ButtonStyle.primary,
    "secondary": discord.ButtonStyle.secondary,
    "success": discord.ButtonStyle.success,
    "danger": discord.ButtonStyle.danger,
}


def _default_client() -> discord.Client:
    intents = discord.Intents.default()
    intents.message_content = True
    intents.dm_messages = True
    return discord.Client(intents=intents)


class DiscordChannel(Channel):
    """Discord adapter with typing, file and component support."""

    name = "discord"

    def __init__(
        self,
        token: str,
        on_message: OnInboundMessage,
        on_chat_metadata: OnChatMetadata,
        registered_groups: Callable[[], Mapping[str, RegisteredGroup]],
        assistant_name: str,
        groups_dir: Path,
        downloader: AttachmentDownloader,
        client_factory: Callable[[], Any] = _default_client,
    ) -> None:
        self._token = token
        self._on_message = on_message
        self._on_chat_metadata = on_chat_metadata
        self._registered_groups = registered_groups
        self._assistant_name = assistant_name
        self._trigger = trigger_pattern(assistant_name)
        self._groups_dir = groups_dir
        self._downloader = downloader
        self._client_factory = client_factory
        self._client: Any = None
        self._runner: asyncio.Task[None] | None = None
        self._lifecycle_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        async with self._lifecycle_lock:
            if self.is_connected():
                return
            client = self._client_factory()
            ready = asyncio.Event()

            @client.event
            async def on_ready() -> None:
                LOGGER.info("Discord bot connected as %s (id %s)", client.user, client.user.id)
                ready.set()

            @client.event
            async def on_message(message: Any) -> None:
                await self.handle_message(message)

            @client.event
            async def on_interaction(interaction: Any) -> None:
                await self.handle_interaction(interaction)

            self._client = client
            self._runner = asyncio.create_task(client.start(self._token), name="discord-client")
            waiter = asyncio.create_task(ready.wait())
            done, _ = await asyncio.wait({self._runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if waiter in done:
                return

            waiter.cancel()
            runner = self._runner
            error = None if runner.cancelled() else runner.exception()
            self._client = None
            self._runner = None
            await client.close()
            raise ChannelConnectionError(f"Discord client stopped before becoming ready: {error}") from error

    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_ready()

    def owns_jid(self, jid: str) -> bool:
        return jid.startswith(JID_PREFIX)

    async def disconnect(self) -> None:
        async with self._lifecycle_lock:
            client, runner = self._client, self._runner
            self._client = None
            self._runner = None
            if client is None:
                return
            await client.close()
            if runner is not None and not runner.done():
                runner.cancel()
                try:
                    await runner
                except asyncio.CancelledError:
                    pass
            LOGGER.info("Discord bot stopped")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_message(self, message: Any) -> None:
        """Normalize one Discord message and hand it to the bridge."""

        if message.author.bot:
            return
        client = self._client
        if client is not None and client.user is not None and message.author.id == client.user.id:
            return

        chat_jid = f"{JID_PREFIX}{message.channel.id}"
        timestamp = message.created_at.isoformat()
        sender_name = _display_name(message.author)
        if message.guild is not None:
            channel_name = getattr(message.channel, "name", None) or message.channel.id
            chat_name = f"{message.guild.name} #{channel_name}"
        else:
            chat_name = sender_name

        content = self._translate_mention(message, message.content or "")
        reply_author = await self._resolve_reply_author(message)
        if reply_author:
            content = f"[Reply to {reply_author}] {content}"

        self._on_chat_metadata(chat_jid, timestamp, chat_name, self.name, message.guild is not None)

        group = self._registered_groups().get(chat_jid)
        if group is None:
            LOGGER.debug("Message from unregistered Discord channel %s (%s)", chat_jid, chat_name)
            return

        attachments = None
        if message.attachments:
            group_dir = resolve_group_folder_path(self._groups_dir, group.folder)
            inbound = [
                InboundAttachment(name=a.filename, url=a.url, content_type=a.content_type, size=a.size)
                for a in message.attachments
            ]
            descriptions, saved = await self._downloader.download_all(group_dir, inbound, chat_jid)
            content = append_descriptions(content, descriptions)
            attachments = saved or None

        self._on_message(
            chat_jid,
            NewMessage(
                id=str(message.id),
                chat_jid=chat_jid,
                sender=str(message.author.id),
                sender_name=sender_name,
                content=content,
                timestamp=timestamp,
                is_from_me=False,
                attachments=attachments,
            ),
        )
        LOGGER.info("Discord message stored from %s in %s", sender_name, chat_name)

    def _translate_mention(self, message: Any, content: str) -> str:
        client = self._client
        if client is None or client.user is None:
            return content
        bot_id = client.user.id
        mentioned = (
            any(getattr(user, "id", None) == bot_id for user in message.mentions)
            or f"<@{bot_id}>" in content
            or f"<@!{bot_id}>" in content
        )
        if not mentioned:
            return content
        content = re.sub(rf"<@!?{bot_id}>", "", content).strip()
        if not self._trigger.match(content):
            content = f"@{self._assistant_name} {content}".rstrip()
        return content

    async def _resolve_reply_author(self, message: Any) -> str | None:
        reference = message.reference
        if reference is None or reference.message_id is None:
            return None
        try:
            replied = await message.channel.fetch_message(reference.message_id)
        except discord.DiscordException as exc:
            # Deleted or inaccessible; deliver without the marker.
            LOGGER.debug("Could not resolve replied-to message %s: %s", reference.message_id, exc)
            return None
        return _display_name(replied.author)

    async def handle_interaction(self, interaction: Any) -> None:
        """Turn a button click or select choice into a synthetic message."""

        if interaction.type != discord.InteractionType.component:
            return
        data = interaction.data or {}
        component_type = data.get("component_type")
        if component_type not in (discord.ComponentType.button.value, discord.ComponentType.string_select.value):
            return

        # Discord requires an acknowledgement within three seconds.
        try:
            await interaction.response.defer()
        except discord.HTTPException as exc:
            LOGGER.warning("Failed to acknowledge Discord interaction %s: %s", interaction.id, exc)

        chat_jid = f"{JID_PREFIX}{interaction.channel_id}"
        custom_id = data.get("custom_id", "")
        user_name = _display_name(interaction.user)
        source = interaction.message
        message_id = str(source.id) if source is not None else ""

        if component_type == discord.ComponentType.button.value:
            label = _button_label(source, custom_id)
            body = f'[Button: {custom_id} "{label}" by {user_name} on message {message_id}]'
        else:
            values = json.dumps(list(data.get("values") or []), separators=(",", ":"))
            body = f"[Select: {custom_id} values={values} by {user_name} on message {message_id}]"

        if chat_jid not in self._registered_groups():
            LOGGER.debug("Interaction from unregistered Discord channel %s ignored", chat_jid)
            return

        self._on_message(
            chat_jid,
            NewMessage(
                id=str(interaction.id),
                chat_jid=chat_jid,
                sender=str(interaction.user.id),
                sender_name=user_name,
                content=f"@{self._assistant_name} {body}",
                timestamp=datetime.now(timezone.utc).isoformat(),
                is_from_me=False,
            ),
        )
        LOGGER.info("Discord interaction %s delivered from %s", custom_id, user_name)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _resolve_channel(self, client: Any, jid: str) -> Any:
        channel_id = int(jid.removeprefix(JID_PREFIX))
        channel = client.get_channel(channel_id) or await client.fetch_channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            return None
        return channel

    async def send_message(self, jid: str, text: str) -> None:
        client = self._client
        if client is None:
            LOGGER.warning("Discord client not initialized; dropping message to %s", jid)
            return
        try:
            channel = await self._resolve_channel(client, jid)
            if channel is None:
                LOGGER.warning("Discord channel %s not found or not text based", jid)
                return
            for start in range(0, len(text), DISCORD_MAX_LENGTH):
                await channel.send(text[start : start + DISCORD_MAX_LENGTH])
            LOGGER.info("Discord message sent to %s (%d chars)", jid, len(text))
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send Discord message to %s", jid)

    async def send_file(self, jid: str, file_path: str, caption: str | None = None) -> None:
        client = self._client
        if client is None:
            LOGGER.warning("Discord client not initialized; dropping file for %s", jid)
            return
        try:
            channel = await self._resolve_channel(client, jid)
            if channel is None:
                LOGGER.warning("Discord channel %s not found or not text based", jid)
                return
            await channel.send(content=caption or None, file=discord.File(file_path))
            LOGGER.info("Discord file %s sent to %s", file_path, jid)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send Discord file %s to %s", file_path, jid)

    async def set_typing(self, jid: str, is_typing: bool) -> None:
        client = self._client
        if client is None or not is_typing:
            return
        try:
            channel = await self._resolve_channel(client, jid)
            if channel is not None:
                await channel.typing()
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Failed to send Discord typing indicator to %s: %s", jid, exc)

    async def send_components(self, jid: str, text: str, rows: list[ActionRow]) -> str:
        client = self._client
        if client is None:
            raise ChannelConnectionError("Discord client not initialized")
        try:
            channel = await self._resolve_channel(client, jid)
            if channel is None:
                raise ChannelConnectionError(f"Discord channel not found or not text based: {jid}")
            sent = await channel.send(content=text, view=build_view(rows))
        except (ValueError, discord.DiscordException) as exc:
            LOGGER.exception("Failed to send Discord components to %s", jid)
            raise ChannelConnectionError(f"Discord rejected components for {jid}: {exc}") from exc
        LOGGER.info("Discord components sent to %s as message %s", jid, sent.id)
        return str(sent.id)

    async def update_components(
        self,
        jid: str,
        message_id: str,
        text: str | None = None,
        rows: list[ActionRow] | None = None,
    ) -> None:
        client = self._client
        if client is None:
            raise ChannelConnectionError("Discord client not initialized")
        if text is None and rows is None:
            return
        changes: dict[str, Any] = {}
        if text is not None:
            changes["content"] = text
        try:
            if rows is not None:
                changes["view"] = build_view(rows) if rows else None
            channel = await self._resolve_channel(client, jid)
            if channel is None:
                raise ChannelConnectionError(f"Discord channel not found or not text based: {jid}")
            message = await channel.fetch_message(int(message_id))
            await message.edit(**changes)
        except (ValueError, discord.DiscordException) as exc:
            LOGGER.exception("Failed to update Discord components on message %s in %s", message_id, jid)
            raise ChannelConnectionError(f"Discord rejected component update for {jid}: {exc}") from exc
        LOGGER.info("Discord components updated on message %s in %s", message_id, jid)


def _display_name(user: Any) -> str:
    return getattr(user, "display_name", None) or user.name


def _button_label(message: Any, custom_id: str) -> str:
    for row in getattr(message, "components", None) or ():
        for child in getattr(row, "children", None) or ():
            if getattr(child, "custom_id", None) == custom_id and getattr(child, "label", None):
                return child.label
    return custom_id


def build_view(rows: list[ActionRow]) -> discord.ui.View:
    """Translate action rows into a discord.py view, keeping row order.

    Must be called with a running event loop.
    """
    if len(rows) > DISCORD_MAX_ROWS:
        raise ValueError(f"Discord supports at most {DISCORD_MAX_ROWS} action rows, got {len(rows)}")
    view = discord.ui.View(timeout=None)
    for index, row in enumerate(rows):
        for component in row.components:
            view.add_item(_build_item(component, index))
    return view


def _build_item(component: Button | StringSelect, row: int) -> discord.ui.Item[Any]:
    if isinstance(component, Button):
        return discord.ui.Button(
            custom_id=component.custom_id,
            label=component.label,
            style=_STYLE_MAP.get(component.style or "primary", discord.ButtonStyle.primary),
            disabled=bool(component.disabled),
            row=row,
        )
    return discord.ui.Select(
        custom_id=component.custom_id,
        placeholder=component.placeholder,
        min_values=component.min_values if component.min_values is not None else 1,
        max_values=component.max_values if component.max_values is not None else 1,
        options=[
            discord.SelectOption(label=opt.label, value=opt.value, description=opt.description)
            for opt in component.options
        ],
        disabled=bool(component.disabled),
        row=row,
    )
