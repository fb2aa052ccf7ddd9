"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

from chatbridge.agent_client import SubprocessAgent
from chatbridge.attachments import AttachmentDownloader
from chatbridge.bridge import Bridge
from chatbridge.channels.discord_channel import DiscordChannel
from chatbridge.config import load_settings
from chatbridge.errors import ChannelConnectionError
from chatbridge.groups import load_registered_groups
from chatbridge.mount_security import AllowlistLoader

LOGGER = logging.getLogger(__name__)


async def run() -> None:
    """Initialize channels and the bridge, then process messages."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    agent = SubprocessAgent(settings.agent_command) if settings.agent_command else None
    if agent is None:
        LOGGER.warning("AGENT_COMMAND not set; inbound messages will only be collected")

    bridge = Bridge(
        groups=load_registered_groups(settings.registered_groups_path),
        agent=agent,
        assistant_name=settings.assistant_name,
        groups_dir=settings.groups_dir,
        main_group_folder=settings.main_group_folder,
        allowlist_loader=AllowlistLoader(settings.mount_allowlist_path),
        default_timeout_ms=settings.container_timeout_ms,
    )

    if settings.discord_bot_token:
        bridge.add_channel(
            DiscordChannel(
                token=settings.discord_bot_token,
                on_message=bridge.on_message,
                on_chat_metadata=bridge.on_chat_metadata,
                registered_groups=bridge.registered_groups,
                assistant_name=settings.assistant_name,
                groups_dir=settings.groups_dir,
                downloader=AttachmentDownloader(settings.max_attachment_download_size),
            )
        )
    if not bridge.channels:
        LOGGER.error("No channels configured; set DISCORD_BOT_TOKEN")
        return

    for channel in bridge.channels:
        try:
            await channel.connect()
        except ChannelConnectionError:
            LOGGER.exception("Failed to connect %s channel", channel.name)

    try:
        await bridge.run(settings.poll_interval_seconds)
    except asyncio.CancelledError:
        raise
    finally:
        bridge.stop()
        for channel in bridge.channels:
            await channel.disconnect()
        LOGGER.info("Bridge shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
