"""Orchestration between channels and the agent backend.

A :class:`Bridge` owns its channels, its view of the registered groups and
the pending message batches. Nothing is module-global, so several bridges
can run side by side in one process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping, Sequence

from chatbridge.agent_client import AgentBackend
from chatbridge.attachments import collect_attachments
from chatbridge.channels.base import Channel
from chatbridge.components import parse_action_rows
from chatbridge.config import DEFAULT_CONTAINER_TIMEOUT_MS, trigger_pattern
from chatbridge.errors import ChatBridgeError
from chatbridge.formatting import format_messages, format_outbound
from chatbridge.group_folder import resolve_group_folder_path
from chatbridge.models import (
    AgentOutput,
    AgentRequest,
    ChatInfo,
    NewMessage,
    RegisteredGroup,
    ScheduledTask,
    TaskRunLog,
)
from chatbridge.mount_security import MountAllowlist, validate_additional_mounts
from chatbridge.router import route_components, route_file, route_outbound, route_typing

LOGGER = logging.getLogger(__name__)


class Bridge:
    """Batches inbound messages per address and relays agent replies."""

    def __init__(
        self,
        groups: Mapping[str, RegisteredGroup],
        agent: AgentBackend | None,
        assistant_name: str,
        groups_dir: Path,
        main_group_folder: str = "main",
        allowlist_loader: Callable[[], MountAllowlist | None] = lambda: None,
        default_timeout_ms: int = DEFAULT_CONTAINER_TIMEOUT_MS,
        channels: Sequence[Channel] = (),
    ) -> None:
        self._groups = dict(groups)
        self._agent = agent
        self._trigger = trigger_pattern(assistant_name)
        self._groups_dir = groups_dir
        self._main_group_folder = main_group_folder
        self._allowlist_loader = allowlist_loader
        self._default_timeout_ms = default_timeout_ms
        self._channels: list[Channel] = list(channels)
        self._pending: dict[str, list[NewMessage]] = {}
        self._dirty: set[str] = set()
        self._chats: dict[str, ChatInfo] = {}
        self._stop_event = asyncio.Event()

    @property
    def channels(self) -> tuple[Channel, ...]:
        return tuple(self._channels)

    def add_channel(self, channel: Channel) -> None:
        """Register a channel; earlier channels win address lookups."""

        self._channels.append(channel)

    def registered_groups(self) -> Mapping[str, RegisteredGroup]:
        return self._groups

    def chats(self) -> dict[str, ChatInfo]:
        return dict(self._chats)

    def pending(self, jid: str) -> list[NewMessage]:
        return list(self._pending.get(jid, ()))

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    def on_message(self, chat_jid: str, message: NewMessage) -> None:
        self._pending.setdefault(chat_jid, []).append(message)
        self._dirty.add(chat_jid)

    def on_chat_metadata(
        self,
        chat_jid: str,
        timestamp: str,
        name: str | None = None,
        channel: str | None = None,
        is_group: bool | None = None,
    ) -> None:
        existing = self._chats.get(chat_jid)
        if existing is None:
            self._chats[chat_jid] = ChatInfo(chat_jid, name, timestamp, channel, is_group)
            return
        if timestamp > existing.last_message_time:
            existing.last_message_time = timestamp
        if name:
            existing.name = name
        existing.channel = channel or existing.channel
        if is_group is not None:
            existing.is_group = is_group

    # ------------------------------------------------------------------
    # Agent input
    # ------------------------------------------------------------------

    def is_main(self, group: RegisteredGroup) -> bool:
        return group.folder == self._main_group_folder

    def should_activate(self, group: RegisteredGroup, messages: Sequence[NewMessage]) -> bool:
        """Main group and trigger-free groups always activate; others need the trigger."""

        if self.is_main(group) or group.requires_trigger is False:
            return True
        return any(self._trigger.match(m.content.strip()) for m in messages)

    def _request_for(
        self,
        jid: str,
        group: RegisteredGroup,
        prompt: str,
        messages: Sequence[NewMessage] = (),
    ) -> AgentRequest:
        is_main = self.is_main(group)
        config = group.container_config
        mounts = validate_additional_mounts(
            config.additional_mounts if config else [],
            group.name,
            is_main,
            self._allowlist_loader(),
        )
        timeout_ms = config.timeout_ms if config and config.timeout_ms else self._default_timeout_ms
        return AgentRequest(
            prompt=prompt,
            group_folder=group.folder,
            chat_jid=jid,
            is_main=is_main,
            timeout_ms=timeout_ms,
            attachments=collect_attachments(messages),
            mounts=[asdict(m) for m in mounts],
        )

    def build_request(self, jid: str, messages: Sequence[NewMessage]) -> AgentRequest:
        """Build agent input for a batch of messages from a registered group."""

        group = self._groups[jid]
        return self._request_for(jid, group, format_messages(messages), messages)

    def build_task_request(self, task: ScheduledTask) -> AgentRequest | None:
        """Build agent input for a scheduled task, or None if its group is gone."""

        group = self._groups.get(task.chat_jid)
        if group is None or group.folder != task.group_folder:
            LOGGER.warning("Scheduled task %s targets unregistered group %s", task.id, task.chat_jid)
            return None
        request = self._request_for(task.chat_jid, group, task.prompt)
        request.is_scheduled_task = True
        request.session_reuse = task.context_mode == "group"
        return request

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_pending(self, jid: str) -> bool:
        """Run the agent for an address's pending batch if it activates.

        Messages that do not activate the agent stay pending and become
        context for the next activation.

        Returns:
            True if the agent ran and its reply was delivered.
        """
        self._dirty.discard(jid)
        group = self._groups.get(jid)
        messages = self._pending.get(jid)
        if group is None or not messages:
            return False
        if not self.should_activate(group, messages):
            LOGGER.debug("No trigger in %d pending message(s) for %s", len(messages), jid)
            return False
        if self._agent is None:
            LOGGER.warning("No agent backend configured; leaving %d message(s) pending for %s", len(messages), jid)
            return False

        del self._pending[jid]
        request = self.build_request(jid, messages)
        await route_typing(self._channels, jid, True)
        try:
            output = await self._agent.run(request)
        finally:
            await route_typing(self._channels, jid, False)

        if output.status == "error":
            LOGGER.error("Agent failed for %s: %s", jid, output.error)
            return False
        await self.deliver(jid, output)
        return True

    async def run_task(self, task: ScheduledTask) -> TaskRunLog | None:
        """Execute a scheduled task and return its run-log entry."""

        request = self.build_task_request(task)
        if request is None:
            return None
        if self._agent is None:
            raise RuntimeError("No agent backend configured")

        started = time.monotonic()
        run_at = datetime.now(timezone.utc).isoformat()
        output = await self._agent.run(request)
        error = output.error if output.status == "error" else None
        if error is None:
            try:
                await self.deliver(task.chat_jid, output)
            except ChatBridgeError as exc:
                error = str(exc)
        return TaskRunLog(
            task_id=task.id,
            run_at=run_at,
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error" if error else "success",
            result=output.result if not error else None,
            error=error,
        )

    async def deliver(self, jid: str, output: AgentOutput) -> None:
        """Sanitize and route an agent reply.

        Dispatch failures (no live channel, missing capability) propagate.
        """
        text = format_outbound(output.result or "")

        rows = []
        if output.components:
            try:
                rows = parse_action_rows(output.components)
            except ValueError as exc:
                LOGGER.warning("Dropping invalid components for %s: %s", jid, exc)

        if rows:
            message_id = await route_components(self._channels, jid, text, rows)
            LOGGER.info("Sent components to %s as message %s", jid, message_id)
        elif text:
            await route_outbound(self._channels, jid, text)
        else:
            LOGGER.debug("Agent output for %s was empty after sanitizing", jid)

        for file_path in output.files:
            resolved = self._resolve_output_file(jid, file_path)
            if resolved is not None:
                await route_file(self._channels, jid, str(resolved))

    def _resolve_output_file(self, jid: str, file_path: str) -> Path | None:
        group = self._groups.get(jid)
        if group is None:
            return None
        group_dir = resolve_group_folder_path(self._groups_dir, group.folder)
        candidate = (group_dir / file_path).resolve()
        if not candidate.is_relative_to(group_dir) or not candidate.is_file():
            LOGGER.warning("Refusing to send %s for %s: not a file in the group workspace", file_path, jid)
            return None
        return candidate

    async def _process_safely(self, jid: str) -> None:
        try:
            await self.process_pending(jid)
        except ChatBridgeError:
            LOGGER.exception("Failed to deliver reply to %s", jid)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Unexpected failure processing %s", jid)

    async def run(self, poll_interval_seconds: float = 2.0) -> None:
        """Process pending batches until stop() is called."""

        while not self._stop_event.is_set():
            dirty = sorted(self._dirty)
            if dirty:
                await asyncio.gather(*(self._process_safely(jid) for jid in dirty))
            await asyncio.sleep(poll_interval_seconds)

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
