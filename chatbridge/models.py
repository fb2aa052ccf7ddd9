"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(slots=True)
class MessageAttachment:
    """A file persisted into a group's workspace.

    ``path`` is relative to the group folder (``inbox/<name>``), never an
    absolute host path.
    """

    filename: str
    path: str
    mime_type: str
    size: int
    is_image: bool


@dataclass(slots=True)
class NewMessage:
    """Message normalized by channels for delivery to the bridge."""

    id: str
    chat_jid: str
    sender: str
    sender_name: str
    content: str
    timestamp: str
    is_from_me: bool = False
    is_bot_message: bool = False
    attachments: list[MessageAttachment] | None = None


@dataclass(slots=True)
class AdditionalMount:
    """Host directory a group asks to have mounted into its container."""

    host_path: str
    container_path: str | None = None
    readonly: bool = True


@dataclass(slots=True)
class ContainerConfig:
    additional_mounts: list[AdditionalMount] = field(default_factory=list)
    timeout_ms: int | None = None


@dataclass(slots=True)
class RegisteredGroup:
    """A conversation the bridge is allowed to act in."""

    name: str
    folder: str
    trigger: str
    added_at: str
    container_config: ContainerConfig | None = None
    # None means the default: required except for the main group.
    requires_trigger: bool | None = None


@dataclass(slots=True)
class ChatInfo:
    """Metadata reported for every conversation, registered or not."""

    jid: str
    name: str | None
    last_message_time: str
    channel: str | None = None
    is_group: bool | None = None


@dataclass(slots=True)
class ScheduledTask:
    """A task owned by the external scheduler."""

    id: str
    group_folder: str
    chat_jid: str
    prompt: str
    schedule_type: Literal["cron", "interval", "once"]
    schedule_value: str
    context_mode: Literal["group", "isolated"] = "isolated"
    next_run: str | None = None
    last_run: str | None = None
    last_result: str | None = None
    status: Literal["active", "paused", "completed"] = "active"
    created_at: str = ""


@dataclass(slots=True)
class TaskRunLog:
    task_id: str
    run_at: str
    duration_ms: int
    status: Literal["success", "error"]
    result: str | None = None
    error: str | None = None


@dataclass(slots=True)
class AgentRequest:
    """Everything the agent backend needs for one run."""

    prompt: str
    group_folder: str
    chat_jid: str
    is_main: bool
    timeout_ms: int
    attachments: list[MessageAttachment] = field(default_factory=list)
    mounts: list[dict[str, Any]] = field(default_factory=list)
    is_scheduled_task: bool = False
    session_reuse: bool = True


@dataclass(slots=True)
class AgentOutput:
    """Result returned by the agent backend."""

    status: Literal["success", "error"]
    result: str | None = None
    error: str | None = None
    files: list[str] = field(default_factory=list)
    components: list[dict[str, Any]] = field(default_factory=list)
