"""Client for the external agent backend.

The backend is any command that reads one JSON request on stdin and writes
one JSON result on stdout. Timeouts are the backend's responsibility; the
request only tells it which limit applies.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Any

from chatbridge.models import AgentOutput, AgentRequest

LOGGER = logging.getLogger(__name__)


class AgentBackend(ABC):
    """Executes prompts on behalf of the bridge."""

    @abstractmethod
    async def run(self, request: AgentRequest) -> AgentOutput:
        """Run one request and return its output."""


class SubprocessAgent(AgentBackend):
    """Agent backend spawned as a subprocess per request."""

    def __init__(self, command: str) -> None:
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("Agent command is empty")

    async def run(self, request: AgentRequest) -> AgentOutput:
        payload = json.dumps(_request_payload(request)).encode()
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            LOGGER.error("Failed to start agent %s for %s: %s", self._argv[0], request.chat_jid, exc)
            return AgentOutput(status="error", error=f"agent failed to start: {exc}")
        stdout, stderr = await process.communicate(payload)
        if process.returncode != 0:
            LOGGER.warning(
                "Agent exited with %s for %s: %s",
                process.returncode,
                request.chat_jid,
                stderr.decode(errors="replace").strip(),
            )
            return AgentOutput(status="error", error=f"agent exited with code {process.returncode}")
        return parse_agent_output(stdout.decode(errors="replace"))


def _request_payload(request: AgentRequest) -> dict[str, Any]:
    return {
        "prompt": request.prompt,
        "groupFolder": request.group_folder,
        "chatJid": request.chat_jid,
        "isMain": request.is_main,
        "isScheduledTask": request.is_scheduled_task,
        "attachments": [asdict(a) for a in request.attachments],
        "mounts": request.mounts,
        "timeoutMs": request.timeout_ms,
        "sessionReuse": request.session_reuse,
    }


def parse_agent_output(raw: str) -> AgentOutput:
    """Parse the backend's stdout; anything malformed becomes an error output."""

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return AgentOutput(status="error", error="agent returned invalid JSON")
    if not isinstance(data, dict):
        return AgentOutput(status="error", error="agent returned a non-object result")

    status = "success" if data.get("status") == "success" else "error"
    files = data.get("files") or []
    components = data.get("components") or []
    return AgentOutput(
        status=status,
        result=data.get("result"),
        error=data.get("error"),
        files=[str(f) for f in files] if isinstance(files, list) else [],
        components=components if isinstance(components, list) else [],
    )
