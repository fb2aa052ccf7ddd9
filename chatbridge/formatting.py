"""Text shaping on both sides of the agent.

Inbound, a batch of messages becomes the XML-ish envelope the agent reads.
Outbound, agent text loses its ``<internal>`` reasoning blocks before any
channel sees it.
"""

from __future__ import annotations

import re
from typing import Iterable

from chatbridge.models import NewMessage

# Leftmost-shortest match: in "<internal>a<internal>b</internal>c</internal>"
# the first span ends at the first closing tag and "c</internal>" survives.
_INTERNAL_BLOCK = re.compile(r"<internal>.*?</internal>", re.DOTALL)


def escape_xml(s: str | None) -> str:
    if not s:
        return ""
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def format_messages(messages: Iterable[NewMessage]) -> str:
    """Serialize messages, in the given order, into the agent context envelope.

    Sender names and bodies are escaped. Timestamps are system generated and
    emitted verbatim.
    """
    lines = [
        f'<message sender="{escape_xml(m.sender_name)}" time="{m.timestamp}">{escape_xml(m.content)}</message>'
        for m in messages
    ]
    return "<messages>\n" + "\n".join(lines) + "\n</messages>"


def strip_internal_tags(text: str) -> str:
    return _INTERNAL_BLOCK.sub("", text).strip()


def format_outbound(raw_text: str) -> str:
    """Return the user-visible part of agent output.

    An empty string means there is nothing to send.
    """
    return strip_internal_tags(raw_text or "")
