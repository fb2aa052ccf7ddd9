"""Read-only access to the registered group list.

Registration itself happens elsewhere; this module only loads the JSON
document it produces.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from chatbridge.group_folder import is_valid_group_folder
from chatbridge.models import AdditionalMount, ContainerConfig, RegisteredGroup

LOGGER = logging.getLogger(__name__)


def load_registered_groups(path: Path) -> dict[str, RegisteredGroup]:
    """Return registered groups keyed by JID.

    A missing file means nothing is registered. Entries with an invalid
    folder name are skipped.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        LOGGER.warning("No registered groups file at %s", path)
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Registered groups file must contain an object: {path}")

    groups: dict[str, RegisteredGroup] = {}
    for jid, entry in raw.items():
        group = _parse_group(entry)
        if not is_valid_group_folder(group.folder):
            LOGGER.warning("Skipping group %s with invalid folder %r", jid, group.folder)
            continue
        groups[jid] = group
    LOGGER.info("Loaded %d registered group(s)", len(groups))
    return groups


def _parse_group(entry: dict[str, Any]) -> RegisteredGroup:
    container = entry.get("containerConfig") or entry.get("container_config")
    container_config = None
    if isinstance(container, dict):
        mounts = []
        for m in container.get("additionalMounts") or container.get("additional_mounts") or []:
            host_path = m.get("hostPath") or m.get("host_path")
            if not host_path:
                LOGGER.warning("Skipping mount without a host path in group %s", entry.get("name"))
                continue
            mounts.append(
                AdditionalMount(
                    host_path=str(host_path),
                    container_path=m.get("containerPath") or m.get("container_path"),
                    readonly=bool(m.get("readonly", True)),
                )
            )
        timeout = container.get("timeout")
        container_config = ContainerConfig(
            additional_mounts=mounts,
            timeout_ms=int(timeout) if timeout is not None else None,
        )

    requires_trigger = entry.get("requiresTrigger", entry.get("requires_trigger"))
    return RegisteredGroup(
        name=str(entry["name"]),
        folder=str(entry["folder"]),
        trigger=str(entry["trigger"]),
        added_at=str(entry.get("added_at", "")),
        container_config=container_config,
        requires_trigger=None if requires_trigger is None else bool(requires_trigger),
    )
