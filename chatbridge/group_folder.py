"""Per-group workspace directories."""

from __future__ import annotations

import re
from pathlib import Path

_FOLDER_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]{0,63}")
_RESERVED_FOLDERS = frozenset({"global"})

INBOX_DIRNAME = "inbox"


def is_valid_group_folder(folder: str) -> bool:
    return bool(_FOLDER_PATTERN.fullmatch(folder)) and folder.lower() not in _RESERVED_FOLDERS


def resolve_group_folder_path(groups_dir: Path, folder: str) -> Path:
    """Return the absolute workspace path for ``folder``.

    Raises:
        ValueError: if the folder name is invalid or escapes ``groups_dir``.
    """
    if not is_valid_group_folder(folder):
        raise ValueError(f"Invalid group folder: {folder!r}")
    base = groups_dir.expanduser().resolve()
    path = (base / folder).resolve()
    if not path.is_relative_to(base):
        raise ValueError(f"Group folder escapes base directory: {folder!r}")
    return path


def ensure_inbox_dir(group_dir: Path) -> Path:
    """Create the group's inbox if needed. Safe to call concurrently."""

    inbox = group_dir / INBOX_DIRNAME
    inbox.mkdir(parents=True, exist_ok=True)
    return inbox
