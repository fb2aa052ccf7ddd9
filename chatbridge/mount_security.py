"""Mount allowlist enforcement for agent containers.

The allowlist lives outside every directory a container can see and is only
ever read here; it is never mounted. Each mount request is validated on its
own and either accepted as a whole or rejected; nothing is partially mounted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatbridge.errors import MountViolation
from chatbridge.models import AdditionalMount

LOGGER = logging.getLogger(__name__)

CONTAINER_EXTRA_DIR = "/workspace/extra"

DEFAULT_BLOCKED_PATTERNS: tuple[str, ...] = (
    ".ssh",
    ".gnupg",
    ".aws",
    ".azure",
    ".gcloud",
    ".kube",
    ".docker",
    "credentials",
    ".env",
    ".netrc",
    ".npmrc",
    ".pypirc",
    "id_rsa",
    "id_ed25519",
    "private_key",
    ".secret",
)


class AllowedRoot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str
    allow_read_write: bool = Field(default=False, alias="allowReadWrite")
    description: str | None = None


class MountAllowlist(BaseModel):
    """Operator-maintained policy bounding what containers may see."""

    model_config = ConfigDict(populate_by_name=True)

    allowed_roots: list[AllowedRoot] = Field(default_factory=list, alias="allowedRoots")
    blocked_patterns: list[str] = Field(default_factory=list, alias="blockedPatterns")
    non_main_read_only: bool = Field(default=True, alias="nonMainReadOnly")
    # Where the policy was read from; set by the loader, never by the document.
    source_path: Path | None = Field(default=None, exclude=True)


@dataclass(slots=True)
class ValidatedMount:
    host_path: str
    container_path: str
    readonly: bool


class AllowlistLoader:
    """Reads the allowlist file once and caches the outcome."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._loaded = False
        self._allowlist: MountAllowlist | None = None

    def load(self) -> MountAllowlist | None:
        if not self._loaded:
            self._allowlist = load_mount_allowlist(self._path)
            self._loaded = True
        return self._allowlist

    def __call__(self) -> MountAllowlist | None:
        return self.load()


def load_mount_allowlist(path: Path) -> MountAllowlist | None:
    """Load and validate the allowlist, merging in the default deny patterns.

    Returns None when the file is missing or invalid, in which case every
    additional mount must be rejected.
    """
    path = path.expanduser()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        allowlist = MountAllowlist.model_validate(data)
    except FileNotFoundError:
        LOGGER.warning("Mount allowlist not found at %s; additional mounts are disabled", path)
        return None
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        LOGGER.error("Invalid mount allowlist at %s: %s", path, exc)
        return None

    merged = list(dict.fromkeys([*DEFAULT_BLOCKED_PATTERNS, *allowlist.blocked_patterns]))
    allowlist.blocked_patterns = merged
    allowlist.source_path = path.resolve()
    LOGGER.info(
        "Loaded mount allowlist: %d roots, %d blocked patterns",
        len(allowlist.allowed_roots),
        len(merged),
    )
    return allowlist


def expand_path(raw: str) -> Path:
    """Expand a leading ``~`` and resolve symlinks."""

    return Path(raw).expanduser().resolve()


def _matching_blocked_pattern(path: Path, patterns: Iterable[str]) -> str | None:
    for pattern in patterns:
        if fnmatch(str(path), pattern) or any(fnmatch(part, pattern) for part in path.parts):
            return pattern
    return None


def _find_allowed_root(path: Path, roots: Iterable[AllowedRoot]) -> AllowedRoot | None:
    for root in roots:
        root_path = expand_path(root.path)
        # Component-wise containment: /home/u/projects-old is not under /home/u/projects.
        if path == root_path or path.is_relative_to(root_path):
            return root
    return None


def _validate_container_name(name: str) -> None:
    pure = PurePosixPath(name)
    if not name.strip():
        raise ValueError("container path is empty")
    if pure.is_absolute():
        raise ValueError("container path must be relative")
    if ".." in pure.parts:
        raise ValueError("container path must not contain '..'")
    if ":" in name:
        raise ValueError("container path must not contain ':'")


def validate_mount(mount: AdditionalMount, is_main: bool, allowlist: MountAllowlist) -> ValidatedMount:
    """Decide whether and how a host path may be exposed to a container.

    Raises:
        MountViolation: if the request must be rejected.
    """
    host = expand_path(mount.host_path)
    container_name = mount.container_path or host.name
    try:
        _validate_container_name(container_name)
    except ValueError as exc:
        raise MountViolation(mount.host_path, str(exc)) from exc

    if not host.exists():
        raise MountViolation(mount.host_path, f"host path does not exist: {host}")

    pattern = _matching_blocked_pattern(host, allowlist.blocked_patterns)
    if pattern is not None:
        raise MountViolation(mount.host_path, f"matches blocked pattern {pattern!r}")

    if allowlist.source_path is not None:
        policy = expand_path(str(allowlist.source_path))
        if policy.is_relative_to(host):
            raise MountViolation(mount.host_path, "would expose the mount allowlist")

    root = _find_allowed_root(host, allowlist.allowed_roots)
    if root is None:
        raise MountViolation(mount.host_path, "not under any allowed root")

    readonly = True
    if not mount.readonly:
        if not root.allow_read_write:
            LOGGER.info("Root %s is read-only; forcing read-only mount for %s", root.path, host)
        elif not is_main and allowlist.non_main_read_only:
            LOGGER.info("Non-main group mount forced read-only: %s", host)
        else:
            readonly = False

    return ValidatedMount(
        host_path=str(host),
        container_path=f"{CONTAINER_EXTRA_DIR}/{container_name}",
        readonly=readonly,
    )


def validate_additional_mounts(
    mounts: Iterable[AdditionalMount],
    group_name: str,
    is_main: bool,
    allowlist: MountAllowlist | None,
) -> list[ValidatedMount]:
    """Validate a group's mount requests, dropping rejected ones."""

    mounts = list(mounts)
    if not mounts:
        return []
    if allowlist is None:
        LOGGER.warning("No mount allowlist; rejecting %d mount(s) for group %s", len(mounts), group_name)
        return []

    accepted: list[ValidatedMount] = []
    for mount in mounts:
        try:
            accepted.append(validate_mount(mount, is_main, allowlist))
        except MountViolation as exc:
            LOGGER.warning("Group %s: %s", group_name, exc)
    return accepted
