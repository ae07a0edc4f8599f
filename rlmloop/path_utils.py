"""
rlmloop.path_utils

Workspace path helpers: containment for file tools and directory naming.
"""
from __future__ import annotations

import re
from pathlib import Path

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def resolve_workspace_path(root: str | Path, name: str) -> Path:
    """Resolve ``name`` against ``root``; ValueError if blank or outside it."""
    if not name or not name.strip():
        raise ValueError("path must be non-empty")
    workspace = Path(root).resolve()
    resolved = (workspace / name.strip()).resolve()
    try:
        resolved.relative_to(workspace)
    except ValueError:
        raise ValueError(f"path escapes workspace: {name}") from None
    return resolved


def workspace_dirname(env_id: str, *, max_len: int = 64) -> str:
    return "rlm_env_" + _UNSAFE_CHARS.sub("_", env_id)[:max_len]
