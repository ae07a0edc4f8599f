"""
rlmloop

Recursive, tool-using reasoning engine with sandboxed per-call workspaces.
"""
from __future__ import annotations

from .config import RlmSettings, load_settings
from .engine import RecursiveEngine
from .schema import CompletionRequest, CompletionResult
from .store import EnvironmentStore

__all__ = [
    "CompletionRequest",
    "CompletionResult",
    "EnvironmentStore",
    "RecursiveEngine",
    "RlmSettings",
    "load_settings",
]
