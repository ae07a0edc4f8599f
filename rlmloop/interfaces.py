"""
rlmloop.interfaces

Protocol boundaries between the engine and its external collaborators.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol


class ModelBackend(Protocol):
    """
    Synchronous text completion. One call, one response string; retries and
    provider selection are the backend's own business.
    """

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        ...


class BackendFactory(Protocol):
    def __call__(self) -> ModelBackend:
        ...
