from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Optional

import pytest

from rlmloop.config import RlmSettings
from rlmloop.engine import RecursiveEngine
from rlmloop.store import EnvironmentStore

_DEPTH = re.compile(r"currentDepth=(\d+)")
_TASK = re.compile(r"TASK:\n(.*?)\n\nRECURSION:", re.DOTALL)


def step(tool: str, code: str = "", thought: str = "working") -> str:
    return json.dumps({"thought": thought, "tool": tool, "code": code, "finished": False})


def finish(answer: str, thought: str = "done") -> str:
    return json.dumps({"thought": thought, "tool": "finish", "answer": answer, "finished": True})


class RoutingBackend:
    """
    Fake model: ``route(task, depth, call_index)`` picks the reply. Nested
    loops share one backend, so routing keys off the prompt rather than order.
    """

    def __init__(self, route: Callable[[str, int, int], str]):
        self._route = route
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system_prompt: str, user_prompt: str, options: Optional[Dict[str, Any]] = None) -> str:
        depth_match = _DEPTH.search(user_prompt)
        task_match = _TASK.search(user_prompt)
        depth = int(depth_match.group(1)) if depth_match else -1
        task = task_match.group(1) if task_match else ""
        self.calls.append({"task": task, "depth": depth, "prompt": user_prompt, "options": dict(options or {})})
        return self._route(task, depth, len(self.calls))


@pytest.fixture
def settings(tmp_path) -> RlmSettings:
    return RlmSettings(workspace_root=str(tmp_path / "workspaces"), exec_timeout_sec=10)


@pytest.fixture
def store(settings) -> EnvironmentStore:
    env_store = EnvironmentStore.from_settings(settings)
    yield env_store
    env_store.close()


@pytest.fixture
def env(store):
    return store.create("test")


@pytest.fixture
def make_engine(settings, store):
    def _make(backend) -> RecursiveEngine:
        return RecursiveEngine(settings, store=store, backend_factory=lambda: backend)

    return _make
