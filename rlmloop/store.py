"""
rlmloop.store

Process-wide registry of live environments. The store owns every
Environment it creates; deleting an id releases its workspace.
"""
from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from .config import RlmSettings
from .environment import Environment
from .path_utils import workspace_dirname

logger = logging.getLogger(__name__)


class EnvironmentStore:
    def __init__(
        self,
        workspace_root: str | Path,
        *,
        exec_timeout_sec: float = 30,
        python_bin: str = "python3",
        bash_bin: str = "bash",
        reader_grace_sec: float = 1.0,
    ):
        self.workspace_root = Path(workspace_root).resolve()
        self._exec_timeout_sec = exec_timeout_sec
        self._python_bin = python_bin
        self._bash_bin = bash_bin
        self._reader_grace_sec = reader_grace_sec
        self._lock = threading.Lock()
        self._envs: Dict[str, Environment] = {}

    @classmethod
    def from_settings(cls, settings: RlmSettings) -> "EnvironmentStore":
        return cls(
            settings.workspace_root,
            exec_timeout_sec=settings.exec_timeout_sec,
            python_bin=settings.python_bin,
            bash_bin=settings.bash_bin,
            reader_grace_sec=settings.reader_grace_sec,
        )

    def create(self, label: str) -> Environment:
        env_id = str(uuid.uuid4())
        root = self.workspace_root / workspace_dirname(env_id)
        # Ids are unique, so workspaces are created outside the lock.
        env = Environment(
            env_id,
            label,
            root,
            exec_timeout_sec=self._exec_timeout_sec,
            python_bin=self._python_bin,
            bash_bin=self._bash_bin,
            reader_grace_sec=self._reader_grace_sec,
        )
        with self._lock:
            self._envs[env_id] = env
        return env

    def get(self, env_id: str) -> Optional[Environment]:
        with self._lock:
            return self._envs.get(env_id)

    def delete(self, env_id: str) -> None:
        with self._lock:
            env = self._envs.pop(env_id, None)
        if env is None:
            return
        env.close()
        logger.info("Deleted environment %s (%s)", env_id, env.label)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._envs)

    def close(self) -> None:
        for env_id in self.ids():
            self.delete(env_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._envs)
