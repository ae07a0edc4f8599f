"""
rlmloop.environment

Isolated workspace for one reasoning call: working directory, context chunks,
a file-backed full context, the action/observation history, and the tool
operations that run inside it.
"""
from __future__ import annotations

import logging
import shutil
import threading
import time
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from .bridge import CONTEXT_FILENAME, bash_prelude, python_prelude
from .path_utils import resolve_workspace_path
from .schema import ActionObservation, ToolResult
from .shell import CommandResult, run_command, run_shell

logger = logging.getLogger(__name__)

SEARCH_WINDOW_CHARS = 400
SEARCH_MAX_CHUNK_MATCHES = 5
SCRIPT_SUFFIXES = {"python": ".py", "bash": ".sh"}


class WorkspaceError(RuntimeError):
    """Raised when an environment workspace cannot be created."""


class Environment:
    def __init__(
        self,
        env_id: str,
        label: str,
        root: str | Path,
        *,
        exec_timeout_sec: float = 30,
        python_bin: str = "python3",
        bash_bin: str = "bash",
        reader_grace_sec: float = 1.0,
    ):
        self.id = env_id
        self.label = label
        self.root = Path(root).resolve()
        self.exec_timeout_sec = exec_timeout_sec
        self.python_bin = python_bin
        self.bash_bin = bash_bin
        self.reader_grace_sec = reader_grace_sec

        self._lock = threading.RLock()
        self._chunks: Dict[str, str] = {}
        self._history: List[ActionObservation] = []
        self._closed = threading.Event()

        try:
            self.root.mkdir(parents=True, exist_ok=False)
            self._context_path: Optional[Path] = self.root / CONTEXT_FILENAME
            self._context_path.write_text("", encoding="utf-8")
        except OSError as exc:
            raise WorkspaceError(f"failed to create workspace {self.root}: {exc}") from exc
        self._context_size = 0
        logger.info("Created workspace %s for environment %s (%s)", self.root, env_id, label)

    @property
    def working_dir(self) -> Path:
        return self.root

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    # Context chunks and full context

    def chunk(self, key: str) -> Optional[str]:
        with self._lock:
            return self._chunks.get(key)

    def put_chunk(self, key: str, value: str) -> None:
        with self._lock:
            self._chunks[key] = value

    def chunk_count(self) -> int:
        with self._lock:
            return len(self._chunks)

    def set_full_context(self, context: Optional[str]) -> None:
        target = self.root / CONTEXT_FILENAME
        with self._lock:
            if context is None:
                target.write_text("", encoding="utf-8")
                self._context_path = None
                self._context_size = 0
                return
            target.write_text(context, encoding="utf-8")
            self._context_path = target
            self._context_size = len(context)

    def get_full_context(self) -> Optional[str]:
        with self._lock:
            path = self._context_path
        if path is None or not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to read full context for %s: %s", self.id, exc)
            return None

    def context_size(self) -> int:
        with self._lock:
            return self._context_size

    # Tool operations

    def run_script(self, language: str, code: str, *, timeout_sec: float | None = None) -> ToolResult:
        suffix = SCRIPT_SUFFIXES.get(language)
        if suffix is None:
            return ToolResult.failure(f"unsupported script language: {language}")
        if not code or not code.strip():
            return ToolResult.failure(f"{language} requires non-empty code")
        if self.closed:
            return ToolResult.failure("environment closed")

        if language == "python":
            prelude = python_prelude(self.root)
            interpreter = self.python_bin
        else:
            prelude = bash_prelude(self.root, python_bin=self.python_bin)
            interpreter = self.bash_bin

        script_path = self.root / f"script_{time.time_ns()}_{uuid.uuid4().hex[:8]}{suffix}"
        try:
            script_path.write_text(prelude + (code or ""), encoding="utf-8")
        except OSError as exc:
            return ToolResult.failure(f"failed to write script: {exc}")

        result = run_command(
            [interpreter, str(script_path)],
            cwd=self.root,
            timeout_sec=timeout_sec or self.exec_timeout_sec,
            reader_grace_sec=self.reader_grace_sec,
        )
        return _to_tool_result(result)

    def run_python(self, code: str, *, timeout_sec: float | None = None) -> ToolResult:
        return self.run_script("python", code, timeout_sec=timeout_sec)

    def run_shell(self, command: str, *, timeout_sec: float | None = None) -> ToolResult:
        if self.closed:
            return ToolResult.failure("environment closed")
        if not command or not command.strip():
            return ToolResult.failure("bash requires a non-empty command")
        result = run_shell(
            command,
            cwd=self.root,
            timeout_sec=timeout_sec or self.exec_timeout_sec,
            bash_bin=self.bash_bin,
            reader_grace_sec=self.reader_grace_sec,
        )
        return _to_tool_result(result)

    def write_file(self, name: str, content: Optional[str]) -> ToolResult:
        if name is None or not name.strip():
            return ToolResult.failure("write_file requires a non-empty filename")
        try:
            path = self._resolve_path(name)
            path.parent.mkdir(parents=True, exist_ok=True)
            safe_content = "" if content is None else content
            path.write_text(safe_content, encoding="utf-8")
        except (OSError, ValueError) as exc:
            return ToolResult.failure(str(exc))

        if path == self.root / CONTEXT_FILENAME:
            with self._lock:
                self._context_path = path
                self._context_size = len(safe_content)
        return ToolResult.success(f"File written: {path.relative_to(self.root)}")

    def read_file(self, name: str) -> ToolResult:
        if name is None or not name.strip():
            return ToolResult.failure("read_file requires a non-empty filename")
        try:
            content = self._resolve_path(name).read_text(encoding="utf-8")
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            return ToolResult.failure(str(exc))
        return ToolResult.success(content)

    def search(self, query: str) -> str:
        if query is None or not query.strip():
            return ""
        needle = query.lower()
        matches: List[str] = []

        snippet = self._find_in_full_context(needle)
        if snippet is not None:
            matches.append(f"full_context: {snippet}")

        with self._lock:
            chunks = list(self._chunks.items())
        chunk_hits = [
            f"{key}: {value}" for key, value in chunks if value is not None and needle in value.lower()
        ]
        matches.extend(chunk_hits[:SEARCH_MAX_CHUNK_MATCHES])
        return "\n\n".join(matches)

    # History

    def add_observation(self, observation: ActionObservation) -> None:
        with self._lock:
            self._history.append(observation)

    def history(self) -> List[ActionObservation]:
        with self._lock:
            return list(self._history)

    def history_length(self) -> int:
        with self._lock:
            return len(self._history)

    # Introspection

    def list_files(self) -> List[str]:
        try:
            return sorted(p.name for p in self.root.iterdir())
        except OSError:
            return []

    def environment_info(self) -> str:
        return (
            f"Environment ID: {self.id}\n"
            f"Working Directory: {self.root}\n"
            f"Files: {self.list_files()}\n"
            f"Context Size: {self.context_size()}\n"
            f"Context Chunks: {self.chunk_count()}\n"
            f"History Steps: {self.history_length()}\n"
        )

    def close(self) -> None:
        self._closed.set()
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove workspace %s: %s", self.root, exc)

    def _resolve_path(self, raw: str) -> Path:
        return resolve_workspace_path(self.root, raw)

    def _find_in_full_context(self, needle: str) -> Optional[str]:
        context = self.get_full_context()
        if not context:
            return None
        index = context.lower().find(needle)
        if index < 0:
            return None
        half = SEARCH_WINDOW_CHARS // 2
        start = max(0, index - half)
        end = min(len(context), index + half)
        return context[start:end]


def _to_tool_result(result: CommandResult) -> ToolResult:
    return ToolResult(
        ok=result.ok,
        output=result.stdout,
        error=result.stderr,
        elapsed_ms=result.elapsed_ms,
    )
