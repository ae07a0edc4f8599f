"""
rlmloop.tools

ToolDispatcher: maps a tool name from a model step onto an Environment
operation, normalizing the loosely formatted file-tool arguments.
"""
from __future__ import annotations

import re
from typing import Callable, Dict, Optional, Tuple

from .environment import Environment
from .events import EventLogger, NullEventLogger
from .schema import FINISH_TOOL, RECURSIVE_TOOL, ToolCall, ToolResult

_READ_FILE_CALL = re.compile(r"^\s*read_file\s*\(\s*['\"](.+?)['\"]\s*\)\s*;?\s*$", re.DOTALL)
_QUOTES = ("'", '"')


class ToolDispatcher:
    def __init__(self, event_logger: EventLogger | NullEventLogger | None = None):
        self.event_logger = event_logger or NullEventLogger()
        self._handlers: Dict[str, Callable[[Environment, str, Optional[float]], ToolResult]] = {
            "python": self._python,
            "bash": self._bash,
            "sh": self._bash,
            "write_file": self._write_file,
            "read_file": self._read_file,
            "search": self._search,
        }

    def dispatch(
        self,
        env: Environment,
        call: ToolCall,
        *,
        timeout_sec: float | None = None,
        span_id: str | None = None,
    ) -> ToolResult:
        self.event_logger.log(
            "tool_call",
            {"env_id": env.id, **call.model_dump()},
            span_id=span_id,
        )
        try:
            result = self._dispatch(env, call, timeout_sec)
        except Exception as exc:  # noqa: BLE001
            result = ToolResult.failure(f"{call.tool} failed: {exc}")
        self.event_logger.log(
            "tool_result",
            {"env_id": env.id, "tool": call.tool, **result.model_dump()},
            span_id=span_id,
        )
        return result

    def _dispatch(self, env: Environment, call: ToolCall, timeout_sec: float | None) -> ToolResult:
        tool = (call.tool or "").strip().lower()
        if tool in {RECURSIVE_TOOL, FINISH_TOOL}:
            return ToolResult.failure(f"{tool} is handled by the orchestration loop, not dispatched")
        handler = self._handlers.get(tool)
        if handler is None:
            return ToolResult.failure(f"Unknown tool: {call.tool}")
        return handler(env, call.code or "", timeout_sec)

    def _python(self, env: Environment, code: str, timeout_sec: float | None) -> ToolResult:
        return env.run_python(code, timeout_sec=timeout_sec)

    def _bash(self, env: Environment, code: str, timeout_sec: float | None) -> ToolResult:
        return env.run_shell(code, timeout_sec=timeout_sec)

    def _write_file(self, env: Environment, code: str, timeout_sec: float | None) -> ToolResult:
        filename, content = parse_write_file_arg(code)
        return env.write_file(filename, content)

    def _read_file(self, env: Environment, code: str, timeout_sec: float | None) -> ToolResult:
        return env.read_file(normalize_read_file_arg(code))

    def _search(self, env: Environment, code: str, timeout_sec: float | None) -> ToolResult:
        return ToolResult.success(env.search(code))


def normalize_read_file_arg(code: Optional[str]) -> str:
    """Accept ``name``, ``"name"``, or ``read_file("name")``."""
    if code is None:
        return ""
    text = code.strip()
    match = _READ_FILE_CALL.match(text)
    if match:
        return match.group(1)
    if len(text) >= 2 and text[0] in _QUOTES and text[-1] == text[0]:
        return text[1:-1]
    return text


def parse_write_file_arg(code: Optional[str]) -> Tuple[str, str]:
    """
    Split a write_file payload into ``(filename, content)``.

    ``write_file("name", "content")`` is preferred so newlines inside the
    content never split it. Otherwise the first line is the filename and the
    rest is the content; a single line is a filename with empty content.
    """
    raw = code or ""
    text = raw.strip()

    parsed = _parse_write_file_call(text)
    if parsed is not None:
        return parsed

    newline = raw.find("\n")
    if newline >= 0:
        return raw[:newline].strip(), raw[newline + 1 :]
    return text, ""


def _parse_write_file_call(text: str) -> Optional[Tuple[str, str]]:
    if not text.lower().startswith("write_file"):
        return None
    open_idx = text.find("(")
    close_idx = text.rfind(")")
    if open_idx == -1 or close_idx <= open_idx:
        return None

    args = text[open_idx + 1 : close_idx]
    i = 0
    while i < len(args) and args[i].isspace():
        i += 1
    if i >= len(args) or args[i] not in _QUOTES:
        return None

    quote = args[i]
    i += 1
    filename_chars = []
    escaped = False
    while i < len(args):
        ch = args[i]
        i += 1
        if escaped:
            filename_chars.append(ch)
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == quote:
            break
        filename_chars.append(ch)

    comma = args.find(",", i)
    content = args[comma + 1 :].strip() if comma != -1 else ""
    if len(content) >= 2 and content[0] in _QUOTES and content[-1] == content[0]:
        content = content[1:-1]
    content = content.replace("\\n", "\n").replace("\\t", "\t").replace("\\r", "\r")
    return "".join(filename_chars), content
