"""
rlmloop.bridge

Recursion bridge between sandboxed scripts and the orchestration loop.

Scripts started by ``Environment.run_script`` get a prelude defining
``rlm_call(sub_query)``. Calling it writes ``{"tool": "rlm_call", "code": ...}``
to a single-slot mailbox file in the workspace; the loop consumes and deletes
that file after each code-execution step and runs the recursive call itself.
Only the last request written during one script run is honored.
"""
from __future__ import annotations

import json
import logging
import shlex
from pathlib import Path
from typing import Optional

from .schema import RECURSIVE_TOOL

logger = logging.getLogger(__name__)

CONTEXT_FILENAME = "context.txt"
BRIDGE_FILENAME = "rlm_tool_request.json"
BRIDGE_ACK = "RLM_TOOL_REQUEST: rlm_call scheduled"

_PYTHON_PRELUDE = """\
from pathlib import Path as _RlmPath
import json as _rlm_json

CONTEXT_PATH = _RlmPath({context_path})
CONTEXT = CONTEXT_PATH.read_text(encoding="utf-8") if CONTEXT_PATH.exists() else ""
WORKDIR = {workdir}


def rlm_call(sub_query):
    try:
        _req = {{"tool": "rlm_call", "code": str(sub_query)}}
        _RlmPath(WORKDIR, {bridge_name}).write_text(_rlm_json.dumps(_req), encoding="utf-8")
        print({ack})
    except Exception as _exc:
        print(f"ERROR: failed to schedule rlm_call: {{_exc}}")

"""

_BASH_PRELUDE = """\
RLM_CONTEXT_PATH={context_path}
RLM_WORKDIR={workdir}
export RLM_CONTEXT_PATH RLM_WORKDIR

rlm_call() {{
  {python_bin} -c 'import json, sys; print(json.dumps({{"tool": "rlm_call", "code": sys.argv[1]}}))' "$1" \\
    > "$RLM_WORKDIR"/{bridge_name} && echo {ack}
}}

"""


def python_prelude(workdir: str | Path) -> str:
    root = Path(workdir).resolve()
    return _PYTHON_PRELUDE.format(
        context_path=json.dumps(str(root / CONTEXT_FILENAME)),
        workdir=json.dumps(str(root)),
        bridge_name=json.dumps(BRIDGE_FILENAME),
        ack=json.dumps(BRIDGE_ACK),
    )


def bash_prelude(workdir: str | Path, *, python_bin: str = "python3") -> str:
    root = Path(workdir).resolve()
    return _BASH_PRELUDE.format(
        context_path=shlex.quote(str(root / CONTEXT_FILENAME)),
        workdir=shlex.quote(str(root)),
        python_bin=shlex.quote(python_bin),
        bridge_name=shlex.quote(BRIDGE_FILENAME),
        ack=shlex.quote(BRIDGE_ACK),
    )


def consume_bridge_request(workdir: str | Path) -> Optional[str]:
    """
    Return the pending sub-query, if any, and empty the mailbox.

    The mailbox file is deleted even when its content cannot be parsed.
    """
    request_path = Path(workdir) / BRIDGE_FILENAME
    if not request_path.is_file():
        return None
    try:
        raw = request_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to read rlm_call request %s: %s", request_path, exc)
        raw = None
    finally:
        try:
            request_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove rlm_call request %s: %s", request_path, exc)
    if raw is None:
        return None

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring malformed rlm_call request: %s", exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring rlm_call request: expected object, got %s", type(payload).__name__)
        return None
    if str(payload.get("tool", "")).lower() != RECURSIVE_TOOL:
        logger.warning("Ignoring bridge request for unsupported tool: %r", payload.get("tool"))
        return None
    code = payload.get("code")
    return "" if code is None else str(code)
