"""
rlmloop.interpreter

Turn raw model text into a ContinueStep or FinishStep.

Recovery order:
1. whole text as JSON when it starts with ``{``
2. fenced blocks tagged ``json``, first that parses wins
3. outermost ``{...}`` span, shrinking the closing brace leftward
4. fenced ``python``/``bash``/``sh`` code, else a format-correction echo
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, Optional, Tuple

from .schema import DEFAULT_TOOL, FINISH_TOOL, ContinueStep, FinishStep, StepDecision

logger = logging.getLogger(__name__)

FALLBACK_THOUGHT = "non-JSON output, applying fallback"
FORMAT_CORRECTION_COMMAND = (
    "echo 'Formatting error: Respond ONLY with JSON per the schema (no prose, no code fences).'"
)


class StepParseError(ValueError):
    pass


def parse_step_response(raw: Optional[str]) -> StepDecision:
    text = raw or ""
    try:
        node = extract_json_object(text)
    except StepParseError:
        logger.warning("Invalid step response (non-JSON). Applying fallback. Snippet: %s", abbreviate(text, 400))
        return _fallback_decision(text)
    return decision_from_mapping(node)


def decision_from_mapping(node: Dict[str, Any]) -> StepDecision:
    thought = _as_text(node.get("thought"))
    tool = _as_text(node.get("tool")).strip().lower()

    # The tool name wins over a missing or false "finished" flag.
    finished = _as_bool(node.get("finished")) or tool == FINISH_TOOL
    if finished:
        answer = _as_text(node["answer"]) if "answer" in node else json.dumps(node, ensure_ascii=False)
        return FinishStep(thought=thought, answer=answer)

    return ContinueStep(
        thought=thought,
        tool=tool or DEFAULT_TOOL,
        code=_as_text(node.get("code")),
    )


def extract_json_object(text: str) -> Dict[str, Any]:
    trimmed = text.strip()
    if trimmed.startswith("{"):
        parsed = _loads_object(trimmed)
        if parsed is not None:
            return parsed

    for header, body in iter_fenced_blocks(trimmed):
        if "json" not in header:
            continue
        parsed = _loads_object(body)
        if parsed is not None:
            return parsed

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    while first != -1 and last >= first:
        parsed = _loads_object(trimmed[first : last + 1])
        if parsed is not None:
            return parsed
        last = trimmed.rfind("}", 0, last)

    raise StepParseError("no JSON object found in response")


def iter_fenced_blocks(text: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(lowercased header, stripped body)`` for each closed ``` fence."""
    start = text.find("```")
    while start != -1:
        end = text.find("```", start + 3)
        if end == -1:
            return
        header_end = text.find("\n", start + 3)
        if header_end != -1 and header_end < end:
            header = text[start + 3 : header_end].strip().lower()
            body_start = header_end + 1
        else:
            header = ""
            body_start = start + 3
        yield header, text[body_start:end].strip()
        start = text.find("```", end + 3)


def extract_fenced_code(text: str) -> Optional[Tuple[str, str]]:
    for header, body in iter_fenced_blocks(text):
        if "python" in header:
            return "python", body
        if "bash" in header or "sh" in header:
            return "bash", body
    return None


def abbreviate(value: Optional[str], max_len: int) -> str:
    if value is None:
        return "null"
    if len(value) <= max_len:
        return value
    if max_len <= 3:
        return value[:max_len]
    return value[: max_len - 3] + "..."


def _fallback_decision(text: str) -> ContinueStep:
    fenced = extract_fenced_code(text)
    if fenced is not None:
        tool, code = fenced
        return ContinueStep(thought=FALLBACK_THOUGHT, tool=tool, code=code)
    return ContinueStep(thought=FALLBACK_THOUGHT, tool="bash", code=FORMAT_CORRECTION_COMMAND)


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate, strict=False)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False
