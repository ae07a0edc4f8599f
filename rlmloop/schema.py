"""
rlmloop.schema

Typed schemas for tool calls, observations, step decisions, and the engine
request/result boundary. Observations are frozen so recorded history is
auditable and replayable.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .time_utils import now_ms

CODE_TOOLS = frozenset({"python"})
RECURSIVE_TOOL = "rlm_call"
FINISH_TOOL = "finish"
DEFAULT_TOOL = "python"


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: str
    code: str = ""
    reasoning: str = ""


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    output: str = ""
    error: str = ""
    elapsed_ms: int = 0

    @classmethod
    def success(cls, output: str = "", *, elapsed_ms: int = 0) -> "ToolResult":
        return cls(ok=True, output=output, elapsed_ms=elapsed_ms)

    @classmethod
    def failure(cls, error: str, *, output: str = "", elapsed_ms: int = 0) -> "ToolResult":
        return cls(ok=False, output=output, error=error, elapsed_ms=elapsed_ms)


class ActionObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int = Field(..., ge=1, description="1-based step index within the environment history.")
    thought: str = ""
    action: ToolCall
    observation: ToolResult
    ts_ms: int = Field(default_factory=now_ms)


class ContinueStep(BaseModel):
    kind: Literal["continue"] = "continue"
    thought: str = ""
    tool: str = DEFAULT_TOOL
    code: str = ""


class FinishStep(BaseModel):
    kind: Literal["finish"] = "finish"
    thought: str = ""
    answer: str = ""


StepDecision = Union[ContinueStep, FinishStep]


class ThoughtProcess(BaseModel):
    level: int
    description: str = ""
    sub_problems: List[str] = Field(default_factory=list)
    solutions: List[str] = Field(default_factory=list)
    synthesis: str = ""


class CompletionRequest(BaseModel):
    """
    Engine boundary input. ``None`` overrides fall back to settings.
    """

    query: str
    environment_id: Optional[str] = None
    inline_context: Optional[str] = None
    max_depth: Optional[int] = Field(default=None, ge=0)
    max_branching: Optional[int] = Field(default=None, ge=0)
    strategy: str = "depth-first"
    verbose: bool = False
    timeout_sec: Optional[float] = Field(default=None, gt=0)
    backend_hints: Dict[str, Any] = Field(default_factory=dict)


class CompletionResult(BaseModel):
    final_answer: str
    total_steps: int = 0
    max_depth_reached: int = 0
    elapsed_ms: int = 0
    started_at: str
    strategy: str
    thought_processes: Optional[List[ThoughtProcess]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
