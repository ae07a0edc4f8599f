"""
rlmloop.budget

Step, depth, and branching limits for one recursive run.
"""
from __future__ import annotations

from dataclasses import dataclass

from .config import RlmSettings
from .schema import CompletionRequest

STEPS_PER_DEPTH = 10


@dataclass(frozen=True)
class RecursionBudget:
    max_depth: int
    max_branching: int

    @classmethod
    def resolve(cls, request: CompletionRequest, settings: RlmSettings) -> "RecursionBudget":
        max_depth = request.max_depth if request.max_depth is not None else settings.max_depth
        max_branching = request.max_branching if request.max_branching is not None else settings.max_branching
        return cls(max_depth=max_depth, max_branching=max_branching)

    @property
    def max_steps(self) -> int:
        return max(1, self.max_depth * STEPS_PER_DEPTH)

    def can_recurse(self, *, current_depth: int, branches_used: int, sub_query: str | None) -> tuple[bool, str]:
        if current_depth + 1 > self.max_depth:
            return False, "Max recursion depth reached"
        if branches_used >= self.max_branching:
            return False, "Max branching reached at this depth"
        if sub_query is None or not sub_query.strip():
            return False, "rlm_call requires a non-empty sub-query"
        return True, ""
