"""
rlmloop.engine

The orchestration loop. Each step builds a prompt from the task, history,
environment summary and recursion counters, asks the model once, interprets
the reply, and either finishes or dispatches a tool. ``rlm_call`` runs the
whole loop again on a sub-query inside a child environment at depth + 1;
the child environment is deleted on every exit path.
"""
from __future__ import annotations

import logging
import shutil
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from .backend import build_backend
from .bridge import consume_bridge_request
from .budget import RecursionBudget
from .config import RlmSettings
from .environment import Environment
from .events import EventLogger, NullEventLogger, build_event_logger
from .interfaces import BackendFactory, ModelBackend
from .interpreter import parse_step_response
from .prompts import SYSTEM_PROMPT, build_user_prompt
from .schema import (
    CODE_TOOLS,
    RECURSIVE_TOOL,
    ActionObservation,
    CompletionRequest,
    CompletionResult,
    FinishStep,
    ThoughtProcess,
    ToolCall,
    ToolResult,
)
from .store import EnvironmentStore
from .time_utils import elapsed_ms, now_iso
from .tools import ToolDispatcher

logger = logging.getLogger(__name__)

INITIAL_CONTEXT_KEY = "initial_context"
EXHAUSTED_PREFIX = "Maximum steps reached without complete solution. Last observations: "
FAILURE_PREFIX = "RLM execution failed: "


@dataclass
class LoopOutcome:
    status: Literal["finished", "exhausted"]
    final_answer: str
    total_steps: int
    max_depth_reached: int


@dataclass
class RecursionOutcome:
    result: ToolResult
    loop: Optional[LoopOutcome] = None


@dataclass
class _RunContext:
    request: CompletionRequest
    budget: RecursionBudget
    options: Dict[str, Any]
    timeout_sec: Optional[float]


class RecursiveEngine:
    def __init__(
        self,
        settings: RlmSettings | None = None,
        *,
        store: EnvironmentStore | None = None,
        backend_factory: BackendFactory | None = None,
        event_logger: EventLogger | NullEventLogger | None = None,
    ):
        self.settings = settings or RlmSettings()
        self.store = store or EnvironmentStore.from_settings(self.settings)
        self.events = event_logger or build_event_logger(self.settings.events_path)
        self.dispatcher = ToolDispatcher(self.events)
        self._backend_factory = backend_factory or (lambda: build_backend(self.settings.backend))
        self._backend: ModelBackend | None = None
        self._backend_lock = threading.Lock()

    @property
    def backend(self) -> ModelBackend:
        if self._backend is None:
            with self._backend_lock:
                if self._backend is None:
                    self._backend = self._backend_factory()
        return self._backend

    def complete(self, request: CompletionRequest) -> CompletionResult:
        started_at = now_iso()
        started = time.monotonic()
        budget = RecursionBudget.resolve(request, self.settings)
        env: Environment | None = None
        run_span = uuid.uuid4().hex
        span_open = False

        try:
            env = self._resolve_environment(request)
            self._seed_context(env, request.inline_context)
            self.events.begin_span(
                run_span,
                name="rlm.run",
                inputs={"query": request.query, "env_id": env.id, **asdict(budget)},
            )
            span_open = True
            ctx = _RunContext(
                request=request,
                budget=budget,
                options=self._model_options(request),
                timeout_sec=request.timeout_sec,
            )
            outcome = self._run_loop(ctx, env, request.query, depth=0, span_id=run_span)
        except Exception as exc:  # noqa: BLE001
            logger.exception("RLM execution failed")
            if span_open:
                self.events.end_span(run_span, outputs={"error": str(exc)})
            metadata: Dict[str, Any] = {"error": str(exc)}
            if env is not None:
                metadata.update(self._metadata(env))
            return CompletionResult(
                final_answer=f"{FAILURE_PREFIX}{exc}",
                elapsed_ms=elapsed_ms(started),
                started_at=started_at,
                strategy=self.settings.strategy,
                metadata=metadata,
            )

        self.events.end_span(
            run_span,
            outputs={"status": outcome.status, "total_steps": outcome.total_steps},
        )
        return CompletionResult(
            final_answer=outcome.final_answer,
            total_steps=outcome.total_steps,
            max_depth_reached=outcome.max_depth_reached,
            elapsed_ms=elapsed_ms(started),
            started_at=started_at,
            strategy=self.settings.strategy,
            thought_processes=_thought_processes(env.history()) if request.verbose else None,
            metadata=self._metadata(env),
        )

    def _run_loop(
        self,
        ctx: _RunContext,
        env: Environment,
        query: str,
        *,
        depth: int,
        span_id: str,
    ) -> LoopOutcome:
        budget = ctx.budget
        max_steps = budget.max_steps
        step_offset = env.history_length()
        total_steps = 0
        max_depth_reached = depth
        branches_used = 0

        for step in range(1, max_steps + 1):
            total_steps += 1
            logger.info("RLM step %d/%d at depth %d", step, max_steps, depth)

            prompt = build_user_prompt(
                query,
                env.history(),
                env.environment_info(),
                current_depth=depth,
                max_depth=budget.max_depth,
                max_branching=budget.max_branching,
                branches_used=branches_used,
            )
            decision = parse_step_response(self.backend.complete(SYSTEM_PROMPT, prompt, ctx.options))
            self.events.log(
                "step",
                {"env_id": env.id, "depth": depth, "step": step, "decision": decision.model_dump()},
                span_id=span_id,
            )

            if isinstance(decision, FinishStep):
                logger.info("RLM finished at step %d depth %d", step, depth)
                return LoopOutcome(
                    status="finished",
                    final_answer=decision.answer,
                    total_steps=total_steps,
                    max_depth_reached=max_depth_reached,
                )

            call = ToolCall(tool=decision.tool, code=decision.code, reasoning=decision.thought)
            recursion: RecursionOutcome | None = None
            if decision.tool == RECURSIVE_TOOL:
                recursion = self._recurse(ctx, env, decision.code, depth, branches_used, span_id)
                result = recursion.result
            else:
                result = self.dispatcher.dispatch(env, call, timeout_sec=ctx.timeout_sec, span_id=span_id)
                if decision.tool in CODE_TOOLS:
                    sub_query = consume_bridge_request(env.working_dir)
                    if sub_query is not None:
                        recursion = self._recurse(ctx, env, sub_query, depth, branches_used, span_id)
                        result = recursion.result
                        call = ToolCall(tool=RECURSIVE_TOOL, code=sub_query, reasoning=decision.thought)

            if recursion is not None:
                if recursion.result.ok:
                    branches_used += 1
                if recursion.loop is not None:
                    total_steps += recursion.loop.total_steps
                    max_depth_reached = max(max_depth_reached, recursion.loop.max_depth_reached)

            env.add_observation(
                ActionObservation(
                    step=step_offset + step,
                    thought=decision.thought,
                    action=call,
                    observation=result,
                )
            )
            if not result.ok:
                logger.warning("Tool %s failed at step %d depth %d: %s", call.tool, step, depth, result.error)

        logger.warning("RLM reached max steps (%d) without finishing at depth %d", max_steps, depth)
        return LoopOutcome(
            status="exhausted",
            final_answer=EXHAUSTED_PREFIX + summarize_history(env.history(), 3),
            total_steps=total_steps,
            max_depth_reached=max_depth_reached,
        )

    def _recurse(
        self,
        ctx: _RunContext,
        env: Environment,
        sub_query: str | None,
        depth: int,
        branches_used: int,
        parent_span: str,
    ) -> RecursionOutcome:
        allowed, reason = ctx.budget.can_recurse(
            current_depth=depth,
            branches_used=branches_used,
            sub_query=sub_query,
        )
        if not allowed:
            self.events.log(
                "recursion_denied",
                {"env_id": env.id, "depth": depth, "branches_used": branches_used, "reason": reason},
                span_id=parent_span,
            )
            return RecursionOutcome(result=ToolResult.failure(reason))

        query = (sub_query or "").strip()
        child_depth = depth + 1
        child = self._create_child(env, child_depth)
        span_id = uuid.uuid4().hex
        self.events.begin_span(
            span_id,
            parent_span_id=parent_span,
            name="rlm.recurse",
            inputs={"query": query, "depth": child_depth, "env_id": child.id},
        )
        started = time.monotonic()
        try:
            outcome = self._run_loop(ctx, child, query, depth=child_depth, span_id=span_id)
        finally:
            self.store.delete(child.id)
            self.events.end_span(span_id, outputs={"elapsed_ms": elapsed_ms(started)})

        return RecursionOutcome(
            result=ToolResult.success(outcome.final_answer, elapsed_ms=elapsed_ms(started)),
            loop=outcome,
        )

    def _create_child(self, parent: Environment, depth: int) -> Environment:
        child = self.store.create(f"child-depth-{depth}")
        try:
            full_context = parent.get_full_context()
            if full_context is not None:
                child.set_full_context(full_context)
            initial_context = parent.chunk(INITIAL_CONTEXT_KEY)
            if initial_context is not None:
                child.put_chunk(INITIAL_CONTEXT_KEY, initial_context)
            _copy_working_files(parent.working_dir, child.working_dir)
        except BaseException:
            self.store.delete(child.id)
            raise
        return child

    def _resolve_environment(self, request: CompletionRequest) -> Environment:
        if request.environment_id:
            env = self.store.get(request.environment_id)
            if env is not None:
                return env
            logger.info("Environment %s not found; creating a new one", request.environment_id)
            return self.store.create("auto-created")
        return self.store.create(f"request-{uuid.uuid4()}")

    def _seed_context(self, env: Environment, inline_context: str | None) -> None:
        if inline_context is None or not inline_context.strip():
            return
        env.put_chunk(INITIAL_CONTEXT_KEY, inline_context)
        existing = env.get_full_context()
        if existing is None or not existing.strip():
            env.set_full_context(inline_context)

    def _model_options(self, request: CompletionRequest) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        temperature = request.backend_hints.get("temperature", self.settings.temperature)
        if temperature is not None:
            options["temperature"] = temperature
        model = request.backend_hints.get("model")
        if model:
            options["model"] = model
        return options

    def _metadata(self, env: Environment) -> Dict[str, Any]:
        return {
            "environment_id": env.id,
            "total_observations": env.history_length(),
            "working_dir": str(env.working_dir),
        }


def summarize_history(history: List[ActionObservation], last: int) -> str:
    recent = history[-last:] if last > 0 else []
    return "".join(
        f"\nStep {obs.step}: {obs.action.tool} -> {'success' if obs.observation.ok else 'failed'}"
        for obs in recent
    )


def _thought_processes(history: List[ActionObservation]) -> List[ThoughtProcess]:
    return [
        ThoughtProcess(level=obs.step, description=obs.thought, synthesis=obs.observation.output)
        for obs in history
    ]


def _copy_working_files(source_dir: Path, target_dir: Path) -> None:
    try:
        entries = list(source_dir.iterdir())
    except OSError as exc:
        logger.warning("Failed to list %s for child environment: %s", source_dir, exc)
        return
    for source in entries:
        try:
            if source.is_file():
                shutil.copy2(source, target_dir / source.name)
        except OSError as exc:
            logger.warning("Failed to copy file %s to child environment: %s", source.name, exc)
