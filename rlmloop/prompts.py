"""
rlmloop.prompts

System prompt and per-step user prompt for the orchestration loop.
"""
from __future__ import annotations

from typing import List

from .bridge import CONTEXT_FILENAME
from .schema import ActionObservation

SYSTEM_PROMPT = f"""\
You are an AI assistant that solves problems by writing and executing code in a persistent environment.

You have access to the following tools:
- python: Execute Python code
- bash: Execute bash commands
- write_file: Write content to a file
- read_file: Read content from a file
- search: Search through available context
- rlm_call: Make a recursive call with a sub-query
- finish: Return the final answer

For each step, think about what action to take next, choose a tool, provide the
code or command, observe the result, and decide the next action. When the
problem is solved, use the 'finish' tool with your answer.

The full context is stored in the environment, available as:
- a file named "{CONTEXT_FILENAME}" in the working directory
- a Python variable CONTEXT (auto-loaded for python tool calls)

To solve a sub-problem, use the rlm_call tool with the sub-query in the "code"
field. Do not include the full context in the sub-query. Python code may also
call rlm_call("sub-query"); the call runs after the python step finishes.

OUTPUT REQUIREMENTS:
- Respond ONLY with a single valid JSON object, with no prose and no code fences.
- To continue: {{"thought": "...", "tool": "tool_name", "code": "code or command", "finished": false}}
- To finish: {{"thought": "summary", "tool": "finish", "answer": "final answer", "finished": true}}
- Valid tool_name values: "python", "bash", "write_file", "read_file", "search", "rlm_call", "finish".

Tool input formats:
- write_file: "FILENAME\\nCONTENT" or write_file("FILENAME", "CONTENT")
- read_file: "FILENAME" or read_file("FILENAME")
"""


def build_user_prompt(
    task: str,
    history: List[ActionObservation],
    environment_info: str,
    *,
    current_depth: int,
    max_depth: int,
    max_branching: int,
    branches_used: int,
) -> str:
    parts = [
        f"TASK:\n{task}\n",
        (
            "RECURSION:\n"
            f"currentDepth={current_depth}, maxDepth={max_depth}, "
            f"maxBranching={max_branching}, branchingUsed={branches_used}\n"
        ),
        f"ENVIRONMENT:\n{environment_info}",
    ]
    if history:
        lines = ["PREVIOUS ACTIONS:"]
        for obs in history:
            observed = obs.observation.output if obs.observation.ok else f"ERROR: {obs.observation.error}"
            lines.append(
                f"Step {obs.step}:\n"
                f"Thought: {obs.thought}\n"
                f"Action: {obs.action.tool}\n"
                f"Code: {obs.action.code}\n"
                f"Observation: {observed}\n"
            )
        parts.append("\n".join(lines))
    parts.append("What is your next action?")
    return "\n".join(parts)
