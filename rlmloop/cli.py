"""
rlmloop.cli

CLI entrypoint.
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from rich.console import Console

from .config import load_settings
from .engine import RecursiveEngine
from .events import replay_events
from .schema import CompletionRequest

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rlmloop")
    parser.add_argument("--log-level", default="WARNING", help="python logging level")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run_p = sub.add_parser("run", help="answer a query with the recursive tool-using loop")
    run_p.add_argument("--query", required=True)
    run_p.add_argument("--config", default=None, help="settings yaml path")
    run_p.add_argument("--context-file", default=None, help="file whose text seeds the environment context")
    run_p.add_argument("--max-depth", type=int, default=None)
    run_p.add_argument("--max-branching", type=int, default=None)
    run_p.add_argument("--timeout-sec", type=float, default=None, help="per tool execution timeout")
    run_p.add_argument("--model", default=None, help="backend model hint")
    run_p.add_argument("--events", default=None, help="write a JSONL event log to this path")
    run_p.add_argument("--verbose", action="store_true", help="include the thought process in the result")
    run_p.add_argument(
        "--keep-workspace",
        action="store_true",
        help="leave the top-level environment workspace on disk after the run",
    )

    replay_p = sub.add_parser("replay", help="aggregate an event log into counts")
    replay_p.add_argument("--events", required=True)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "run":
        settings = load_settings(args.config)
        if args.events:
            settings = settings.model_copy(update={"events_path": args.events})
        inline_context = None
        if args.context_file:
            inline_context = Path(args.context_file).read_text(encoding="utf-8")

        engine = RecursiveEngine(settings)
        request = CompletionRequest(
            query=args.query,
            inline_context=inline_context,
            max_depth=args.max_depth,
            max_branching=args.max_branching,
            timeout_sec=args.timeout_sec,
            verbose=args.verbose,
            backend_hints={"model": args.model} if args.model else {},
        )
        try:
            result = engine.complete(request)
        finally:
            if not args.keep_workspace:
                engine.store.close()

        console.print("[green]run complete[/green]")
        console.print(f"total_steps: {result.total_steps}")
        console.print(f"max_depth_reached: {result.max_depth_reached}")
        console.print(f"elapsed_ms: {result.elapsed_ms}")
        console.print("answer:")
        console.print(result.final_answer, highlight=False, markup=False)
        if args.verbose:
            console.print(result.model_dump_json(indent=2), highlight=False, markup=False)
        return

    if args.cmd == "replay":
        summary = replay_events(args.events)
        console.print(json.dumps(summary, indent=2))
        return

    raise SystemExit(2)


if __name__ == "__main__":
    main()
