import json

import pytest

from rlmloop import cli


def _write_config(tmp_path, responses):
    lines = [
        f"workspace_root: {tmp_path / 'ws'}",
        "exec_timeout_sec: 10",
        "backend:",
        "  kind: scripted",
        "  scripted_responses:",
    ]
    lines += [f"    - {json.dumps(json.dumps(r))}" for r in responses]
    path = tmp_path / "settings.yaml"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_run_prints_answer_and_cleans_workspace(tmp_path, capsys):
    config = _write_config(
        tmp_path,
        [
            {"thought": "look", "tool": "python", "code": "print(len(CONTEXT))", "finished": False},
            {"thought": "done", "tool": "finish", "answer": "eleven chars", "finished": True},
        ],
    )
    context = tmp_path / "ctx.txt"
    context.write_text("hello world", encoding="utf-8")
    events = tmp_path / "events.jsonl"

    cli.main(
        [
            "run",
            "--query",
            "how long is the context?",
            "--config",
            str(config),
            "--context-file",
            str(context),
            "--events",
            str(events),
        ]
    )

    out = capsys.readouterr().out
    assert "run complete" in out
    assert "total_steps: 2" in out
    assert "eleven chars" in out
    assert list((tmp_path / "ws").iterdir()) == []
    assert events.exists()


def test_run_keep_workspace(tmp_path, capsys):
    config = _write_config(tmp_path, [{"tool": "finish", "answer": "ok", "finished": True}])

    cli.main(["run", "--query", "q", "--config", str(config), "--keep-workspace"])

    assert len(list((tmp_path / "ws").iterdir())) == 1


def test_replay(tmp_path, capsys):
    events = tmp_path / "events.jsonl"
    events.write_text(json.dumps({"type": "step", "payload": {}}) + "\n", encoding="utf-8")

    cli.main(["replay", "--events", str(events)])

    summary = json.loads(capsys.readouterr().out)
    assert summary["by_type"] == {"step": 1}


def test_requires_subcommand():
    with pytest.raises(SystemExit):
        cli.main([])
