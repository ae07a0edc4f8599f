import json

import pytest

from rlmloop.bridge import BRIDGE_FILENAME, CONTEXT_FILENAME
from rlmloop.environment import Environment, WorkspaceError
from rlmloop.schema import ActionObservation, ToolCall, ToolResult


def test_new_environment_has_empty_context_file(env):
    assert (env.working_dir / CONTEXT_FILENAME).read_text() == ""
    assert env.context_size() == 0
    assert env.get_full_context() == ""


def test_workspace_creation_failure_raises(tmp_path):
    existing = tmp_path / "taken"
    existing.mkdir()

    with pytest.raises(WorkspaceError):
        Environment("id", "label", existing)


def test_write_then_read_round_trip(env):
    assert env.write_file("notes.txt", "A\nB").ok

    result = env.read_file("notes.txt")

    assert result.ok is True
    assert result.output == "A\nB"


def test_write_file_creates_parent_directories(env):
    result = env.write_file("nested/dir/out.txt", "data")

    assert result.ok is True
    assert (env.working_dir / "nested" / "dir" / "out.txt").read_text() == "data"


def test_write_file_rejects_blank_name(env):
    result = env.write_file("   ", "data")

    assert result.ok is False
    assert "non-empty filename" in result.error


def test_write_file_none_content_is_empty(env):
    assert env.write_file("empty.txt", None).ok
    assert (env.working_dir / "empty.txt").read_text() == ""


def test_writing_context_file_updates_full_context(env):
    env.write_file(CONTEXT_FILENAME, "the whole story")

    assert env.get_full_context() == "the whole story"
    assert env.context_size() == len("the whole story")


def test_file_paths_cannot_escape_workspace(env):
    result = env.write_file("../outside.txt", "nope")

    assert result.ok is False
    assert not (env.working_dir.parent / "outside.txt").exists()


def test_read_missing_file_is_a_failed_result(env):
    result = env.read_file("missing.txt")

    assert result.ok is False
    assert result.error


def test_set_full_context_persists_to_file_and_clears(env):
    env.set_full_context("persisted")
    assert (env.working_dir / CONTEXT_FILENAME).read_text() == "persisted"
    assert env.context_size() == 9

    env.set_full_context(None)
    assert env.get_full_context() is None
    assert env.context_size() == 0
    assert (env.working_dir / CONTEXT_FILENAME).read_text() == ""


def test_search_full_context_window(env):
    text = "a" * 500 + "NEEDLE" + "b" * 500
    env.set_full_context(text)

    result = env.search("needle")

    assert result.startswith("full_context: ")
    snippet = result[len("full_context: "):]
    assert "NEEDLE" in snippet
    assert len(snippet) == 400


def test_search_chunks_limited_to_five(env):
    for idx in range(7):
        env.put_chunk(f"doc{idx}", f"apple pie number {idx}")
    env.put_chunk("other", "banana")

    result = env.search("APPLE")

    entries = result.split("\n\n")
    assert len(entries) == 5
    assert all(entry.startswith("doc") for entry in entries)
    assert "banana" not in result


def test_search_empty_query_returns_empty(env):
    env.set_full_context("anything")
    assert env.search("") == ""
    assert env.search("   ") == ""


def test_history_is_a_snapshot(env):
    observation = ActionObservation(
        step=1,
        thought="t",
        action=ToolCall(tool="bash", code="echo"),
        observation=ToolResult.success("ok"),
    )
    env.add_observation(observation)
    snapshot = env.history()

    env.add_observation(observation.model_copy(update={"step": 2}))

    assert len(snapshot) == 1
    assert env.history_length() == 2


def test_environment_info_summarizes_state(env):
    env.put_chunk("k", "v")
    env.write_file("a.txt", "x")

    info = env.environment_info()

    assert f"Environment ID: {env.id}" in info
    assert "a.txt" in info
    assert "Context Chunks: 1" in info
    assert "History Steps: 0" in info


def test_run_python_sees_context_variable(env):
    env.set_full_context("secret context")

    result = env.run_python("print(CONTEXT.upper())")

    assert result.ok is True
    assert result.output.strip() == "SECRET CONTEXT"


def test_run_python_failure_reports_stderr(env):
    result = env.run_python("raise SystemExit('boom')")

    assert result.ok is False
    assert "boom" in result.error


def test_python_bridge_writes_request_file(env):
    result = env.run_python("rlm_call('what is 6*7?')")

    assert result.ok is True
    assert "rlm_call scheduled" in result.output
    payload = json.loads((env.working_dir / BRIDGE_FILENAME).read_text())
    assert payload == {"tool": "rlm_call", "code": "what is 6*7?"}


def test_bash_script_bridge_writes_request_file(env):
    result = env.run_script("bash", 'rlm_call "summarize it"\ncat "$RLM_CONTEXT_PATH"')

    assert result.ok is True
    payload = json.loads((env.working_dir / BRIDGE_FILENAME).read_text())
    assert payload == {"tool": "rlm_call", "code": "summarize it"}


def test_script_files_are_unique_per_execution(env):
    env.run_python("print(1)")
    env.run_python("print(2)")

    scripts = [name for name in env.list_files() if name.startswith("script_")]
    assert len(scripts) == 2


def test_unsupported_language_fails(env):
    result = env.run_script("ruby", "puts 1")

    assert result.ok is False
    assert "unsupported" in result.error


@pytest.mark.parametrize("code", ["", "   \n"])
def test_blank_script_is_rejected_without_running(env, code):
    result = env.run_script("python", code)

    assert result.ok is False
    assert result.error == "python requires non-empty code"
    assert not [name for name in env.list_files() if name.startswith("script_")]


def test_run_shell_in_workspace(env):
    env.write_file("f.txt", "hi")

    result = env.run_shell("cat f.txt")

    assert result.ok is True
    assert result.output == "hi"


def test_closed_environment_refuses_execution(env):
    root = env.working_dir
    env.close()

    assert not root.exists()
    assert env.run_shell("echo hi").ok is False
