import io
import json
import urllib.error

import pytest

from rlmloop.backend import (
    BackendError,
    OpenRouterBackend,
    ScriptedBackend,
    _extract_reply_text,
    build_backend,
)
from rlmloop.config import BackendConfig


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def test_extract_reply_text_variants():
    assert _extract_reply_text({"choices": [{"message": {"content": "  hi  "}}]}) == "hi"
    assert (
        _extract_reply_text({"choices": [{"message": {"content": [{"text": "a"}, "b"]}}]})
        == "a\nb"
    )
    assert _extract_reply_text({"choices": [{"text": "legacy"}]}) == "legacy"
    assert _extract_reply_text({"choices": [{"message": {}}]}) == ""


def test_extract_reply_text_without_choices():
    with pytest.raises(BackendError):
        _extract_reply_text({"error": "nope"})


def test_openrouter_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    with pytest.raises(BackendError, match="OPENROUTER_API_KEY"):
        OpenRouterBackend(BackendConfig())


def test_openrouter_posts_chat_completion(monkeypatch):
    sent = {}

    def fake_urlopen(req, timeout):
        sent["url"] = req.full_url
        sent["body"] = json.loads(req.data.decode("utf-8"))
        sent["auth"] = req.headers["Authorization"]
        return _FakeResponse(json.dumps({"choices": [{"message": {"content": "reply"}}]}).encode())

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    backend = OpenRouterBackend(BackendConfig(), api_key="k")

    reply = backend.complete("sys", "user", {"model": "m-2", "temperature": 0.5})

    assert reply == "reply"
    assert sent["url"].endswith("/chat/completions")
    assert sent["auth"] == "Bearer k"
    assert sent["body"]["model"] == "m-2"
    assert sent["body"]["temperature"] == 0.5
    assert [m["role"] for m in sent["body"]["messages"]] == ["system", "user"]


def test_openrouter_does_not_retry_client_errors(monkeypatch):
    attempts = []

    def fake_urlopen(req, timeout):
        attempts.append(1)
        raise urllib.error.HTTPError(req.full_url, 401, "unauthorized", {}, io.BytesIO(b"bad key"))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    backend = OpenRouterBackend(BackendConfig(http_retries=3), api_key="k")

    with pytest.raises(BackendError, match="http 401"):
        backend.complete("sys", "user")
    assert len(attempts) == 1


def test_openrouter_retries_server_errors(monkeypatch):
    attempts = []

    def fake_urlopen(req, timeout):
        attempts.append(1)
        if len(attempts) == 1:
            raise urllib.error.HTTPError(req.full_url, 503, "busy", {}, io.BytesIO(b"later"))
        return _FakeResponse(json.dumps({"choices": [{"message": {"content": "ok"}}]}).encode())

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    monkeypatch.setattr("rlmloop.backend.time.sleep", lambda _: None)
    backend = OpenRouterBackend(BackendConfig(http_retries=2), api_key="k")

    assert backend.complete("sys", "user") == "ok"
    assert len(attempts) == 2


def test_scripted_backend_repeats_last_response():
    backend = ScriptedBackend(["one", "two"])

    replies = [backend.complete("s", "u") for _ in range(4)]

    assert replies == ["one", "two", "two", "two"]
    assert len(backend.calls) == 4


def test_scripted_backend_requires_responses():
    with pytest.raises(ValueError):
        ScriptedBackend([])


def test_build_backend_scripted():
    backend = build_backend(BackendConfig(kind="scripted", scripted_responses=["x"]))

    assert isinstance(backend, ScriptedBackend)
