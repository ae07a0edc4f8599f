"""
rlmloop.backend

Model backends: an OpenRouter-compatible chat-completions client and a
scripted backend that replays canned responses (offline runs, smoke tests).
"""
from __future__ import annotations

import json
import logging
import os
import random
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

from .config import BackendConfig
from .interfaces import ModelBackend

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    pass


class OpenRouterBackend:
    def __init__(self, config: BackendConfig, *, api_key: str | None = None):
        self.config = config
        self._api_key = api_key if api_key is not None else os.environ.get(config.api_key_env, "")
        if not self._api_key:
            raise BackendError(
                f"model API key is missing. Set {config.api_key_env} or choose backend kind=scripted."
            )

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        opts = dict(options or {})
        payload: Dict[str, Any] = {
            "model": opts.get("model") or self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": self.config.max_tokens,
        }
        temperature = opts.get("temperature", self.config.temperature)
        if temperature is not None:
            payload["temperature"] = float(temperature)
        response = self._post(payload)
        return _extract_reply_text(response)

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        body = json.dumps(payload).encode("utf-8")
        err_text = ""

        for attempt in range(1, self.config.http_retries + 1):
            req = urllib.request.Request(url=url, data=body, headers=headers, method="POST")
            try:
                with urllib.request.urlopen(req, timeout=self.config.http_timeout_sec) as resp:
                    return json.loads(resp.read().decode("utf-8", errors="replace"))
            except urllib.error.HTTPError as exc:
                raw = exc.read().decode("utf-8", errors="replace")
                err_text = f"http {exc.code}: {raw}"
                if 400 <= exc.code < 500 and exc.code != 429:
                    break
            except (urllib.error.URLError, OSError, json.JSONDecodeError) as exc:
                err_text = str(exc)
            if attempt < self.config.http_retries:
                wait = min(2 ** attempt, 30) + random.uniform(0, 1)
                logger.warning("Model request attempt %d failed (%s); retrying in %.1fs", attempt, err_text, wait)
                time.sleep(wait)

        raise BackendError(f"model request failed after {self.config.http_retries} attempt(s): {err_text}")


class ScriptedBackend:
    """
    Returns ``responses`` in order; the last one repeats once exhausted.
    Records every prompt it was given in ``calls``.
    """

    def __init__(self, responses: List[str]):
        if not responses:
            raise ValueError("scripted backend requires at least one response")
        self._responses = list(responses)
        self._index = 0
        self._lock = threading.Lock()
        self.calls: List[Dict[str, Any]] = []

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        with self._lock:
            self.calls.append({"system": system_prompt, "user": user_prompt, "options": dict(options or {})})
            response = self._responses[min(self._index, len(self._responses) - 1)]
            self._index += 1
        return response


def build_backend(config: BackendConfig) -> ModelBackend:
    if config.kind == "scripted":
        return ScriptedBackend(config.scripted_responses)
    if config.kind == "openrouter":
        return OpenRouterBackend(config)
    raise ValueError(f"Unsupported backend kind: {config.kind}")


def _extract_reply_text(response: Dict[str, Any]) -> str:
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise BackendError(f"model response has no choices: {json.dumps(response)[:400]}")
    choice = choices[0]
    message = choice.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            parts = []
            for item in content:
                if isinstance(item, str):
                    parts.append(item)
                elif isinstance(item, dict) and isinstance(item.get("text"), str):
                    parts.append(item["text"])
            return "\n".join(parts).strip()
    text = choice.get("text")
    if isinstance(text, str):
        return text.strip()
    return ""
