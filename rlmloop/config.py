"""
rlmloop.config

Typed settings for the engine and its model backend, loadable from YAML.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class BackendConfig(BaseModel):
    kind: Literal["openrouter", "scripted"] = "openrouter"
    model: str = "openai/gpt-4o-mini"
    base_url: str = "https://openrouter.ai/api/v1"
    api_key_env: str = "OPENROUTER_API_KEY"
    http_timeout_sec: int = Field(default=90, ge=1)
    http_retries: int = Field(default=3, ge=1, le=10)
    temperature: Optional[float] = None
    max_tokens: int = 4096
    scripted_responses: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_scripted(self) -> "BackendConfig":
        if self.kind == "scripted" and not self.scripted_responses:
            raise ValueError("backend kind=scripted requires scripted_responses")
        return self


class RlmSettings(BaseModel):
    max_depth: int = Field(default=3, ge=0)
    max_branching: int = Field(default=3, ge=0)
    exec_timeout_sec: float = Field(default=30, gt=0)
    reader_grace_sec: float = Field(default=1.0, gt=0)
    workspace_root: str = "rlm_workspaces"
    python_bin: str = "python3"
    bash_bin: str = "bash"
    strategy: str = "rlm-recursive-repl"
    temperature: Optional[float] = None
    events_path: Optional[str] = None
    backend: BackendConfig = Field(default_factory=BackendConfig)


def read_yaml_mapping(path: str | Path, *, label: str) -> Dict[str, Any]:
    yaml_path = Path(path)
    data = yaml.safe_load(yaml_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{label} at {yaml_path} must contain a mapping")
    return data


def load_settings(path: str | Path | None = None) -> RlmSettings:
    if path is None:
        return RlmSettings()
    return RlmSettings.model_validate(read_yaml_mapping(path, label="rlm settings"))
