# models/request_models.py
"""Per-call request/response structures for the model invocation layer."""

from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TokenParam = Literal["max_tokens", "max_completion_tokens"]


class ModelCandidate(BaseModel):
    """One backend configuration to try for a logical call."""

    model_config = ConfigDict(frozen=True)

    model: str
    token_param: TokenParam = "max_tokens"
    send_temperature: bool = True


class GenerationRequest(BaseModel):
    """A single logical generation call. Created per call, then discarded."""

    prompt: str
    system_prompt: str | None = None
    response_format: dict[str, Any] | None = None
    model_hint: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    timeout: float | None = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    def messages(self) -> list[dict[str, str]]:
        msgs: list[dict[str, str]] = []
        if self.system_prompt:
            msgs.append({"role": "system", "content": self.system_prompt})
        msgs.append({"role": "user", "content": self.prompt})
        return msgs


class RawResponse(BaseModel):
    """Text returned by the backend plus the metadata the engine inspects."""

    text: str
    finish_reason: str | None = None
    model: str
    usage: dict[str, int] | None = None
    attempted_models: list[str] = Field(default_factory=list)

    @property
    def hit_length_limit(self) -> bool:
        return (self.finish_reason or "").lower() in ("length", "max_tokens")
