"""Test doubles shared by the agent and generator tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from core.errors import SchemaViolation
from core.json_responder import JsonResult


class FakeResponder:
    """Stands in for ``JsonResponder``.

    ``handler(prompt, schema, options)`` returns the parsed JSON the backend
    would have produced, ``None`` for an unusable response, or raises.
    """

    def __init__(self, handler: Callable[[str, dict, Any], Any]):
        self.handler = handler
        self.calls: list[tuple[str, dict, Any]] = []

    async def generate_json(self, prompt, schema, options=None):
        self.calls.append((prompt, schema, options))
        data = self.handler(prompt, schema, options)
        if data is None:
            return JsonResult(data=None, raw_text="", truncated=True, error="truncated")
        if options is not None and options.validator is not None:
            try:
                data = options.validator(data)
            except (SchemaViolation, ValidationError, ValueError) as exc:
                return JsonResult(data=None, raw_text=str(data), truncated=False, error=str(exc))
        return JsonResult(data=data, raw_text=str(data), truncated=False)

    def schema_names(self) -> list[str]:
        return [options.schema_name for _, _, options in self.calls]


class FakeTextLLM:
    """Stands in for ``LLMService.generate_text`` with scripted replies."""

    def __init__(self, replies: list[Any]):
        self.replies = list(replies)
        self.prompts: list[str] = []
        self.stages: list[str | None] = []
        self.max_tokens: list[int | None] = []
        self.accountant = None

    async def generate_text(self, prompt, **kwargs):
        self.prompts.append(prompt)
        self.stages.append(kwargs.get("stage"))
        self.max_tokens.append(kwargs.get("max_tokens"))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply, {"completion_tokens": 1}


def words(count: int, word: str = "word") -> str:
    """``count`` words split over lines of ten."""
    tokens = [word] * count
    return "\n".join(" ".join(tokens[i : i + 10]) for i in range(0, count, 10))
