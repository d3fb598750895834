# generators/base.py
"""Declarative description of one domain artifact generator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from config import EngineSettings
from core.errors import SchemaViolation
from models import AgentBaseModel
from orchestration.token_accountant import Stage

Context = dict[str, Any]


@dataclass(frozen=True)
class DomainGenerator:
    """Everything the runner needs to produce one artifact kind.

    ``prepare`` turns the caller's context into template variables,
    ``batches`` splits that context into sub-contexts generated separately
    and ``merge`` joins their artifacts back in order. ``refine`` runs inside
    the response validator, so a :class:`SchemaViolation` raised there sends
    the output through the repair pass. ``postprocess`` runs once on the
    final artifact.
    """

    kind: str
    template: str
    artifact_model: type[AgentBaseModel]
    payload_key: str
    schema: Callable[[Context], dict[str, Any]]
    stage: Stage
    payload_aliases: tuple[str, ...] = ()
    prepare: Callable[[Context, EngineSettings], Context] | None = None
    batches: Callable[[Context, EngineSettings], list[Context]] | None = None
    refine: Callable[[Any, Context], Any] | None = None
    merge: Callable[[list[Any], Context], Any] | None = None
    postprocess: Callable[[Any, Context], Any] | None = None

    def unwrap(self, data: Any) -> dict[str, Any]:
        """Accept a bare array or a known alias for the payload key."""
        if isinstance(data, list):
            return {self.payload_key: data}
        if not isinstance(data, dict):
            raise SchemaViolation(
                f"{self.kind} output must be an object, got {type(data).__name__}"
            )
        payload = dict(data)
        if self.payload_key not in payload:
            for alias in self.payload_aliases:
                if alias in payload:
                    payload[self.payload_key] = payload.pop(alias)
                    break
        return payload

    def validator(self, context: Context) -> Callable[[Any], Any]:
        def _validate(data: Any) -> Any:
            payload = self.unwrap(data)
            payload["kind"] = self.kind
            artifact = self.artifact_model.model_validate(payload)
            if self.refine is not None:
                artifact = self.refine(artifact, context)
            return artifact

        return _validate


def string_array() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


def object_schema(properties: dict[str, Any]) -> dict[str, Any]:
    """Strict-mode object: every property required, nothing extra."""
    return {
        "type": "object",
        "additionalProperties": False,
        "required": list(properties),
        "properties": properties,
    }


def wrapped_array_schema(
    key: str, item: dict[str, Any], description: str | None = None
) -> dict[str, Any]:
    array: dict[str, Any] = {"type": "array", "items": item}
    if description:
        array["description"] = description
    return object_schema({key: array})
