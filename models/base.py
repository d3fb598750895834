# models/base.py
"""Shared pydantic base for engine data models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class AgentBaseModel(BaseModel):
    """Base model with camelCase wire names and mapping-style access.

    Backend JSON and caller JSON both use camelCase; Python code uses the
    snake_case attribute names. Either form is accepted on input.
    """

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def __getitem__(self, item: str) -> Any:  # pragma: no cover - convenience
        return getattr(self, item)

    def get(
        self, item: str, default: Any = None
    ) -> Any:  # pragma: no cover - convenience
        return getattr(self, item, default)

    def to_wire(self) -> dict[str, Any]:
        """Dump using camelCase aliases, the shape callers receive."""
        return self.model_dump(by_alias=True, mode="json")
