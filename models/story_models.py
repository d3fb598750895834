# models/story_models.py
"""Outline, continuity and script structures."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from .base import AgentBaseModel

_ROMAN_ACTS = {"I": 1, "II": 2, "III": 3}


def coerce_act(value: Any) -> int:
    """Map loose act labels ("Act II", "2", 7) onto 1, 2 or 3."""
    if isinstance(value, bool):
        return 2
    if isinstance(value, int | float):
        return min(3, max(1, int(value)))
    if isinstance(value, str):
        text = value.strip().upper().removeprefix("ACT").strip()
        if text in _ROMAN_ACTS:
            return _ROMAN_ACTS[text]
        match = re.search(r"\d+", text)
        if match:
            return min(3, max(1, int(match.group())))
    return 2


class OutlineScene(AgentBaseModel):
    """A single scene beat in an outline."""

    act: int = 2
    scene_number: int = 0
    heading: str = ""
    summary: str = ""

    @field_validator("act", mode="before")
    @classmethod
    def _coerce_act(cls, value: Any) -> int:
        return coerce_act(value)

    @field_validator("scene_number", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> int:
        if isinstance(value, str):
            match = re.search(r"\d+", value)
            return int(match.group()) if match else 0
        return value if isinstance(value, int) else 0

    @field_validator("heading", "summary", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class ActSummary(AgentBaseModel):
    act: int
    summary: str

    @field_validator("act", mode="before")
    @classmethod
    def _coerce_act(cls, value: Any) -> int:
        return coerce_act(value)


class StoryFrame(AgentBaseModel):
    """Logline, synopsis, themes and act summaries from the act-split first call."""

    logline: str = Field(min_length=1)
    synopsis: str = Field(min_length=1)
    themes: list[str] = Field(default_factory=list)
    acts: list[ActSummary] = Field(min_length=3)


class ActScenes(AgentBaseModel):
    scenes: list[OutlineScene]


class OutlineResult(AgentBaseModel):
    """``{logline, synopsis, themes, scenes}`` plus how it was produced."""

    logline: str = ""
    synopsis: str = ""
    themes: list[str] = Field(default_factory=list)
    scenes: list[OutlineScene] = Field(default_factory=list)
    strategy: Literal["single", "act_split", "placeholder"] = "single"

    @field_validator("themes", mode="before")
    @classmethod
    def _coerce_themes(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return [str(v) for v in value]


class ChunkPlan(AgentBaseModel):
    """Continuity contract for one writing chunk."""

    part: int
    start_scene: int
    end_scene: int
    start_state: str
    end_state: str
    must_include: list[str] = Field(default_factory=list)
    must_avoid: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_range(self) -> ChunkPlan:
        if self.start_scene > self.end_scene:
            raise ValueError(
                f"chunk {self.part}: startScene {self.start_scene} exceeds endScene {self.end_scene}"
            )
        return self


class ChunkPlanSet(AgentBaseModel):
    chunks: list[ChunkPlan]


class ScriptDraft(AgentBaseModel):
    """Assembled screenplay text and how it was produced."""

    text: str
    estimated_pages: float
    target_pages: int
    chunk_count: int = 1
    used_continuity_bible: bool = False
    top_off_passes: int = 0


DomainStep = Literal[
    "outline",
    "chunks",
    "script",
    "characters",
    "storyboard",
    "budget",
    "schedule",
    "locations",
    "sound",
]


class InboundRequest(AgentBaseModel):
    """Call-in payload: the brief plus any per-domain context."""

    idea: str = ""
    genre: str = ""
    target_length: str = "5 min"
    domain_step: DomainStep = "outline"
    script: str | None = None
    characters: list[dict[str, Any]] | None = None
    outline: OutlineResult | None = None
    low_budget: bool = False
