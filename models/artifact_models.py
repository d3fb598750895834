# models/artifact_models.py
"""Domain artifacts returned to callers. One variant per domain generator."""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, field_validator, model_validator

from .base import AgentBaseModel

_HEX_RE = re.compile(r"^#?([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")
_PLACEHOLDER_LOCATION_NAMES = {
    "primary location",
    "secondary location",
    "main location",
    "unknown location",
    "location",
    "location 1",
    "n/a",
    "tbd",
}


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = re.split(r"[;\n]|,\s*", value)
        return [p.strip() for p in parts if p.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def _normalize_hex(value: Any) -> str:
    text = str(value or "").strip()
    match = _HEX_RE.match(text)
    if not match:
        raise ValueError(f"not a hex colour: {value!r}")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return f"#{digits.upper()}"


# --- Characters ---------------------------------------------------------


class Character(AgentBaseModel):
    name: str = Field(min_length=1)
    role: str = Field(min_length=1)
    description: str = Field(min_length=1)
    traits: list[str] = Field(min_length=3, max_length=5)
    skin_color: str
    hair_color: str
    clothing_color: str
    mood: str = Field(min_length=1)
    visual_description: str = ""

    @field_validator("traits", mode="before")
    @classmethod
    def _coerce_traits(cls, value: Any) -> list[str]:
        return _as_str_list(value)

    @field_validator("skin_color", "hair_color", "clothing_color", mode="before")
    @classmethod
    def _coerce_hex(cls, value: Any) -> str:
        return _normalize_hex(value)

    def build_visual_description(self) -> str:
        parts = [
            f"Character name: {self.name}",
            f"Description: {self.description}",
            f"Role: {self.role}",
            f"Mood: {self.mood}",
            f"Skin color: {self.skin_color}",
            f"Hair color: {self.hair_color}",
            f"Clothing color: {self.clothing_color}",
        ]
        return ". ".join(parts)


class CharactersArtifact(AgentBaseModel):
    kind: Literal["characters"] = "characters"
    characters: list[Character] = Field(min_length=1)


# --- Storyboard ---------------------------------------------------------


class _ShotFields(AgentBaseModel):
    scene: str = ""
    shot_number: str = ""
    shot_size: str = ""
    camera_angle: str = ""
    camera_movement: str = ""
    lens: str = ""
    lighting: str = ""
    composition: str = ""
    description: str = ""
    action_notes: str = ""
    dialogue: str = ""
    sound_effects: str = ""
    duration: str = ""
    notes: str = ""
    image_prompt: str = ""
    characters: list[str] = Field(default_factory=list)

    @field_validator(
        "scene",
        "shot_number",
        "shot_size",
        "camera_angle",
        "camera_movement",
        "lens",
        "lighting",
        "composition",
        "description",
        "action_notes",
        "dialogue",
        "sound_effects",
        "duration",
        "notes",
        "image_prompt",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("characters", mode="before")
    @classmethod
    def _coerce_characters(cls, value: Any) -> list[str]:
        return _as_str_list(value)


class CoverageShot(_ShotFields):
    """An alternative angle on a frame. Coverage shots never nest."""

    kind: Literal["coverage"] = "coverage"

    @model_validator(mode="before")
    @classmethod
    def _reject_nesting(cls, data: Any) -> Any:
        if isinstance(data, dict) and (
            data.get("coverageShots") or data.get("coverage_shots")
        ):
            raise ValueError("coverage shots may not contain coverage shots")
        return data


class StoryboardFrame(_ShotFields):
    kind: Literal["frame"] = "frame"
    coverage_shots: list[CoverageShot] = Field(default_factory=list)


class StoryboardArtifact(AgentBaseModel):
    kind: Literal["storyboard"] = "storyboard"
    frames: list[StoryboardFrame] = Field(min_length=1)


# --- Budget -------------------------------------------------------------


class BudgetItem(AgentBaseModel):
    name: str
    cost: float = 0.0


class BudgetCategory(AgentBaseModel):
    name: str = Field(min_length=1)
    amount: float = Field(ge=0)
    percentage: float = Field(ge=0, le=100)
    items: list[str | BudgetItem] = Field(default_factory=list)
    tips: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)

    @field_validator("tips", "alternatives", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return _as_str_list(value)

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, value: Any) -> Any:
        return [] if value is None else value


class BudgetArtifact(AgentBaseModel):
    kind: Literal["budget"] = "budget"
    categories: list[BudgetCategory] = Field(min_length=1)
    low_budget: bool = False

    @property
    def total_amount(self) -> float:
        return sum(c.amount for c in self.categories)


# --- Schedule -----------------------------------------------------------


class ScheduleDay(AgentBaseModel):
    day: str = Field(min_length=1)
    activities: list[str] = Field(min_length=1)
    duration: str = ""
    location: str | None = None
    crew: list[str] = Field(default_factory=list)
    scenes: list[str] = Field(default_factory=list)

    @field_validator("day", mode="before")
    @classmethod
    def _coerce_day(cls, value: Any) -> str:
        if isinstance(value, int):
            return f"Day {value}"
        return "" if value is None else str(value).strip()

    @field_validator("activities", "crew", "scenes", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return _as_str_list(value)


class ScheduleArtifact(AgentBaseModel):
    kind: Literal["schedule"] = "schedule"
    days: list[ScheduleDay] = Field(min_length=1)


# --- Locations ----------------------------------------------------------


class Location(AgentBaseModel):
    name: str = Field(min_length=1)
    type: Literal["Interior", "Exterior"]
    description: str = Field(min_length=1)
    mood: str = ""
    color_palette: str = ""
    props_or_features: list[str] = Field(default_factory=list)
    scenes: list[str] = Field(default_factory=list)
    rating: int = Field(ge=1, le=5)
    low_budget_tips: str = ""
    high_budget_opportunities: str = ""

    @field_validator("name")
    @classmethod
    def _reject_placeholder(cls, value: str) -> str:
        if value.strip().lower() in _PLACEHOLDER_LOCATION_NAMES:
            raise ValueError(f"placeholder location name: {value!r}")
        return value.strip()

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        text = str(value or "").strip().upper()
        if text.startswith("INT"):
            return "Interior"
        if text.startswith("EXT"):
            return "Exterior"
        return str(value)

    @field_validator("color_palette", "low_budget_tips", "high_budget_opportunities", mode="before")
    @classmethod
    def _join_text(cls, value: Any) -> str:
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return "" if value is None else str(value)

    @field_validator("props_or_features", "scenes", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return _as_str_list(value)


class LocationsArtifact(AgentBaseModel):
    kind: Literal["locations"] = "locations"
    locations: list[Location] = Field(min_length=1)


# --- Sound --------------------------------------------------------------

_DURATION_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def duration_to_seconds(duration: str) -> int:
    match = _DURATION_RE.match(duration)
    if not match:
        raise ValueError(f"duration must be MM:SS, got {duration!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def seconds_to_duration(seconds: int) -> str:
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class SoundAsset(AgentBaseModel):
    name: str = Field(min_length=1)
    type: Literal["music", "sfx", "dialogue", "ambient"]
    duration: str
    description: str
    scenes: list[str] = Field(default_factory=list)
    audio_url: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return {"sound effect": "sfx", "sound effects": "sfx", "ambience": "ambient"}.get(
            text, text
        )

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> str:
        if isinstance(value, int | float):
            return seconds_to_duration(int(value))
        text = str(value or "").strip()
        if text.isdigit():
            return seconds_to_duration(int(text))
        # Validates the MM:SS form and normalizes "0:45" to "00:45".
        return seconds_to_duration(duration_to_seconds(text))

    @field_validator("description")
    @classmethod
    def _require_detail(cls, value: str) -> str:
        if len(value.split()) < 20:
            raise ValueError("sound description must be at least 20 words")
        return value.strip()

    @field_validator("scenes", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return _as_str_list(value)


class SoundArtifact(AgentBaseModel):
    kind: Literal["sound"] = "sound"
    assets: list[SoundAsset] = Field(min_length=1)


DomainArtifact = Annotated[
    Union[
        CharactersArtifact,
        StoryboardArtifact,
        BudgetArtifact,
        ScheduleArtifact,
        LocationsArtifact,
        SoundArtifact,
    ],
    Field(discriminator="kind"),
]

domain_artifact_adapter: TypeAdapter[Any] = TypeAdapter(DomainArtifact)
