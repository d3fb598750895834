# generators/catalog.py
"""The six film-package generators and their sizing policies."""

from __future__ import annotations

import math
import re
from typing import Any

import structlog

from agents.outline_planner import parse_target_minutes
from config import EngineSettings
from core.errors import SchemaViolation
from core.llm_interface import truncate_text_by_tokens
from models import (
    BudgetArtifact,
    CharactersArtifact,
    CoverageShot,
    LocationsArtifact,
    OutlineResult,
    ScheduleArtifact,
    SoundArtifact,
    StoryboardArtifact,
    StoryboardFrame,
)
from models.artifact_models import duration_to_seconds, seconds_to_duration
from orchestration.token_accountant import Stage
from storyboard import (
    normalize_camera_angle,
    normalize_composition,
    normalize_lens,
    normalize_shot_size,
    render_image_prompt,
    validate_frame,
    validate_sequence,
)

from .base import (
    Context,
    DomainGenerator,
    object_schema,
    string_array,
    wrapped_array_schema,
)

logger = structlog.get_logger(__name__)

BUDGET_CATEGORIES = [
    "Pre-production",
    "Cast",
    "Crew",
    "Locations",
    "Equipment",
    "Art Department",
    "Post-Production",
    "Music & Sound",
    "Marketing",
    "Miscellaneous",
]

SOUND_TYPES = ["music", "sfx", "dialogue", "ambient"]

FALLBACK_SCRIPT_TEMPLATE = (
    "A {genre} film featuring a protagonist navigating several dramatic locations:\n"
    "- An abandoned warehouse full of shadows and secrets.\n"
    "- Rainy neon-lit city streets at night.\n"
    "- A dramatic rooftop showdown above a glowing skyline.\n"
)


# --- Sizing policies ----------------------------------------------------


def character_count(minutes: int) -> int:
    for limit, count in ((1, 1), (5, 2), (10, 3), (15, 4), (30, 5), (60, 6)):
        if minutes <= limit:
            return count
    return 8


def storyboard_frame_count(minutes: int) -> int:
    for limit, count in ((1, 6), (5, 12), (10, 20), (15, 30), (30, 45), (60, 75), (120, 120)):
        if minutes <= limit:
            return count
    # Features past two hours get a sparser board.
    return 60


def sound_asset_count(minutes: int) -> int:
    return 5 if minutes <= 15 else 8


def minimum_sound_seconds(minutes: int) -> int:
    return 30 if minutes >= 60 else 10


def shooting_day_estimate(minutes: int) -> int:
    return max(1, math.ceil(minutes / 4))


# --- Shared context -----------------------------------------------------


def _character_lines(characters: Any) -> list[str]:
    lines: list[str] = []
    for char in characters or []:
        if hasattr(char, "model_dump"):
            char = char.model_dump(by_alias=True)
        if not isinstance(char, dict):
            continue
        name = char.get("name")
        if not name:
            continue
        description = char.get("visualDescription") or char.get("description") or ""
        lines.append(
            f"Character: {name}. Description: {description}. "
            f"Skin: {char.get('skinColor') or 'default'}. "
            f"Hair: {char.get('hairColor') or 'default'}. "
            f"Clothing: {char.get('clothingColor') or 'default'}. "
            f"Mood: {char.get('mood') or 'neutral'}."
        )
    return lines


def _outline_text(outline: Any) -> str:
    if outline is None:
        return ""
    if isinstance(outline, dict):
        outline = OutlineResult.model_validate(outline)
    lines = [f"LOGLINE: {outline.logline}", f"SYNOPSIS: {outline.synopsis}"]
    lines.extend(
        f"{s.scene_number}. {s.heading}: {s.summary}" for s in outline.scenes
    )
    return "\n".join(lines)


def base_context(context: Context, config: EngineSettings) -> Context:
    """Normalize caller context into the variables every template may use."""
    minutes = parse_target_minutes(
        context.get("target_length"), config.DEFAULT_TARGET_MINUTES
    )
    script = (context.get("script") or "").strip()
    if not script:
        script = _outline_text(context.get("outline"))
    return {
        "idea": (context.get("idea") or "").strip(),
        "genre": (context.get("genre") or "").strip() or "drama",
        "target_length": context.get("target_length") or f"{minutes} min",
        "minutes": minutes,
        "script": truncate_text_by_tokens(
            script, config.JSON_MODEL, config.DOMAIN_SCRIPT_CONTEXT_TOKENS
        ),
        "character_lines": _character_lines(context.get("characters")),
        "low_budget": bool(context.get("low_budget")),
    }


def _require_count(kind: str, items: list[Any], expected: int) -> list[Any]:
    if len(items) < expected:
        raise SchemaViolation(f"expected {expected} {kind}, got {len(items)}")
    if len(items) > expected:
        logger.debug(f"Trimming {len(items) - expected} extra {kind}.")
    return items[:expected]


# --- Characters ---------------------------------------------------------


def _prepare_characters(context: Context, config: EngineSettings) -> Context:
    ctx = base_context(context, config)
    ctx["character_count"] = character_count(ctx["minutes"])
    return ctx


def _characters_schema(ctx: Context) -> dict[str, Any]:
    hex_color = {"type": "string", "description": "Hex colour such as #8C5D3C."}
    return wrapped_array_schema(
        "characters",
        object_schema(
            {
                "name": {"type": "string"},
                "role": {"type": "string"},
                "description": {"type": "string"},
                "traits": {**string_array(), "description": "3-5 traits."},
                "skinColor": hex_color,
                "hairColor": hex_color,
                "clothingColor": hex_color,
                "mood": {"type": "string"},
            }
        ),
        f"Exactly {ctx['character_count']} main characters.",
    )


def _refine_characters(artifact: CharactersArtifact, ctx: Context) -> CharactersArtifact:
    characters = _require_count("characters", artifact.characters, ctx["character_count"])
    characters = [
        c.model_copy(update={"visual_description": c.build_visual_description()})
        for c in characters
    ]
    return artifact.model_copy(update={"characters": characters})


# --- Storyboard ---------------------------------------------------------


def _prepare_storyboard(context: Context, config: EngineSettings) -> Context:
    ctx = base_context(context, config)
    ctx["total_frames"] = storyboard_frame_count(ctx["minutes"])
    ctx["coverage_shots"] = config.STORYBOARD_COVERAGE_SHOTS
    return ctx


def _storyboard_batches(ctx: Context, config: EngineSettings) -> list[Context]:
    per_call = max(1, config.STORYBOARD_FRAMES_PER_CALL)
    total = ctx["total_frames"]
    starts = list(range(0, total, per_call))
    return [
        {
            **ctx,
            "batch_number": index + 1,
            "batch_count": len(starts),
            "frame_start": start + 1,
            "frame_end": min(total, start + per_call),
            "batch_size": min(total, start + per_call) - start,
        }
        for index, start in enumerate(starts)
    ]


_SHOT_PROPERTIES: dict[str, Any] = {
    "scene": {"type": "string", "description": "Scene heading, e.g. 'INT. WAREHOUSE - NIGHT'."},
    "shotNumber": {"type": "string"},
    "shotSize": {
        "type": "string",
        "enum": ["ELS", "LS", "MLS", "MS", "MCU", "CU", "ECU", "INSERT", "OS", "POV", "2-SHOT"],
    },
    "cameraAngle": {
        "type": "string",
        "enum": ["Eye Level", "Low Angle", "High Angle", "Dutch Angle", "Bird's Eye", "Worm's Eye"],
    },
    "cameraMovement": {"type": "string"},
    "lens": {
        "type": "string",
        "enum": ["24mm Wide", "35mm Standard", "50mm Standard", "85mm Portrait", "135mm Telephoto"],
    },
    "lighting": {"type": "string"},
    "composition": {
        "type": "string",
        "enum": ["Rule of Thirds", "Center Frame", "Leading Lines", "Frame within Frame"],
    },
    "description": {"type": "string", "description": "2-3 sentences on visuals and intent."},
    "actionNotes": {"type": "string", "description": "Blocking and staging."},
    "dialogue": {"type": "string"},
    "soundEffects": {"type": "string"},
    "duration": {"type": "string"},
    "notes": {"type": "string"},
    "characters": string_array(),
}


def _storyboard_schema(ctx: Context) -> dict[str, Any]:
    coverage = object_schema(dict(_SHOT_PROPERTIES))
    frame = object_schema(
        {
            **_SHOT_PROPERTIES,
            "coverageShots": {
                "type": "array",
                "items": coverage,
                "description": f"Up to {ctx['coverage_shots']} alternative angles of the same moment.",
            },
        }
    )
    return wrapped_array_schema(
        "frames", frame, f"Exactly {ctx['batch_size']} frames in story order."
    )


def _normalize_shot(shot: Any) -> Any:
    """Canonical vocabulary values plus a rendered image prompt."""
    update = {
        "shot_size": normalize_shot_size(shot.shot_size) or shot.shot_size,
        "camera_angle": normalize_camera_angle(shot.camera_angle) or shot.camera_angle,
        "lens": normalize_lens(shot.lens) or shot.lens,
        "composition": normalize_composition(shot.composition) or shot.composition,
    }
    normalized = shot.model_copy(update=update)
    return normalized.model_copy(update={"image_prompt": render_image_prompt(normalized)})


def _refine_storyboard(artifact: StoryboardArtifact, ctx: Context) -> StoryboardArtifact:
    frames = _require_count("frames", artifact.frames, ctx["batch_size"])
    refined: list[StoryboardFrame] = []
    problems: list[str] = []
    for frame in frames:
        coverage: list[CoverageShot] = []
        for shot in frame.coverage_shots[: ctx["coverage_shots"]]:
            shot = _normalize_shot(shot)
            if validate_frame(shot).is_valid:
                coverage.append(shot)
            else:
                logger.debug("Dropping coverage shot that breaks film grammar.")
        frame = _normalize_shot(frame).model_copy(update={"coverage_shots": coverage})
        report = validate_frame(frame)
        if not report.is_valid:
            problems.append(f"{report.frame_id}: {'; '.join(report.errors)}")
        refined.append(frame)
    if problems:
        raise SchemaViolation("storyboard frames break film grammar: " + " | ".join(problems))
    return artifact.model_copy(update={"frames": refined})


def _merge_storyboard(parts: list[StoryboardArtifact], ctx: Context) -> StoryboardArtifact:
    frames: list[StoryboardFrame] = []
    for part in parts:
        frames.extend(part.frames)
    frames = [
        f if f.shot_number else f.model_copy(update={"shot_number": str(i)})
        for i, f in enumerate(frames, start=1)
    ]
    return StoryboardArtifact(frames=frames)


def _review_storyboard(artifact: StoryboardArtifact, ctx: Context) -> StoryboardArtifact:
    report = validate_sequence(artifact.frames)
    for warning in report.warnings:
        logger.info("Storyboard rhythm warning.", warning=warning)
    return artifact


# --- Budget -------------------------------------------------------------


def _category_key(name: str) -> str:
    return re.sub(r"[^a-z]", "", name.lower())


_BUDGET_KEYS = {_category_key(name): name for name in BUDGET_CATEGORIES}


def _prepare_budget(context: Context, config: EngineSettings) -> Context:
    ctx = base_context(context, config)
    ctx["categories"] = BUDGET_CATEGORIES
    return ctx


def _budget_schema(ctx: Context) -> dict[str, Any]:
    return wrapped_array_schema(
        "categories",
        object_schema(
            {
                "name": {"type": "string"},
                "amount": {"type": "number", "description": "USD."},
                "percentage": {"type": "number", "description": "Share of the total, 0-100."},
                "items": string_array(),
                "tips": string_array(),
                "alternatives": string_array(),
            }
        ),
        f"One entry per category: {', '.join(BUDGET_CATEGORIES)}.",
    )


def _refine_budget(artifact: BudgetArtifact, ctx: Context) -> BudgetArtifact:
    by_name = {}
    extras = []
    for category in artifact.categories:
        canonical = _BUDGET_KEYS.get(_category_key(category.name))
        if canonical and canonical not in by_name:
            by_name[canonical] = category.model_copy(update={"name": canonical})
        else:
            extras.append(category)
    missing = [name for name in BUDGET_CATEGORIES if name not in by_name]
    if missing:
        raise SchemaViolation(f"budget is missing categories: {', '.join(missing)}")
    ordered = [by_name[name] for name in BUDGET_CATEGORIES] + extras
    return artifact.model_copy(update={"categories": ordered})


def _apply_low_budget(artifact: BudgetArtifact, ctx: Context) -> BudgetArtifact:
    if not ctx["low_budget"]:
        return artifact
    halved = [
        c.model_copy(update={"amount": float(math.floor(c.amount * 0.5 + 0.5))})
        for c in artifact.categories
    ]
    return artifact.model_copy(update={"categories": halved, "low_budget": True})


# --- Schedule -----------------------------------------------------------


def _prepare_schedule(context: Context, config: EngineSettings) -> Context:
    ctx = base_context(context, config)
    ctx["suggested_days"] = shooting_day_estimate(ctx["minutes"])
    return ctx


def _schedule_schema(ctx: Context) -> dict[str, Any]:
    return wrapped_array_schema(
        "days",
        object_schema(
            {
                "day": {"type": "string", "description": "e.g. 'Day 1'."},
                "activities": string_array(),
                "duration": {"type": "string", "description": "e.g. '10 hours'."},
                "location": {"type": "string"},
                "crew": string_array(),
                "scenes": string_array(),
            }
        ),
        "Shooting days in order.",
    )


# --- Locations ----------------------------------------------------------


def _prepare_locations(context: Context, config: EngineSettings) -> Context:
    ctx = base_context(context, config)
    if not ctx["script"]:
        ctx["script"] = FALLBACK_SCRIPT_TEMPLATE.format(genre=ctx["genre"])
        logger.info("No script supplied for location scouting; using fallback script.")
    return ctx


def _locations_schema(ctx: Context) -> dict[str, Any]:
    return wrapped_array_schema(
        "locations",
        object_schema(
            {
                "name": {"type": "string", "description": "Taken from the scene heading."},
                "type": {"type": "string", "enum": ["Interior", "Exterior"]},
                "description": {"type": "string"},
                "mood": {"type": "string"},
                "colorPalette": {"type": "string"},
                "propsOrFeatures": string_array(),
                "scenes": string_array(),
                "rating": {"type": "integer", "description": "Visual impact, 1-5."},
                "lowBudgetTips": {"type": "string"},
                "highBudgetOpportunities": {"type": "string"},
            }
        ),
        "Every distinct filming location in the script.",
    )


# --- Sound --------------------------------------------------------------


def _prepare_sound(context: Context, config: EngineSettings) -> Context:
    ctx = base_context(context, config)
    ctx["asset_count"] = sound_asset_count(ctx["minutes"])
    ctx["min_seconds"] = minimum_sound_seconds(ctx["minutes"])
    ctx["min_duration"] = seconds_to_duration(ctx["min_seconds"])
    return ctx


def _sound_schema(ctx: Context) -> dict[str, Any]:
    return wrapped_array_schema(
        "assets",
        object_schema(
            {
                "name": {"type": "string"},
                "type": {"type": "string", "enum": SOUND_TYPES},
                "duration": {"type": "string", "description": "MM:SS."},
                "description": {"type": "string", "description": "At least 50 words."},
                "scenes": string_array(),
            }
        ),
        f"Exactly {ctx['asset_count']} sound assets.",
    )


def _refine_sound(artifact: SoundArtifact, ctx: Context) -> SoundArtifact:
    assets = _require_count("sound assets", artifact.assets, ctx["asset_count"])
    return artifact.model_copy(update={"assets": assets})


def _floor_durations(artifact: SoundArtifact, ctx: Context) -> SoundArtifact:
    floor = ctx["min_seconds"]
    assets = [
        a
        if duration_to_seconds(a.duration) >= floor
        else a.model_copy(update={"duration": seconds_to_duration(floor)})
        for a in artifact.assets
    ]
    return artifact.model_copy(update={"assets": assets})


GENERATORS: dict[str, DomainGenerator] = {
    g.kind: g
    for g in (
        DomainGenerator(
            kind="characters",
            template="domain/characters.j2",
            artifact_model=CharactersArtifact,
            payload_key="characters",
            schema=_characters_schema,
            stage=Stage.CHARACTERS,
            prepare=_prepare_characters,
            refine=_refine_characters,
        ),
        DomainGenerator(
            kind="storyboard",
            template="domain/storyboard.j2",
            artifact_model=StoryboardArtifact,
            payload_key="frames",
            payload_aliases=("storyboard",),
            schema=_storyboard_schema,
            stage=Stage.STORYBOARD,
            prepare=_prepare_storyboard,
            batches=_storyboard_batches,
            refine=_refine_storyboard,
            merge=_merge_storyboard,
            postprocess=_review_storyboard,
        ),
        DomainGenerator(
            kind="budget",
            template="domain/budget.j2",
            artifact_model=BudgetArtifact,
            payload_key="categories",
            schema=_budget_schema,
            stage=Stage.BUDGET,
            prepare=_prepare_budget,
            refine=_refine_budget,
            postprocess=_apply_low_budget,
        ),
        DomainGenerator(
            kind="schedule",
            template="domain/schedule.j2",
            artifact_model=ScheduleArtifact,
            payload_key="days",
            payload_aliases=("schedule",),
            schema=_schedule_schema,
            stage=Stage.SCHEDULE,
            prepare=_prepare_schedule,
        ),
        DomainGenerator(
            kind="locations",
            template="domain/locations.j2",
            artifact_model=LocationsArtifact,
            payload_key="locations",
            schema=_locations_schema,
            stage=Stage.LOCATIONS,
            prepare=_prepare_locations,
        ),
        DomainGenerator(
            kind="sound",
            template="domain/sound.j2",
            artifact_model=SoundArtifact,
            payload_key="assets",
            payload_aliases=("soundAssets", "sound_assets", "sounds"),
            schema=_sound_schema,
            stage=Stage.SOUND,
            prepare=_prepare_sound,
            refine=_refine_sound,
            postprocess=_floor_durations,
        ),
    )
}
