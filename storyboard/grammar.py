# storyboard/grammar.py
"""Film-grammar rules for storyboard frames.

Closed vocabularies for shot size, camera angle, lens and composition, a
frame/sequence checker, and the image-prompt renderer that turns a valid
frame into a fixed-phrase prompt. Everything here is pure and synchronous.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class ShotGrammarRule:
    shot_size: str
    definition: str
    framing_rule: str
    depth_of_field: str


@dataclass(frozen=True)
class CameraAngleRule:
    angle: str
    camera_position: str
    psychological_effect: str
    enforce_rule: str


@dataclass(frozen=True)
class LensCharacteristic:
    lens: str
    perspective: str
    distortion: str
    emotional_weight: str


@dataclass(frozen=True)
class CompositionRule:
    rule: str
    application: str
    framing_guide: str


SHOT_SIZES: dict[str, ShotGrammarRule] = {
    "ELS": ShotGrammarRule(
        "ELS (Extreme Long Shot)",
        "Entire environment visible, character nearly imperceptible",
        "Environment dominates 80%+ of frame, character is tiny reference point",
        "Infinite, establishes geography",
    ),
    "LS": ShotGrammarRule(
        "LS (Long Shot)",
        "Full body of character visible, environment provides context",
        "Head-to-toe visible; character occupies ~30% of frame",
        "Deep focus, shows entire scene",
    ),
    "MLS": ShotGrammarRule(
        "MLS (Medium Long Shot)",
        "Full body visible with legs emphasized",
        "Knees-to-head visible; character ~40% of frame",
        "Deep to medium",
    ),
    "MS": ShotGrammarRule(
        "MS (Medium Shot)",
        "Waist to head, primary framing for dialogue",
        "Approximately waist-up; character ~50-60% of frame",
        "Medium DOF allows slight background blur",
    ),
    "MCU": ShotGrammarRule(
        "MCU (Medium Close-Up)",
        "Chest to head, emotional content",
        "Chest-up; character ~70% of frame",
        "Shallow DOF begins to separate subject from background",
    ),
    "CU": ShotGrammarRule(
        "CU (Close-Up)",
        "Face or hands, intimate emotional moments",
        "Face-only or hands-only; subject fills most of frame",
        "Shallow DOF; background is soft bokeh",
    ),
    "ECU": ShotGrammarRule(
        "ECU (Extreme Close-Up)",
        "Eye detail, object detail, intense emotional beat",
        "Fills frame with specific feature (eye, mouth, object)",
        "Extremely shallow; only focused area sharp",
    ),
    "INSERT": ShotGrammarRule(
        "INSERT",
        "Small object detail (clock, knife, letter)",
        "Object fills frame, no character required",
        "Can be macro photography, shallow DOF",
    ),
    "OS": ShotGrammarRule(
        "OS (Over-Shoulder)",
        "Two characters in dialogue; shot from behind one",
        "Rear character ~20%, front character fills rest",
        "Shallow DOF on front character",
    ),
    "POV": ShotGrammarRule(
        "POV (Point-of-View)",
        "Camera shows what character sees",
        "Head level at character's height; environment fills frame",
        "Matches character's visual focus",
    ),
    "2-SHOT": ShotGrammarRule(
        "2-Shot",
        "Two characters, both visible and relevant",
        "Both occupy ~30% each, with space/interaction between",
        "Medium, may slightly separate pair from background",
    ),
}

CAMERA_ANGLES: dict[str, CameraAngleRule] = {
    "Eye Level": CameraAngleRule(
        "Eye Level",
        "Horizontal to subject's eye line",
        "Neutral, equality, no power dynamic",
        "Camera must be at exact subject eye height",
    ),
    "Low Angle": CameraAngleRule(
        "Low Angle",
        "Below subject eye line, looking up",
        "Empowerment, dominance, grandeur, threat",
        "Camera must be substantially BELOW eye level; subject must appear to tower",
    ),
    "High Angle": CameraAngleRule(
        "High Angle",
        "Above subject eye line, looking down",
        "Vulnerability, weakness, imprisonment, insignificance",
        "Camera must be substantially ABOVE eye level; subject appears diminished",
    ),
    "Dutch Angle": CameraAngleRule(
        "Dutch Angle (Tilted/Canted)",
        "Camera rotated 15-45 degrees off horizontal",
        "Chaos, instability, disorientation, danger, surrealism",
        "Horizon line must be visibly tilted; no subtle tilts",
    ),
    "Bird's Eye": CameraAngleRule(
        "Bird's Eye (Overhead)",
        "Camera directly above subject, looking straight down",
        "Omniscient perspective, detachment, trap/maze, surveillance",
        "Camera must shoot straight DOWN; scene viewed as map/diagram",
    ),
    "Worm's Eye": CameraAngleRule(
        "Worm's Eye (Ground Level)",
        "Camera at ground level, extreme low angle",
        "Extreme vulnerability, surrealism, insect/animal perspective",
        "Camera literally at ground; subjects tower impossibly",
    ),
}

LENS_CHARACTERISTICS: dict[str, LensCharacteristic] = {
    "24mm Wide": LensCharacteristic(
        "24mm Wide",
        "Exaggerated perspective, foreground depth emphasized, background compressed",
        "Noticeable barrel distortion at edges; makes close subjects loom",
        "Claustrophobic, visceral, immersive, slightly unsettling",
    ),
    "35mm Standard": LensCharacteristic(
        "35mm Standard",
        "Moderate wide angle; closer to human eye perspective",
        "Minimal distortion; natural-feeling",
        "Cinematic but accessible; journalistic feel",
    ),
    "50mm Standard": LensCharacteristic(
        "50mm Standard",
        "Matches human eye angle of view (~47 degrees)",
        "No distortion; most neutral",
        "Natural, observed, intimate realism",
    ),
    "85mm Portrait": LensCharacteristic(
        "85mm Portrait",
        "Slightly compressed; flattens depth, isolates subject",
        "Minimal; flattering to faces",
        "Romantic, isolated, psychological introspection",
    ),
    "135mm Telephoto": LensCharacteristic(
        "135mm Telephoto",
        "Heavily compressed; foreground and background merge",
        "Heavy compression; subjects appear stacked",
        "Distant observation, surveillance, psychological intensity",
    ),
}

COMPOSITION_RULES: dict[str, CompositionRule] = {
    "Rule of Thirds": CompositionRule(
        "Rule of Thirds",
        "Divide frame into 9 equal sections (3x3 grid); place key elements on lines or intersections",
        "Horizon on top or bottom third; subject on left or right third; eyes on upper intersection",
    ),
    "Center Frame": CompositionRule(
        "Center Frame",
        "Subject placed directly in center; symmetrical composition",
        "Subject dead-center; suggests power, authority, or stability",
    ),
    "Leading Lines": CompositionRule(
        "Leading Lines",
        "Use roads, shadows, architecture to draw eye toward subject",
        "Lines converge at subject; creates depth and directional intent",
    ),
    "Frame within Frame": CompositionRule(
        "Frame within Frame",
        "Use foreground elements to create a secondary frame around subject",
        "Doorway, window, branches frame subject; adds depth and context",
    ),
}

# Keys are upper-cased with everything but letters and digits removed.
_SHOT_SIZE_ALIASES: dict[str, str] = {
    "ELS": "ELS",
    "EWS": "ELS",
    "XLS": "ELS",
    "EXTREMELONGSHOT": "ELS",
    "EXTREMEWIDESHOT": "ELS",
    "EXTREMEWIDE": "ELS",
    "ESTABLISHINGSHOT": "ELS",
    "LS": "LS",
    "WS": "LS",
    "FS": "LS",
    "LONGSHOT": "LS",
    "WIDESHOT": "LS",
    "WIDE": "LS",
    "FULLSHOT": "LS",
    "MLS": "MLS",
    "MWS": "MLS",
    "MEDIUMLONGSHOT": "MLS",
    "MEDIUMWIDESHOT": "MLS",
    "MEDIUMWIDE": "MLS",
    "COWBOYSHOT": "MLS",
    "MS": "MS",
    "MEDIUMSHOT": "MS",
    "MIDSHOT": "MS",
    "MEDIUM": "MS",
    "MCU": "MCU",
    "MEDIUMCLOSEUP": "MCU",
    "MEDIUMCLOSESHOT": "MCU",
    "CU": "CU",
    "CLOSEUP": "CU",
    "CLOSESHOT": "CU",
    "ECU": "ECU",
    "XCU": "ECU",
    "EXTREMECLOSEUP": "ECU",
    "INSERT": "INSERT",
    "INSERTSHOT": "INSERT",
    "OS": "OS",
    "OTS": "OS",
    "OVERSHOULDER": "OS",
    "OVERTHESHOULDER": "OS",
    "OVERSHOULDERSHOT": "OS",
    "OVERTHESHOULDERSHOT": "OS",
    "POV": "POV",
    "POINTOFVIEW": "POV",
    "POINTOFVIEWSHOT": "POV",
    "2SHOT": "2-SHOT",
    "TWOSHOT": "2-SHOT",
}

# Keys are lower-cased letters only.
_ANGLE_ALIASES: dict[str, str] = {
    "eyelevel": "Eye Level",
    "eyelevelangle": "Eye Level",
    "neutral": "Eye Level",
    "lowangle": "Low Angle",
    "low": "Low Angle",
    "highangle": "High Angle",
    "high": "High Angle",
    "dutchangle": "Dutch Angle",
    "dutch": "Dutch Angle",
    "dutchtilt": "Dutch Angle",
    "cantedangle": "Dutch Angle",
    "canted": "Dutch Angle",
    "tiltedangle": "Dutch Angle",
    "birdseye": "Bird's Eye",
    "birdseyeview": "Bird's Eye",
    "overhead": "Bird's Eye",
    "topdown": "Bird's Eye",
    "wormseye": "Worm's Eye",
    "wormseyeview": "Worm's Eye",
    "groundlevel": "Worm's Eye",
}

_LENS_BY_FOCAL_LENGTH = {
    int(name.split("mm")[0]): name for name in LENS_CHARACTERISTICS
}

_PAREN_RE = re.compile(r"\(([^)]*)\)")
_FOCAL_RE = re.compile(r"(\d{2,3})\s*mm", re.IGNORECASE)

STORYBOARD_STYLE = (
    "Cinematic hand-drawn storyboard sketch, black and white pencil style, "
    "professional film pre-production, dramatic lighting, realistic proportions, "
    "strong composition, detailed line work, moody atmosphere, not photorealistic, "
    "no color, no text, visible pencil strokes, cross-hatching effect, film grammar accurate"
)

SHOT_FRAMING: dict[str, str] = {
    "ELS": "extreme wide establishing shot, environment dominates",
    "LS": "wide long shot, full bodies visible, environmental context",
    "MLS": "medium long shot, knees-to-head visible",
    "MS": "medium shot, waist-to-head framing",
    "MCU": "medium close-up, chest-to-head",
    "CU": "close-up, face detail and emotion",
    "ECU": "extreme close-up, detail emphasis",
    "INSERT": "insert shot, object detail only",
    "OS": "over-shoulder dialogue shot",
    "POV": "point-of-view perspective",
    "2-SHOT": "two-character frame, interaction",
}

ANGLE_LANGUAGE: dict[str, str] = {
    "Low Angle": "shot from below looking up, camera at ground level, subject towers above",
    "High Angle": "shot from above looking down, camera elevated, subject appears diminished",
    "Eye Level": "neutral eye-level camera positioning",
    "Dutch Angle": "tilted camera angle 30 degrees, diagonal horizon",
    "Bird's Eye": "overhead top-down perspective, map-like view",
    "Worm's Eye": "ground-level extreme low angle view",
}

LENS_LANGUAGE: dict[str, str] = {
    "24mm Wide": "ultra-wide distorted perspective, exaggerated depth, foreground emphasis",
    "35mm Standard": "moderate wide angle, natural cinematic view",
    "50mm Standard": "standard 50mm perspective, human eye equivalent",
    "85mm Portrait": "compressed telephoto perspective, isolated subject, flattened depth",
    "135mm Telephoto": "heavy compression, distant observation, stacked spatial planes",
}

COMPLIANCE_FOOTER = "Film grammar exact compliance required. No interpretation allowed."
MIN_DESCRIPTION_CHARS = 20
LONG_SHOT_SHARE_LIMIT = 0.5
MAX_CONSECUTIVE_SAME_SIZE = 2


@dataclass
class FrameReport:
    frame_id: str
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rules: dict[str, Any] = field(default_factory=dict)


@dataclass
class SequenceReport:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    frame_reports: list[FrameReport] = field(default_factory=list)
    shot_size_distribution: dict[str, int] = field(default_factory=dict)
    angle_distribution: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class FrameStrategy:
    name: str
    shot_size: str
    angle: str
    purpose: str


def _compact(text: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", text.upper())


def _value(frame: Any, name: str) -> Any:
    """Read ``name`` from a model or from a snake_case/camelCase mapping."""
    if isinstance(frame, BaseModel):
        return getattr(frame, name, None)
    if isinstance(frame, Mapping):
        camel = to_camel(name)
        return frame.get(camel, frame.get(name))
    return getattr(frame, name, None)


def _text(frame: Any, name: str) -> str:
    value = _value(frame, name)
    return "" if value is None else str(value).strip()


def normalize_shot_size(value: str | None) -> str | None:
    """Canonical shot-size key for ``value``, or None when unrecognized.

    Matching is exact against an alias table, so "ECU" never collapses to
    "CU". Forms such as "CU (Close-Up)" resolve through either part.
    """
    if not value:
        return None
    text = str(value)
    candidates = [text, _PAREN_RE.sub("", text)]
    candidates.extend(_PAREN_RE.findall(text))
    for candidate in candidates:
        key = _SHOT_SIZE_ALIASES.get(_compact(candidate))
        if key:
            return key
    return None


def normalize_camera_angle(value: str | None) -> str | None:
    if not value:
        return None
    text = str(value)
    for candidate in (text, _PAREN_RE.sub("", text)):
        key = _ANGLE_ALIASES.get(re.sub(r"[^a-z]", "", candidate.lower()))
        if key:
            return key
    return None


def normalize_lens(value: str | None) -> str | None:
    if not value:
        return None
    for name in LENS_CHARACTERISTICS:
        if name.lower() == str(value).strip().lower():
            return name
    match = _FOCAL_RE.search(str(value))
    if match:
        return _LENS_BY_FOCAL_LENGTH.get(int(match.group(1)))
    return None


def normalize_composition(value: str | None) -> str | None:
    if not value:
        return None
    lowered = str(value).lower()
    for name in COMPOSITION_RULES:
        if name.lower() in lowered:
            return name
    return None


def frame_id(frame: Any) -> str:
    scene = _text(frame, "scene") or "Unknown"
    shot = _text(frame, "shot_number") or "?"
    return f"{scene} - Shot {shot}"


def validate_frame(frame: Any) -> FrameReport:
    """Check one frame against the closed vocabularies."""
    errors: list[str] = []
    warnings: list[str] = []
    rules: dict[str, Any] = {}

    shot_size = _text(frame, "shot_size")
    if not shot_size:
        errors.append("Missing shotSize")
    else:
        key = normalize_shot_size(shot_size)
        if key is None:
            errors.append(
                f'Invalid shot size "{shot_size}". Use: {", ".join(SHOT_SIZES)}'
            )
        else:
            rules["shot_size"] = SHOT_SIZES[key]

    angle = _text(frame, "camera_angle")
    if not angle:
        errors.append("Missing cameraAngle")
    else:
        key = normalize_camera_angle(angle)
        if key is None:
            errors.append(f'Invalid angle "{angle}". Use: {", ".join(CAMERA_ANGLES)}')
        else:
            rules["angle"] = CAMERA_ANGLES[key]

    lens = _text(frame, "lens")
    if not lens:
        warnings.append("Missing lens specification")
    else:
        key = normalize_lens(lens)
        if key is None:
            errors.append(f'Invalid lens "{lens}". Use: {", ".join(LENS_CHARACTERISTICS)}')
        else:
            rules["lens"] = LENS_CHARACTERISTICS[key]

    composition = _text(frame, "composition")
    if not composition:
        warnings.append("Missing composition rule")
    else:
        key = normalize_composition(composition)
        if key is None:
            errors.append(
                f'Invalid composition "{composition}". Use: {", ".join(COMPOSITION_RULES)}'
            )
        else:
            rules["composition"] = COMPOSITION_RULES[key]

    if len(_text(frame, "description")) < MIN_DESCRIPTION_CHARS:
        errors.append(
            f"Description too short or missing (min {MIN_DESCRIPTION_CHARS} chars)"
        )
    if not _text(frame, "camera_movement"):
        warnings.append("Missing cameraMovement")
    if not _text(frame, "action_notes"):
        warnings.append("Missing actionNotes (blocking/staging)")
    if not _text(frame, "image_prompt"):
        errors.append("Missing imagePrompt")

    return FrameReport(
        frame_id=frame_id(frame),
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        rules=rules,
    )


def validate_sequence(frames: Iterable[Any]) -> SequenceReport:
    """Check a run of frames for per-frame validity and editing rhythm."""
    frames = list(frames)
    reports = [validate_frame(f) for f in frames]
    errors: list[str] = []
    warnings: list[str] = []

    failed = [r for r in reports if not r.is_valid]
    if failed:
        errors.append(f"{len(failed)} frame(s) failed validation")

    sizes = [
        normalize_shot_size(_text(f, "shot_size")) or _text(f, "shot_size").upper()
        for f in frames
    ]
    angles = [
        normalize_camera_angle(_text(f, "camera_angle")) or _text(f, "camera_angle")
        for f in frames
    ]

    run = 1
    for idx in range(1, len(sizes)):
        run = run + 1 if sizes[idx] and sizes[idx] == sizes[idx - 1] else 1
        if run > MAX_CONSECUTIVE_SAME_SIZE:
            warnings.append(
                f"Frame {idx + 1}: Same shot size ({sizes[idx]}) used 3+ times consecutively"
            )

    size_counts = Counter(sizes)
    if frames:
        long_share = size_counts.get("LS", 0) / len(frames)
        if long_share > LONG_SHOT_SHARE_LIMIT:
            warnings.append(
                f"Heavy use of LS ({long_share * 100:.0f}%); consider more CU/MS for emotional beats"
            )

    return SequenceReport(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        frame_reports=reports,
        shot_size_distribution=dict(size_counts),
        angle_distribution=dict(Counter(angles)),
    )


def render_image_prompt(frame: Any) -> str:
    """Image prompt built from the fixed phrase tables and the frame's fields."""
    shot_raw = _text(frame, "shot_size")
    angle_raw = _text(frame, "camera_angle")
    lens_raw = _text(frame, "lens")
    shot_key = normalize_shot_size(shot_raw)
    angle_key = normalize_camera_angle(angle_raw)
    lens_key = normalize_lens(lens_raw)

    framing = SHOT_FRAMING.get(shot_key, shot_raw) if shot_key else shot_raw
    angle_desc = ANGLE_LANGUAGE.get(angle_key, angle_raw) if angle_key else angle_raw
    lens_desc = LENS_LANGUAGE.get(lens_key, lens_raw) if lens_key else lens_raw

    characters = _value(frame, "characters") or []
    if isinstance(characters, str):
        characters = [characters]
    action_notes = _text(frame, "action_notes")
    lighting = _text(frame, "lighting")
    composition = _text(frame, "composition")

    lines = [
        STORYBOARD_STYLE,
        f"{framing} shot, {angle_desc}",
        f"Lens perspective: {lens_desc}" if lens_desc else "",
        f"Scene: {_text(frame, 'description')}",
        f"Action/Staging: {action_notes}" if action_notes else "",
        f"Lighting: {lighting}" if lighting else "",
        f"Composition: {composition}" if composition else "",
        f"Characters: {', '.join(str(c) for c in characters)}" if characters else "",
        COMPLIANCE_FOOTER,
    ]
    return "\n".join(line for line in lines if line).strip()


def multi_frame_strategy() -> list[FrameStrategy]:
    """Default establishing / action / tension triplet for a scene."""
    return [
        FrameStrategy(
            "ESTABLISHING SHOT",
            "LS",
            "Eye Level",
            "Set location, introduce environment, establish geography",
        ),
        FrameStrategy(
            "ACTION / DIALOGUE SHOT",
            "MS",
            "Eye Level",
            "Main action, character performance, dialogue delivery",
        ),
        FrameStrategy(
            "TENSION / DETAIL SHOT",
            "CU",
            "Low Angle",
            "Emotional impact, close detail, psychological moment",
        ),
    ]
