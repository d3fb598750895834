# agents/outline_planner.py
"""Outline planning: scene-cap policy, strategy selection and invariant repair."""

import re
from typing import Any

import structlog

from config import EngineSettings, settings
from core.budget import TimeBudget
from core.concurrency import gather_bounded
from core.errors import BudgetExhaustedError, CandidatesExhaustedError, SchemaViolation
from core.json_responder import JsonOptions, JsonResponder
from models import ActScenes, OutlineResult, OutlineScene, StoryFrame
from orchestration.token_accountant import Stage
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

SCENE_KEY_MAP = {
    "scene": "sceneNumber",
    "scene_number": "sceneNumber",
    "scenenumber": "sceneNumber",
    "number": "sceneNumber",
    "act": "act",
    "heading": "heading",
    "slugline": "heading",
    "scene_heading": "heading",
    "location": "heading",
    "summary": "summary",
    "beat": "summary",
    "description": "summary",
}

_PLACEHOLDER_PLACES = [
    ("INT.", "APARTMENT", "DAY"),
    ("EXT.", "CITY STREET", "NIGHT"),
    ("INT.", "OFFICE", "DAY"),
    ("EXT.", "ROOFTOP", "DUSK"),
    ("INT.", "WAREHOUSE", "NIGHT"),
    ("EXT.", "PARK", "DAY"),
]
_ACT_BEATS = {
    1: "Setup beat: establish the protagonist, the world and the inciting problem.",
    2: "Confrontation beat: obstacles escalate and the protagonist's plan is tested.",
    3: "Resolution beat: the conflict comes to a head and its consequences land.",
}


def parse_target_minutes(
    target_length: str | int | None, default: int = settings.DEFAULT_TARGET_MINUTES
) -> int:
    """``"120 min"`` -> 120; ``"90-120 min"`` -> 90 (first number wins).

    Anything without digits falls back to ``default``.
    """
    if isinstance(target_length, int) and not isinstance(target_length, bool):
        return target_length if target_length > 0 else default
    match = re.search(r"\d+", str(target_length or ""))
    if not match:
        return default
    minutes = int(match.group())
    return minutes if minutes > 0 else default


def compute_scene_cap(minutes: int, config: EngineSettings = settings) -> int:
    """Scene count for a runtime, summed over the configured pacing bands."""
    total = 0.0
    lower = 0.0
    for upper, rate in config.SCENE_CAP_BANDS:
        if minutes <= lower:
            break
        total += (min(minutes, upper) - lower) * rate
        lower = upper
    cap = int(total + 0.5)
    return max(config.SCENE_CAP_FLOOR, min(config.SCENE_CAP_CEILING, cap))


def act_scene_counts(cap: int) -> tuple[int, int, int]:
    """Split ``cap`` into act 1 (~25%), act 2 (~50%) and the remainder."""
    act1 = max(1, int(cap * 0.25 + 0.5))
    act2 = max(1, int(cap * 0.5 + 0.5))
    act3 = cap - act1 - act2
    if act3 < 1:
        act2 -= 1 - act3
        act3 = 1
    return act1, act2, act3


def act_ranges(cap: int) -> list[tuple[int, int]]:
    """Inclusive, contiguous scene-number ranges for the three acts."""
    ranges: list[tuple[int, int]] = []
    start = 1
    for count in act_scene_counts(cap):
        ranges.append((start, start + count - 1))
        start += count
    return ranges


def _act_for_number(number: int, cap: int) -> int:
    for act, (start, end) in enumerate(act_ranges(cap), start=1):
        if start <= number <= end:
            return act
    return 3


def placeholder_scenes(
    count: int, start_number: int = 1, act: int | None = None, cap: int | None = None
) -> list[OutlineScene]:
    """Deterministic filler scenes with alternating INT./EXT. headings."""
    scenes: list[OutlineScene] = []
    for offset in range(count):
        number = start_number + offset
        prefix, place, time_of_day = _PLACEHOLDER_PLACES[
            (number - 1) % len(_PLACEHOLDER_PLACES)
        ]
        scene_act = act if act is not None else _act_for_number(number, cap or count)
        scenes.append(
            OutlineScene(
                act=scene_act,
                scene_number=number,
                heading=f"{prefix} {place} - {time_of_day}",
                summary=_ACT_BEATS[scene_act],
            )
        )
    return scenes


def placeholder_outline(idea: str, genre: str, cap: int) -> OutlineResult:
    idea_text = idea.strip() or "An untitled story"
    genre_text = genre.strip() or "drama"
    return OutlineResult(
        logline=f"{idea_text} ({genre_text}).",
        synopsis=(
            f"A {genre_text.lower()} film. {idea_text}. "
            "The story moves through setup, confrontation and resolution."
        ),
        themes=[genre_text.lower()],
        scenes=placeholder_scenes(cap, cap=cap),
        strategy="placeholder",
    )


def _normalize_scene_keys(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    normalized: dict[str, Any] = {}
    for key, value in item.items():
        internal = SCENE_KEY_MAP.get(str(key).lower().replace(" ", "_"), key)
        normalized.setdefault(internal, value)
    return normalized


def _scene_item_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["act", "sceneNumber", "heading", "summary"],
        "properties": {
            "act": {"type": "integer", "enum": [1, 2, 3]},
            "sceneNumber": {"type": "integer"},
            "heading": {
                "type": "string",
                "description": "Scene heading such as 'INT. WAREHOUSE - NIGHT'.",
            },
            "summary": {"type": "string"},
        },
    }


def outline_schema(scene_count: int) -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["logline", "synopsis", "themes", "scenes"],
        "properties": {
            "logline": {"type": "string"},
            "synopsis": {"type": "string"},
            "themes": {"type": "array", "items": {"type": "string"}},
            "scenes": {
                "type": "array",
                "description": f"Exactly {scene_count} scenes in story order.",
                "items": _scene_item_schema(),
            },
        },
    }


def story_frame_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["logline", "synopsis", "themes", "acts"],
        "properties": {
            "logline": {"type": "string"},
            "synopsis": {"type": "string"},
            "themes": {"type": "array", "items": {"type": "string"}},
            "acts": {
                "type": "array",
                "description": "Exactly three act summaries, acts 1 to 3.",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["act", "summary"],
                    "properties": {
                        "act": {"type": "integer", "enum": [1, 2, 3]},
                        "summary": {"type": "string"},
                    },
                },
            },
        },
    }


def act_scenes_schema(scene_count: int) -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["scenes"],
        "properties": {
            "scenes": {
                "type": "array",
                "description": f"Exactly {scene_count} scenes.",
                "items": _scene_item_schema(),
            }
        },
    }


def _validate_outline(min_scenes: int):
    def _validate(data: Any) -> OutlineResult:
        if isinstance(data, list):
            data = {"scenes": data}
        if not isinstance(data, dict):
            raise SchemaViolation(f"outline must be an object, got {type(data).__name__}")
        data = dict(data)
        data["scenes"] = [_normalize_scene_keys(s) for s in data.get("scenes") or []]
        outline = OutlineResult.model_validate(data)
        if not outline.logline.strip() or not outline.synopsis.strip():
            raise SchemaViolation("outline is missing logline or synopsis")
        usable = [s for s in outline.scenes if s.summary]
        if len(usable) < min_scenes:
            raise SchemaViolation(
                f"outline has {len(usable)} usable scenes, need at least {min_scenes}"
            )
        return outline.model_copy(update={"scenes": usable})

    return _validate


def _validate_act_scenes(expected: int):
    def _validate(data: Any) -> list[OutlineScene]:
        if isinstance(data, list):
            data = {"scenes": data}
        if not isinstance(data, dict):
            raise SchemaViolation("act scenes must be an object")
        scenes = ActScenes.model_validate(
            {"scenes": [_normalize_scene_keys(s) for s in data.get("scenes") or []]}
        ).scenes
        if len(scenes) != expected:
            raise SchemaViolation(f"expected {expected} scenes, got {len(scenes)}")
        if any(not s.summary for s in scenes):
            raise SchemaViolation("act scene without a summary")
        return scenes

    return _validate


def _validate_story_frame(data: Any) -> StoryFrame:
    frame = StoryFrame.model_validate(data)
    acts = sorted(frame.acts, key=lambda a: a.act)
    if [a.act for a in acts[:3]] != [1, 2, 3]:
        raise SchemaViolation("story frame must contain acts 1, 2 and 3")
    return frame.model_copy(update={"acts": acts[:3]})


class OutlinePlanner:
    """Produces an :class:`OutlineResult` with exactly the negotiated scene count."""

    def __init__(
        self,
        responder: JsonResponder,
        config: EngineSettings = settings,
        model_name: str | None = None,
    ):
        self.responder = responder
        self.config = config
        self.model_name = model_name or config.JSON_MODEL
        logger.info(f"OutlinePlanner initialized with model: {self.model_name}")

    def _options(self, validator, budget: TimeBudget, stage: Stage, **kwargs) -> JsonOptions:
        return JsonOptions(
            validator=validator,
            model=self.model_name,
            temperature=self.config.TEMPERATURE_OUTLINE,
            max_tokens=self.config.MAX_OUTLINE_TOKENS,
            budget=budget,
            stage=stage,
            **kwargs,
        )

    async def plan_outline(
        self,
        idea: str,
        genre: str,
        target_length: str | int,
        budget: TimeBudget | None = None,
    ) -> OutlineResult:
        """Plan an outline. Degrades to placeholders instead of raising.

        Only ``ConfigurationError`` propagates.
        """
        minutes = parse_target_minutes(target_length, self.config.DEFAULT_TARGET_MINUTES)
        cap = compute_scene_cap(minutes, self.config)
        budget = budget or TimeBudget.from_settings(self.config)

        if not budget.can_start(self.config.OUTLINE_MIN_BUDGET_SECONDS):
            logger.warning(
                "Time budget too small for outline generation; returning placeholder outline.",
                remaining=round(budget.remaining(), 2),
                scene_cap=cap,
            )
            return self._finalize(placeholder_outline(idea, genre, cap), cap, idea, genre)

        logger.info(
            f"Planning outline for a {minutes} min {genre} film (scene cap {cap}).",
            strategy="act_split"
            if minutes >= self.config.ACT_SPLIT_THRESHOLD_MINUTES
            else "single",
        )
        try:
            if minutes >= self.config.ACT_SPLIT_THRESHOLD_MINUTES:
                outline = await self._plan_act_split(idea, genre, minutes, cap, budget)
            else:
                outline = await self._plan_single(idea, genre, minutes, cap, budget)
        except (CandidatesExhaustedError, BudgetExhaustedError) as exc:
            logger.warning(
                "Outline generation failed; degrading to placeholder outline.",
                error=str(exc),
            )
            outline = placeholder_outline(idea, genre, cap)
        return self._finalize(outline, cap, idea, genre)

    async def _plan_single(
        self, idea: str, genre: str, minutes: int, cap: int, budget: TimeBudget
    ) -> OutlineResult:
        attempt_cap = cap
        for attempt in range(2):
            if attempt > 0 and not budget.can_start():
                break
            prompt = render_prompt(
                "outline_planner/full_outline.j2",
                {
                    "idea": idea,
                    "genre": genre,
                    "minutes": minutes,
                    "scene_count": attempt_cap,
                    "act_counts": act_scene_counts(attempt_cap),
                },
            )
            result = await self.responder.generate_json(
                prompt,
                outline_schema(attempt_cap),
                self._options(
                    _validate_outline(max(1, attempt_cap // 2)),
                    budget,
                    Stage.OUTLINE,
                    schema_name="outline",
                ),
            )
            if result.ok:
                logger.info(
                    "Outline generated.",
                    attempt=attempt + 1,
                    scenes=len(result.data.scenes),
                    repaired=result.repaired,
                )
                return result.data.model_copy(update={"strategy": "single"})
            logger.warning(
                "Outline attempt failed.",
                attempt=attempt + 1,
                truncated=result.truncated,
                error=result.error,
            )
            attempt_cap = max(
                self.config.SCENE_CAP_FLOOR,
                int(attempt_cap * self.config.OUTLINE_RETRY_SHRINK),
            )
        return placeholder_outline(idea, genre, cap)

    async def _plan_act_split(
        self, idea: str, genre: str, minutes: int, cap: int, budget: TimeBudget
    ) -> OutlineResult:
        counts = act_scene_counts(cap)
        frame_prompt = render_prompt(
            "outline_planner/story_frame.j2",
            {"idea": idea, "genre": genre, "minutes": minutes, "act_counts": counts},
        )
        frame_result = await self.responder.generate_json(
            frame_prompt,
            story_frame_schema(),
            self._options(
                _validate_story_frame, budget, Stage.OUTLINE, schema_name="story_frame"
            ),
        )
        if frame_result.ok:
            frame: StoryFrame = frame_result.data
        else:
            logger.warning(
                "Act summary call failed; planning acts from placeholder summaries.",
                error=frame_result.error,
            )
            fallback = placeholder_outline(idea, genre, cap)
            frame = StoryFrame(
                logline=fallback.logline,
                synopsis=fallback.synopsis,
                themes=fallback.themes,
                acts=[{"act": n, "summary": _ACT_BEATS[n]} for n in (1, 2, 3)],
            )

        ranges = act_ranges(cap)

        async def _run_act(act_number: int) -> list[OutlineScene]:
            start, end = ranges[act_number - 1]
            return await self._plan_act(
                idea, genre, frame, act_number, start, end - start + 1, budget
            )

        per_act = await gather_bounded(
            [1, 2, 3], _run_act, self.config.MAX_PARALLEL_CALLS, label="act scenes"
        )
        scenes: list[OutlineScene] = []
        for act_number, act_scenes in enumerate(per_act, start=1):
            start, end = ranges[act_number - 1]
            if act_scenes is None:
                act_scenes = placeholder_scenes(end - start + 1, start, act=act_number)
            scenes.extend(act_scenes)

        return OutlineResult(
            logline=frame.logline,
            synopsis=frame.synopsis,
            themes=frame.themes,
            scenes=scenes,
            strategy="act_split",
        )

    async def _plan_act(
        self,
        idea: str,
        genre: str,
        frame: StoryFrame,
        act_number: int,
        start_number: int,
        count: int,
        budget: TimeBudget,
    ) -> list[OutlineScene]:
        """Scenes for one act: first attempt, then one compact retry, then filler."""
        for compact in (False, True):
            if not budget.can_start():
                logger.info("Budget spent before act call.", act=act_number)
                break
            prompt = render_prompt(
                "outline_planner/act_scenes.j2",
                {
                    "idea": idea,
                    "genre": genre,
                    "logline": frame.logline,
                    "acts": frame.acts,
                    "act_number": act_number,
                    "scene_count": count,
                    "start_number": start_number,
                    "end_number": start_number + count - 1,
                    "compact": compact,
                },
            )
            try:
                result = await self.responder.generate_json(
                    prompt,
                    act_scenes_schema(count),
                    self._options(
                        _validate_act_scenes(count),
                        budget,
                        Stage.OUTLINE_ACTS,
                        schema_name=f"act_{act_number}_scenes",
                        allow_repair=compact,
                    ),
                )
            except (CandidatesExhaustedError, BudgetExhaustedError) as exc:
                logger.warning("Act call failed.", act=act_number, error=str(exc))
                continue
            if result.ok:
                return [
                    s.model_copy(update={"act": act_number, "scene_number": start_number + i})
                    for i, s in enumerate(result.data)
                ]
            logger.warning(
                "Act call returned the wrong shape.",
                act=act_number,
                compact_retry=compact,
                error=result.error,
            )
        logger.warning(
            f"Using {count} placeholder scenes for act {act_number}.", act=act_number
        )
        return placeholder_scenes(count, start_number, act=act_number)

    def _finalize(
        self, outline: OutlineResult, cap: int, idea: str, genre: str
    ) -> OutlineResult:
        """Enforce the scene-count and numbering invariants."""
        scenes = list(outline.scenes)[:cap]
        shortfall = cap - len(scenes)
        if shortfall > 0:
            logger.info(f"Padding outline with {shortfall} placeholder act-2 scenes.")
            insert_at = 0
            for idx, scene in enumerate(scenes):
                if scene.act <= 2:
                    insert_at = idx + 1
            filler = placeholder_scenes(shortfall, len(scenes) + 1, act=2)
            scenes = scenes[:insert_at] + filler + scenes[insert_at:]

        fixed: list[OutlineScene] = []
        for number, scene in enumerate(scenes, start=1):
            heading = scene.heading or placeholder_scenes(1, number, act=scene.act)[0].heading
            fixed.append(scene.model_copy(update={"scene_number": number, "heading": heading}))

        fallback = placeholder_outline(idea, genre, cap)
        return outline.model_copy(
            update={
                "scenes": fixed,
                "logline": outline.logline or fallback.logline,
                "synopsis": outline.synopsis or fallback.synopsis,
                "themes": outline.themes or fallback.themes,
            }
        )
