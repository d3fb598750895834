# agents/continuity_agent.py
"""Continuity bible: per-chunk start/end states and must-include/avoid lists."""

from typing import Any

import structlog

from config import EngineSettings, settings
from core.budget import TimeBudget
from core.errors import BudgetExhaustedError, CandidatesExhaustedError, SchemaViolation
from core.json_responder import JsonOptions, JsonResponder
from models import ChunkPlan, ChunkPlanSet, OutlineResult
from orchestration.token_accountant import Stage
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

CHUNK_KEY_MAP = {
    "chunk": "part",
    "part": "part",
    "start_scene": "startScene",
    "startscene": "startScene",
    "end_scene": "endScene",
    "endscene": "endScene",
    "start_state": "startState",
    "startstate": "startState",
    "end_state": "endState",
    "endstate": "endState",
    "must_include": "mustInclude",
    "mustinclude": "mustInclude",
    "must_avoid": "mustAvoid",
    "mustavoid": "mustAvoid",
}


def chunk_boundaries(scene_count: int, chunk_count: int) -> list[tuple[int, int]]:
    """Split scenes ``1..scene_count`` into contiguous, near-equal ranges."""
    if scene_count < 1:
        return []
    chunk_count = max(1, min(chunk_count, scene_count))
    base, extra = divmod(scene_count, chunk_count)
    boundaries: list[tuple[int, int]] = []
    start = 1
    for index in range(chunk_count):
        size = base + (1 if index < extra else 0)
        boundaries.append((start, start + size - 1))
        start += size
    return boundaries


def validate_boundaries(boundaries: list[tuple[int, int]], scene_count: int) -> None:
    """Raise ``ValueError`` unless ``boundaries`` partition ``1..scene_count``."""
    expected_start = 1
    for start, end in boundaries:
        if start != expected_start:
            raise ValueError(
                f"chunk boundaries must be contiguous: expected start {expected_start}, got {start}"
            )
        if start > end:
            raise ValueError(f"chunk boundary {start}-{end} is inverted")
        expected_start = end + 1
    if boundaries and expected_start - 1 != scene_count:
        raise ValueError(
            f"chunk boundaries end at {expected_start - 1}, outline has {scene_count} scenes"
        )


def chunk_plan_schema(chunk_count: int) -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["chunks"],
        "properties": {
            "chunks": {
                "type": "array",
                "description": f"Exactly {chunk_count} chunk plans, one per part.",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": [
                        "part",
                        "startScene",
                        "endScene",
                        "startState",
                        "endState",
                        "mustInclude",
                        "mustAvoid",
                    ],
                    "properties": {
                        "part": {"type": "integer"},
                        "startScene": {"type": "integer"},
                        "endScene": {"type": "integer"},
                        "startState": {
                            "type": "string",
                            "description": "2-4 sentences: situation when the chunk opens.",
                        },
                        "endState": {
                            "type": "string",
                            "description": "2-4 sentences: situation when the chunk closes.",
                        },
                        "mustInclude": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "3-8 concrete beats that must happen.",
                        },
                        "mustAvoid": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "2-7 pitfalls: repetition, resets, contradictions.",
                        },
                    },
                },
            }
        },
    }


def _normalize_chunk_keys(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    normalized: dict[str, Any] = {}
    for key, value in item.items():
        normalized.setdefault(CHUNK_KEY_MAP.get(str(key).lower(), key), value)
    return normalized


def _validate_plan_set(boundaries: list[tuple[int, int]]):
    def _validate(data: Any) -> list[ChunkPlan]:
        if isinstance(data, list):
            data = {"chunks": data}
        if not isinstance(data, dict):
            raise SchemaViolation("chunk plan must be an object")
        raw_chunks = [_normalize_chunk_keys(c) for c in data.get("chunks") or []]
        # The requested ranges are authoritative; the model only writes prose.
        for index, chunk in enumerate(raw_chunks):
            if isinstance(chunk, dict):
                part = chunk.get("part")
                if not isinstance(part, int) or not 1 <= part <= len(boundaries):
                    part = index + 1
                    chunk["part"] = part
                if 1 <= part <= len(boundaries):
                    chunk["startScene"], chunk["endScene"] = boundaries[part - 1]
        plans = ChunkPlanSet.model_validate({"chunks": raw_chunks}).chunks
        if sorted(p.part for p in plans) != list(range(1, len(boundaries) + 1)):
            raise SchemaViolation(
                f"expected one plan per chunk (1..{len(boundaries)}), got parts {[p.part for p in plans]}"
            )
        for plan in plans:
            if not plan.start_state.strip() or not plan.end_state.strip():
                raise SchemaViolation(f"chunk {plan.part} is missing a start or end state")
        return sorted(plans, key=lambda p: p.part)

    return _validate


class ContinuityBibleBuilder:
    """Builds :class:`ChunkPlan` contracts so independently written chunks agree."""

    def __init__(
        self,
        responder: JsonResponder,
        config: EngineSettings = settings,
        model_name: str | None = None,
    ):
        self.responder = responder
        self.config = config
        self.model_name = model_name or config.JSON_MODEL
        logger.info(f"ContinuityBibleBuilder initialized with model: {self.model_name}")

    async def plan_chunks(
        self,
        outline: OutlineResult,
        boundaries: list[tuple[int, int]],
        budget: TimeBudget | None = None,
    ) -> list[ChunkPlan] | None:
        """Return one plan per boundary, or ``None`` when that cannot be had.

        ``None`` tells the caller to write without a bible.
        """
        if not boundaries:
            return None
        validate_boundaries(boundaries, len(outline.scenes))
        if budget is not None and not budget.can_start():
            logger.info("Skipping continuity bible: time budget nearly spent.")
            return None

        chunks_for_prompt = [
            {
                "part": part,
                "start": start,
                "end": end,
                "scenes": [s for s in outline.scenes if start <= s.scene_number <= end],
            }
            for part, (start, end) in enumerate(boundaries, start=1)
        ]
        prompt = render_prompt(
            "continuity_agent/chunk_plan.j2",
            {"outline": outline, "chunks": chunks_for_prompt},
        )
        try:
            result = await self.responder.generate_json(
                prompt,
                chunk_plan_schema(len(boundaries)),
                JsonOptions(
                    schema_name="continuity_bible",
                    validator=_validate_plan_set(boundaries),
                    model=self.model_name,
                    temperature=self.config.TEMPERATURE_CONTINUITY,
                    max_tokens=self.config.MAX_JSON_TOKENS,
                    budget=budget,
                    stage=Stage.CONTINUITY,
                ),
            )
        except (CandidatesExhaustedError, BudgetExhaustedError) as exc:
            logger.warning("Continuity bible call failed.", error=str(exc))
            return None

        if not result.ok:
            logger.warning(
                "Continuity bible unusable; caller will write without it.",
                error=result.error,
                truncated=result.truncated,
            )
            return None
        logger.info(f"Continuity bible planned for {len(result.data)} chunks.")
        return result.data
