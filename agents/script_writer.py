# agents/script_writer.py
"""Screenplay drafting from an outline, single pass or bible-guided chunks."""

import math

import structlog

from agents.continuity_agent import ContinuityBibleBuilder, chunk_boundaries
from agents.outline_planner import parse_target_minutes
from config import EngineSettings, settings
from core.budget import TimeBudget
from core.errors import BudgetExhaustedError, CandidatesExhaustedError, DomainGenerationError
from core.llm_interface import LLMService, count_tokens, truncate_text_by_tokens
from models import ChunkPlan, OutlineResult, ScriptDraft
from orchestration.token_accountant import Stage
from processing.text_assembler import (
    append_chunk,
    estimate_pages,
    has_ending,
    needs_top_off,
    normalize_script,
    strip_ending,
)
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

SCREENWRITER_SYSTEM_PROMPT = (
    "You are a professional screenwriter. Write in standard screenplay format: "
    "scene headings, action lines, character cues and dialogue. "
    "Output only the screenplay text."
)

# Headroom left between prompt and generation inside the context window.
CONTEXT_SAFETY_TOKENS = 200


class ScriptWriter:
    def __init__(
        self,
        llm: LLMService,
        bible_builder: ContinuityBibleBuilder,
        config: EngineSettings = settings,
        model_name: str | None = None,
    ):
        self.llm = llm
        self.bible_builder = bible_builder
        self.config = config
        self.model_name = model_name or config.TEXT_MODEL
        logger.info(f"ScriptWriter initialized with model: {self.model_name}")

    async def write(
        self,
        outline: OutlineResult,
        target_length: str | int,
        genre: str,
        budget: TimeBudget | None = None,
        idea: str = "",
    ) -> ScriptDraft:
        """Write a screenplay of roughly one page per minute of ``target_length``.

        Raises :class:`DomainGenerationError` only when no text at all could
        be produced. A failed chunk is skipped.
        """
        target_pages = parse_target_minutes(target_length, self.config.DEFAULT_TARGET_MINUTES)
        budget = budget or TimeBudget.from_settings(self.config)
        used_bible = False

        if target_pages <= self.config.SINGLE_PASS_MAX_PAGES or len(outline.scenes) < 2:
            chunk_count = 1
            text = await self._draft_single(outline, target_pages, genre, idea, budget)
        else:
            boundaries = chunk_boundaries(
                len(outline.scenes),
                math.ceil(target_pages / self.config.PAGES_PER_CHUNK),
            )
            chunk_count = len(boundaries)
            plans = await self.bible_builder.plan_chunks(outline, boundaries, budget)
            used_bible = plans is not None
            text = await self._draft_chunks(
                outline, boundaries, plans, target_pages, genre, idea, budget
            )

        text = normalize_script(text)
        if not text:
            raise DomainGenerationError("script", "no screenplay text was produced")

        passes = 0
        while (
            passes < self.config.MAX_TOP_OFF_PASSES
            and needs_top_off(
                text,
                target_pages,
                self.config.TOP_OFF_THRESHOLD,
                self.config.WORDS_PER_PAGE,
            )
            and budget.can_start()
        ):
            extended = await self._top_off(text, outline, target_pages, genre, budget)
            if extended is None:
                break
            text = extended
            passes += 1

        draft = ScriptDraft(
            text=text,
            estimated_pages=estimate_pages(text, self.config.WORDS_PER_PAGE),
            target_pages=target_pages,
            chunk_count=chunk_count,
            used_continuity_bible=used_bible,
            top_off_passes=passes,
        )
        logger.info(
            f"Script drafted: {draft.estimated_pages} of {target_pages} pages.",
            chunks=chunk_count,
            bible=used_bible,
            top_off_passes=passes,
        )
        return draft

    async def _call(
        self, prompt: str, budget: TimeBudget, stage: Stage
    ) -> str | None:
        prompt_tokens = count_tokens(prompt, self.model_name)
        available_for_generation = (
            self.config.MAX_CONTEXT_TOKENS - prompt_tokens - CONTEXT_SAFETY_TOKENS
        )
        max_gen_tokens = min(self.config.MAX_DRAFT_TOKENS, available_for_generation)
        if max_gen_tokens < self.config.MIN_DRAFT_GENERATION_TOKENS:
            logger.error(
                f"Insufficient token space for a {stage.value} call.",
                prompt_tokens=prompt_tokens,
                context_tokens=self.config.MAX_CONTEXT_TOKENS,
            )
            return None
        try:
            text, _ = await self.llm.generate_text(
                prompt,
                model_name=self.model_name,
                system_prompt=SCREENWRITER_SYSTEM_PROMPT,
                temperature=self.config.TEMPERATURE_DRAFTING,
                max_tokens=max_gen_tokens,
                budget=budget,
                stage=stage.value,
            )
        except (CandidatesExhaustedError, BudgetExhaustedError) as exc:
            logger.warning(f"{stage.value} call failed.", error=str(exc))
            return None
        return text if text and text.strip() else None

    async def _draft_single(
        self,
        outline: OutlineResult,
        target_pages: int,
        genre: str,
        idea: str,
        budget: TimeBudget,
    ) -> str:
        prompt = render_prompt(
            "script_writer/single_pass.j2",
            {
                "idea": idea,
                "genre": genre,
                "outline": outline,
                "target_pages": target_pages,
                "target_words": target_pages * self.config.WORDS_PER_PAGE,
            },
        )
        return await self._call(prompt, budget, Stage.DRAFTING) or ""

    async def _draft_chunks(
        self,
        outline: OutlineResult,
        boundaries: list[tuple[int, int]],
        plans: list[ChunkPlan] | None,
        target_pages: int,
        genre: str,
        idea: str,
        budget: TimeBudget,
    ) -> str:
        text = ""
        pages_per_chunk = max(1, round(target_pages / len(boundaries)))
        for part, (start, end) in enumerate(boundaries, start=1):
            if not budget.can_start():
                logger.warning(
                    "Time budget spent; stopping chunked drafting early.",
                    written_parts=part - 1,
                    total_parts=len(boundaries),
                )
                break
            previous_tail = truncate_text_by_tokens(
                text,
                self.model_name,
                self.config.DRAFT_CONTEXT_TAIL_TOKENS,
                truncation_marker="... (earlier pages omitted)\n",
                keep="tail",
            )
            prompt = render_prompt(
                "script_writer/chunk.j2",
                {
                    "idea": idea,
                    "genre": genre,
                    "outline": outline,
                    "part": part,
                    "part_count": len(boundaries),
                    "scenes": [
                        s for s in outline.scenes if start <= s.scene_number <= end
                    ],
                    "plan": plans[part - 1] if plans else None,
                    "previous_tail": previous_tail,
                    "target_pages": pages_per_chunk,
                    "target_words": pages_per_chunk * self.config.WORDS_PER_PAGE,
                    "is_first": part == 1,
                    "is_last": part == len(boundaries),
                },
            )
            chunk = await self._call(prompt, budget, Stage.DRAFTING)
            if chunk is None:
                logger.warning(f"Skipping part {part} of {len(boundaries)}: no text.")
                continue
            text = append_chunk(
                text,
                chunk,
                self.config.ASSEMBLER_OVERLAP_WINDOW,
                self.config.ASSEMBLER_MIN_OVERLAP,
                self.config.ASSEMBLER_LINE_SIMILARITY,
            )
        return text

    async def _top_off(
        self,
        text: str,
        outline: OutlineResult,
        target_pages: int,
        genre: str,
        budget: TimeBudget,
    ) -> str | None:
        """Continue a short draft; returns the extended text or None."""
        body, had_ending = strip_ending(text)
        missing_pages = max(
            1, math.ceil(target_pages - estimate_pages(body, self.config.WORDS_PER_PAGE))
        )
        prompt = render_prompt(
            "script_writer/top_off.j2",
            {
                "genre": genre,
                "outline": outline,
                "previous_tail": truncate_text_by_tokens(
                    body,
                    self.model_name,
                    self.config.DRAFT_CONTEXT_TAIL_TOKENS,
                    truncation_marker="... (earlier pages omitted)\n",
                    keep="tail",
                ),
                "missing_pages": missing_pages,
                "target_words": missing_pages * self.config.WORDS_PER_PAGE,
            },
        )
        continuation = await self._call(prompt, budget, Stage.TOP_OFF)
        if continuation is None:
            return None
        extended = append_chunk(
            body,
            continuation,
            self.config.ASSEMBLER_OVERLAP_WINDOW,
            self.config.ASSEMBLER_MIN_OVERLAP,
            self.config.ASSEMBLER_LINE_SIMILARITY,
        )
        if had_ending and not has_ending(continuation):
            extended = extended.rstrip() + "\n\nTHE END"
        return normalize_script(extended)
