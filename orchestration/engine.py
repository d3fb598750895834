# orchestration/engine.py
"""Entry point for inbound film-package requests."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

import structlog

from agents.continuity_agent import ContinuityBibleBuilder, chunk_boundaries
from agents.outline_planner import OutlinePlanner, parse_target_minutes
from agents.script_writer import ScriptWriter
from config import EngineSettings, settings
from core.budget import TimeBudget
from core.concurrency import gather_bounded
from core.errors import InvalidRequestError
from core.json_responder import JsonResponder
from core.llm_interface import LLMService
from generators import DomainGeneratorRunner
from models import DomainStep, InboundRequest, OutlineResult
from orchestration.token_accountant import TokenAccountant

logger = structlog.get_logger(__name__)

DOMAIN_STEPS = ("characters", "storyboard", "budget", "schedule", "locations", "sound")

REQUIRED_INPUTS: dict[str, tuple[str, ...]] = {
    "outline": ("idea", "genre"),
    "chunks": ("idea", "genre"),
    "script": ("idea", "genre"),
    "characters": ("script", "genre"),
    "storyboard": ("idea", "genre"),
    "budget": ("genre", "target_length"),
    "schedule": ("script", "target_length"),
    "locations": ("genre",),
    "sound": ("script", "genre"),
}


def missing_inputs(request: InboundRequest, step: str) -> list[str]:
    """Inputs ``step`` needs that ``request`` leaves empty.

    A supplied outline stands in for the idea.
    """
    missing = []
    for name in REQUIRED_INPUTS.get(step, ()):
        if name == "idea" and request.outline is not None:
            continue
        value = getattr(request, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


class FilmPackageEngine:
    """Dispatches an :class:`InboundRequest` to the component for its step."""

    def __init__(
        self,
        llm: LLMService,
        config: EngineSettings = settings,
        accountant: TokenAccountant | None = None,
    ):
        self.config = config
        self.accountant = accountant or llm.accountant or TokenAccountant()
        if llm.accountant is None:
            llm.accountant = self.accountant
        self.llm = llm
        self.responder = JsonResponder(llm, config)
        self.outline_planner = OutlinePlanner(self.responder, config)
        self.bible_builder = ContinuityBibleBuilder(self.responder, config)
        self.script_writer = ScriptWriter(llm, self.bible_builder, config)
        self.domain_runner = DomainGeneratorRunner(self.responder, config)

    async def run(self, request: InboundRequest) -> dict[str, Any]:
        """Run ``request.domain_step`` with a fresh time budget.

        Returns camelCase JSON-ready data. Raises ``InvalidRequestError`` for
        missing inputs and ``DomainGenerationError`` when an artifact could
        not be produced.
        """
        step = request.domain_step
        missing = missing_inputs(request, step)
        if missing:
            raise InvalidRequestError(step, missing)

        budget = TimeBudget.from_settings(self.config)
        logger.info(f"Running step '{step}'.", genre=request.genre, length=request.target_length)

        if step == "outline":
            outline = await self._outline(request, budget)
            return outline.to_wire()
        if step == "chunks":
            return await self._chunks(request, budget)
        if step == "script":
            outline = await self._outline(request, budget)
            draft = await self.script_writer.write(
                outline, request.target_length, request.genre, budget, idea=request.idea
            )
            return {**draft.to_wire(), "outline": outline.to_wire()}
        if step in DOMAIN_STEPS:
            artifact = await self.domain_runner.generate(
                step, self._domain_context(request), budget
            )
            return artifact.to_wire()
        raise InvalidRequestError(step, ["a known domainStep"])

    async def run_many(
        self, request: InboundRequest, steps: Sequence[DomainStep]
    ) -> dict[str, dict[str, Any] | None]:
        """Run independent steps concurrently; a failed step maps to ``None``."""
        requests = [request.model_copy(update={"domain_step": step}) for step in steps]
        results = await gather_bounded(
            requests, self.run, self.config.MAX_PARALLEL_CALLS, label="step"
        )
        return dict(zip(steps, results))

    def usage_summary(self) -> dict[str, dict[str, int]]:
        return self.accountant.summary()

    async def _outline(self, request: InboundRequest, budget: TimeBudget) -> OutlineResult:
        if request.outline is not None:
            return request.outline
        return await self.outline_planner.plan_outline(
            request.idea, request.genre, request.target_length, budget
        )

    async def _chunks(self, request: InboundRequest, budget: TimeBudget) -> dict[str, Any]:
        outline = await self._outline(request, budget)
        minutes = parse_target_minutes(
            request.target_length, self.config.DEFAULT_TARGET_MINUTES
        )
        boundaries = chunk_boundaries(
            len(outline.scenes), max(1, math.ceil(minutes / self.config.PAGES_PER_CHUNK))
        )
        plans = await self.bible_builder.plan_chunks(outline, boundaries, budget)
        return {
            "outline": outline.to_wire(),
            "chunks": [p.to_wire() for p in plans] if plans is not None else None,
        }

    def _domain_context(self, request: InboundRequest) -> dict[str, Any]:
        return {
            "idea": request.idea,
            "genre": request.genre,
            "target_length": request.target_length,
            "script": request.script,
            "characters": request.characters,
            "outline": request.outline,
            "low_budget": request.low_budget,
        }
