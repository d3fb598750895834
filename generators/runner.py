# generators/runner.py
"""Generic execution of :class:`~generators.base.DomainGenerator` definitions."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from config import EngineSettings, settings
from core.budget import TimeBudget
from core.concurrency import gather_bounded
from core.errors import BudgetExhaustedError, CandidatesExhaustedError, DomainGenerationError
from core.json_responder import JsonOptions, JsonResponder
from prompt_renderer import render_prompt

from .base import Context, DomainGenerator
from .catalog import GENERATORS

logger = structlog.get_logger(__name__)


class DomainGeneratorRunner:
    """Runs any registered generator through the JSON responder.

    The result is a validated artifact or a :class:`DomainGenerationError`.
    """

    def __init__(
        self,
        responder: JsonResponder,
        config: EngineSettings = settings,
        model_name: str | None = None,
        generators: Mapping[str, DomainGenerator] | None = None,
    ):
        self.responder = responder
        self.config = config
        self.model_name = model_name or config.JSON_MODEL
        self.generators = dict(generators if generators is not None else GENERATORS)
        logger.info(
            f"DomainGeneratorRunner initialized with model: {self.model_name}",
            kinds=sorted(self.generators),
        )

    async def generate(
        self,
        kind: str,
        context: Context,
        budget: TimeBudget | None = None,
    ) -> Any:
        generator = self.generators.get(kind)
        if generator is None:
            raise DomainGenerationError(kind, "no generator registered for this kind")
        budget = budget or TimeBudget.from_settings(self.config)

        ctx = generator.prepare(context, self.config) if generator.prepare else dict(context)
        sub_contexts = generator.batches(ctx, self.config) if generator.batches else [ctx]
        logger.info(f"Generating {kind}.", batches=len(sub_contexts))

        if len(sub_contexts) == 1:
            parts = [await self._generate_part(generator, sub_contexts[0], budget)]
        else:

            async def _run(sub: Context) -> Any:
                return await self._generate_part(generator, sub, budget)

            parts = await gather_bounded(
                sub_contexts,
                _run,
                self.config.MAX_PARALLEL_CALLS,
                label=f"{kind} batch",
            )
            failed = [i + 1 for i, part in enumerate(parts) if part is None]
            if failed:
                raise DomainGenerationError(
                    kind, f"{len(failed)} of {len(parts)} batches failed: {failed}"
                )

        artifact = generator.merge(parts, ctx) if generator.merge else parts[0]
        if generator.postprocess is not None:
            artifact = generator.postprocess(artifact, ctx)
        logger.info(f"Generated {kind}.")
        return artifact

    async def _generate_part(
        self, generator: DomainGenerator, ctx: Context, budget: TimeBudget
    ) -> Any:
        prompt = render_prompt(generator.template, ctx)
        max_tokens = (
            self.config.MAX_BATCH_JSON_TOKENS
            if generator.batches
            else self.config.MAX_JSON_TOKENS
        )
        try:
            result = await self.responder.generate_json(
                prompt,
                generator.schema(ctx),
                JsonOptions(
                    schema_name=f"{generator.kind}_artifact",
                    validator=generator.validator(ctx),
                    model=self.model_name,
                    temperature=self.config.TEMPERATURE_DOMAIN,
                    max_tokens=max_tokens,
                    budget=budget,
                    stage=generator.stage,
                ),
            )
        except (CandidatesExhaustedError, BudgetExhaustedError) as exc:
            raise DomainGenerationError(generator.kind, str(exc)) from exc
        if not result.ok:
            logger.warning(
                f"{generator.kind} output unusable after repair.",
                truncated=result.truncated,
                error=result.error,
            )
            raise DomainGenerationError(generator.kind, result.error or "invalid output")
        return result.data
