# core/json_responder.py
"""JSON generation on top of :class:`~core.llm_interface.LLMService`.

Strict schema mode first, loose ``json_object`` mode as fallback, truncation
detection on every response and a single repair pass for broken output.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

import structlog
from pydantic import BaseModel

from config import EngineSettings, settings
from core.budget import TimeBudget
from core.errors import BudgetExhaustedError, CandidatesExhaustedError
from core.llm_interface import LLMService, truncate_text_by_tokens
from models import GenerationRequest, RawResponse
from orchestration.token_accountant import Stage
from parsing import ParseError, ParseResult, looks_truncated, parse_structured
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

JSON_SYSTEM_PROMPT = (
    "You are an expert film development assistant. "
    "Always produce valid JSON without extra commentary or Markdown fences."
)


@dataclass
class JsonOptions(Generic[T]):
    """Per-call knobs for :meth:`JsonResponder.generate_json`."""

    schema_name: str = "result"
    validator: Callable[[Any], T] | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str = JSON_SYSTEM_PROMPT
    budget: TimeBudget | None = None
    stage: Stage | str | None = None
    allow_repair: bool = True


@dataclass
class JsonResult(Generic[T]):
    """Outcome of one JSON generation. ``data`` is None on failure."""

    data: T | None
    raw_text: str
    truncated: bool
    mode: Literal["strict", "loose"] = "strict"
    repaired: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None

    def __iter__(self):
        yield self.data
        yield self.raw_text
        yield self.truncated


def model_validator_for(model_cls: type[M]) -> Callable[[Any], M]:
    """Validator that turns parsed JSON into ``model_cls``."""

    def _validate(data: Any) -> M:
        return model_cls.model_validate(data)

    return _validate


def strict_response_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "schema": schema, "strict": True},
    }


LOOSE_RESPONSE_FORMAT: dict[str, Any] = {"type": "json_object"}


class JsonResponder:
    """Requests JSON from the backend and returns validated data or ``None``."""

    def __init__(self, llm: LLMService, config: EngineSettings = settings):
        self.llm = llm
        self.config = config

    async def _call(
        self,
        prompt: str,
        response_format: dict[str, Any],
        options: JsonOptions[Any],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stage: Stage | str | None = None,
    ) -> RawResponse:
        request = GenerationRequest(
            prompt=prompt,
            system_prompt=options.system_prompt,
            response_format=response_format,
            model_hint=options.model or self.config.JSON_MODEL,
            max_tokens=max_tokens or options.max_tokens or self.config.MAX_JSON_TOKENS,
            temperature=temperature if temperature is not None else options.temperature,
        )
        stage_value = stage or options.stage
        return await self.llm.invoke(
            request,
            self.llm.build_candidates(request.model_hint),
            budget=options.budget,
            stage=stage_value.value if isinstance(stage_value, Stage) else stage_value,
        )

    def _evaluate(self, raw: RawResponse, options: JsonOptions[T]) -> ParseResult[T]:
        if raw.hit_length_limit or looks_truncated(raw.text):
            return ParseResult(
                error=ParseError(
                    f"response truncated (finish_reason={raw.finish_reason})",
                    truncated=True,
                )
            )
        return parse_structured(raw.text, options.validator)

    async def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any] | None,
        options: JsonOptions[T] | None = None,
    ) -> JsonResult[T]:
        """Generate JSON for ``prompt``, validated by ``options.validator``.

        Raises only ``ConfigurationError``, ``BudgetExhaustedError`` and, when
        loose mode also runs out of candidates, ``CandidatesExhaustedError``.
        """
        opts: JsonOptions[T] = options or JsonOptions()
        raw: RawResponse | None = None
        mode: Literal["strict", "loose"] = "strict"

        if schema is not None and self.config.SCHEMA_MODE_ENABLED:
            try:
                raw = await self._call(
                    prompt, strict_response_format(opts.schema_name, schema), opts
                )
            except CandidatesExhaustedError as exc:
                logger.warning(
                    "Strict schema mode failed for every candidate; retrying in loose JSON mode.",
                    schema=opts.schema_name,
                    error=str(exc),
                )

        if raw is None:
            mode = "loose"
            loose_prompt = render_prompt(
                "json/loose_mode.j2",
                {"prompt": prompt, "schema_json": json.dumps(schema, indent=2) if schema else None},
            )
            raw = await self._call(loose_prompt, LOOSE_RESPONSE_FORMAT, opts)

        outcome = self._evaluate(raw, opts)
        if outcome.ok:
            return JsonResult(data=outcome.value, raw_text=raw.text, truncated=False, mode=mode)

        truncated = bool(outcome.error and outcome.error.truncated)
        logger.info(
            "JSON response rejected.",
            schema=opts.schema_name,
            mode=mode,
            truncated=truncated,
            reason=str(outcome.error),
            raw_chars=len(raw.text),
        )

        repaired = await self._repair(raw.text, schema, str(outcome.error), opts)
        if repaired is not None:
            return repaired
        return JsonResult(
            data=None,
            raw_text=raw.text,
            truncated=truncated,
            mode=mode,
            error=str(outcome.error),
        )

    async def _repair(
        self,
        broken_text: str,
        schema: dict[str, Any] | None,
        reason: str,
        options: JsonOptions[T],
    ) -> JsonResult[T] | None:
        """One extra call asking the backend to fix ``broken_text``."""
        if not options.allow_repair:
            return None
        if len(broken_text.strip()) <= self.config.REPAIR_MIN_CHARS:
            logger.debug("Raw text too short to repair.", chars=len(broken_text.strip()))
            return None
        if options.budget is not None and not options.budget.can_start():
            logger.info("Skipping repair pass: time budget nearly spent.")
            return None

        repair_prompt = render_prompt(
            "json/repair.j2",
            {
                "schema_json": json.dumps(schema, indent=2) if schema else None,
                "reason": reason,
                "broken_text": truncate_text_by_tokens(
                    broken_text,
                    self.config.JSON_MODEL,
                    self.config.MAX_REPAIR_TOKENS,
                ),
            },
        )
        response_format = (
            strict_response_format(options.schema_name, schema)
            if schema is not None and self.config.SCHEMA_MODE_ENABLED
            else LOOSE_RESPONSE_FORMAT
        )
        try:
            raw = await self._call(
                repair_prompt,
                response_format,
                options,
                temperature=self.config.TEMPERATURE_REPAIR,
                max_tokens=self.config.MAX_REPAIR_TOKENS,
                stage=Stage.REPAIR,
            )
        except (CandidatesExhaustedError, BudgetExhaustedError) as exc:
            logger.warning("Repair pass failed.", schema=options.schema_name, error=str(exc))
            return None

        outcome = self._evaluate(raw, options)
        if not outcome.ok:
            logger.warning(
                "Repair pass produced unusable JSON.",
                schema=options.schema_name,
                reason=str(outcome.error),
            )
            return None
        logger.info("Repair pass succeeded.", schema=options.schema_name)
        return JsonResult(
            data=outcome.value,
            raw_text=raw.text,
            truncated=False,
            mode="strict" if response_format is not LOOSE_RESPONSE_FORMAT else "loose",
            repaired=True,
        )
