# orchestration/cli_runner.py
"""Command-line runner for the film-package engine."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Sequence
from typing import Any

import structlog
from utils.logging import setup_logging

from config import settings
from core.errors import ConfigurationError, EngineError
from core.llm_interface import build_llm_service
from models import InboundRequest
from orchestration.engine import FilmPackageEngine

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


async def _run(request: InboundRequest, steps: Sequence[str]) -> dict[str, Any]:
    llm = build_llm_service(settings)
    engine = FilmPackageEngine(llm, settings)
    try:
        if len(steps) <= 1:
            result: dict[str, Any] = await engine.run(
                request.model_copy(update={"domain_step": steps[0]}) if steps else request
            )
        else:
            result = await engine.run_many(request, steps)
        return {"result": result, "usage": engine.usage_summary()}
    finally:
        await llm.aclose()


def run(request: InboundRequest, steps: Sequence[str], output: str | None = None) -> int:
    """Run the requested steps and print (or write) the JSON result."""
    setup_logging()
    try:
        payload = asyncio.run(_run(request, steps))
    except KeyboardInterrupt:
        logger.info("Film engine interrupted; shutting down.")
        return EXIT_FAILED
    except ConfigurationError as err:
        logger.error("Configuration error: %s", err)
        print(f"Configuration error: {err}", file=sys.stderr)
        return EXIT_CONFIG
    except EngineError as err:
        logger.error("Generation failed: %s", err)
        print(f"Generation failed: {err}", file=sys.stderr)
        return EXIT_FAILED

    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        logger.info(f"Result written to {output}.")
    else:
        print(text)
    return EXIT_OK
