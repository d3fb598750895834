# core/concurrency.py
"""Bounded-concurrency fan-out for independent backend calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

from core.errors import ConfigurationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
    *,
    label: str = "batch",
) -> list[R | None]:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight.

    Results are written back by input index. A failing item yields ``None``
    without cancelling its siblings; a :class:`ConfigurationError` from any
    item is re-raised after the batch settles.
    """
    if not items:
        return []
    semaphore = asyncio.Semaphore(max(1, limit))
    results: list[R | None] = [None] * len(items)

    async def _run(index: int, item: T) -> None:
        async with semaphore:
            results[index] = await worker(item)

    outcomes = await asyncio.gather(
        *(_run(i, item) for i, item in enumerate(items)), return_exceptions=True
    )
    config_error: ConfigurationError | None = None
    for index, outcome in enumerate(outcomes):
        if isinstance(outcome, ConfigurationError):
            config_error = config_error or outcome
        elif isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.warning(
                f"{label} item {index} failed; leaving its slot empty.",
                error=str(outcome),
                error_type=type(outcome).__name__,
            )
    if config_error is not None:
        raise config_error
    return results
