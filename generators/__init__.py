"""Film-package domain generators."""

from .base import DomainGenerator
from .catalog import (
    BUDGET_CATEGORIES,
    GENERATORS,
    character_count,
    minimum_sound_seconds,
    sound_asset_count,
    storyboard_frame_count,
)
from .runner import DomainGeneratorRunner

__all__ = [
    "DomainGenerator",
    "DomainGeneratorRunner",
    "GENERATORS",
    "BUDGET_CATEGORIES",
    "character_count",
    "storyboard_frame_count",
    "sound_asset_count",
    "minimum_sound_seconds",
]
