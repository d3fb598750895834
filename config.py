# config.py
"""Configuration settings for the film-package generation engine.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class EngineSettings(BaseSettings):
    """Full configuration for the generation engine.

    Instances are frozen; components receive one explicitly (defaulting to the
    module-level ``settings``) instead of reading the environment themselves.
    """

    # API and Model Configuration
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_API_KEY: str | None = None

    TEXT_MODEL: str = "gpt-4o"
    JSON_MODEL: str = "gpt-4o-mini"
    FALLBACK_MODEL: str = "gpt-4o-mini"
    # Appended to the primary model to form its "chat alias" candidate.
    CHAT_ALIAS_SUFFIX: str = "-chat-latest"

    # Temperature Settings
    TEMPERATURE_OUTLINE: float = 0.7
    TEMPERATURE_CONTINUITY: float = 0.4
    TEMPERATURE_DRAFTING: float = 0.8
    TEMPERATURE_DOMAIN: float = 0.6
    TEMPERATURE_REPAIR: float = 0.0

    # Token budgets
    MAX_OUTLINE_TOKENS: int = 8192
    MAX_JSON_TOKENS: int = 4096
    MAX_BATCH_JSON_TOKENS: int = 12000
    MAX_DRAFT_TOKENS: int = 8192
    MAX_REPAIR_TOKENS: int = 8192
    MAX_CONTEXT_TOKENS: int = 128000
    MIN_DRAFT_GENERATION_TOKENS: int = 300
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0

    # Time budgets and retry behaviour
    PER_CALL_TIMEOUT_SECONDS: float = 45.0
    TOTAL_BUDGET_SECONDS: float = 240.0
    MIN_CALL_BUDGET_SECONDS: float = 8.0
    OUTLINE_MIN_BUDGET_SECONDS: float = 20.0
    LLM_RETRY_DELAY_SECONDS: float = 1.5
    HTTPX_TIMEOUT: float = 120.0

    # Concurrency and Rate Limiting
    MAX_PARALLEL_CALLS: int = 3

    # Structured output
    SCHEMA_MODE_ENABLED: bool = True
    REPAIR_MIN_CHARS: int = 50

    # Outline policy. Bands are (upper minute bound, scenes per minute).
    SCENE_CAP_FLOOR: int = 12
    SCENE_CAP_CEILING: int = 60
    SCENE_CAP_BANDS: list[tuple[float, float]] = [
        (30.0, 0.9),
        (60.0, 0.6),
        (1000.0, 0.25),
    ]
    ACT_SPLIT_THRESHOLD_MINUTES: int = 60
    OUTLINE_RETRY_SHRINK: float = 0.75
    DEFAULT_TARGET_MINUTES: int = 5

    # Text assembly and long-form writing
    ASSEMBLER_OVERLAP_WINDOW: int = 1600
    ASSEMBLER_MIN_OVERLAP: int = 20
    ASSEMBLER_LINE_SIMILARITY: float = 97.0
    WORDS_PER_PAGE: int = 180
    TOP_OFF_THRESHOLD: float = 0.9
    MAX_TOP_OFF_PASSES: int = 2
    SINGLE_PASS_MAX_PAGES: int = 15
    PAGES_PER_CHUNK: int = 12
    DRAFT_CONTEXT_TAIL_TOKENS: int = 1200

    # Domain generators
    STORYBOARD_FRAMES_PER_CALL: int = 12
    DOMAIN_SCRIPT_CONTEXT_TOKENS: int = 6000
    STORYBOARD_COVERAGE_SHOTS: int = 2

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="ENGINE_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "film_engine.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def check_policy_bounds(self) -> EngineSettings:
        if self.SCENE_CAP_FLOOR > self.SCENE_CAP_CEILING:
            raise ValueError("SCENE_CAP_FLOOR must not exceed SCENE_CAP_CEILING")
        if self.MAX_PARALLEL_CALLS < 1:
            raise ValueError("MAX_PARALLEL_CALLS must be at least 1")
        if self.WORDS_PER_PAGE <= 0:
            raise ValueError("WORDS_PER_PAGE must be positive")
        if self.PER_CALL_TIMEOUT_SECONDS <= 0 or self.TOTAL_BUDGET_SECONDS <= 0:
            raise ValueError("time budgets must be positive")
        bounds = [upper for upper, _ in self.SCENE_CAP_BANDS]
        if bounds != sorted(bounds):
            raise ValueError("SCENE_CAP_BANDS must be ordered by upper bound")
        return self

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", frozen=True, extra="ignore"
    )


settings = EngineSettings()
