# tests/test_config_validators.py

import pytest
from config import EngineSettings


def test_defaults_are_valid():
    cfg = EngineSettings(OPENAI_API_KEY="valid")
    assert cfg.SCENE_CAP_FLOOR <= cfg.SCENE_CAP_CEILING
    assert cfg.MAX_PARALLEL_CALLS >= 1


def test_floor_above_ceiling_raises():
    with pytest.raises(ValueError):
        EngineSettings(SCENE_CAP_FLOOR=70, SCENE_CAP_CEILING=60)


def test_zero_parallel_calls_raises():
    with pytest.raises(ValueError):
        EngineSettings(MAX_PARALLEL_CALLS=0)


def test_non_positive_words_per_page_raises():
    with pytest.raises(ValueError):
        EngineSettings(WORDS_PER_PAGE=0)


def test_non_positive_time_budget_raises():
    with pytest.raises(ValueError):
        EngineSettings(TOTAL_BUDGET_SECONDS=0)


def test_unordered_bands_raise():
    with pytest.raises(ValueError):
        EngineSettings(SCENE_CAP_BANDS=[(60.0, 0.6), (30.0, 0.9)])


def test_settings_are_frozen():
    cfg = EngineSettings()
    with pytest.raises(ValueError):
        cfg.MAX_PARALLEL_CALLS = 5
