import json
from unittest.mock import AsyncMock

import httpx
import pytest

from agents.outline_planner import placeholder_outline
from config import EngineSettings
from core.errors import DomainGenerationError, InvalidRequestError
from core.llm_interface import LLMService
from generators import BUDGET_CATEGORIES
from models import BudgetArtifact, InboundRequest
from orchestration.engine import FilmPackageEngine, missing_inputs

CONFIG = EngineSettings(OPENAI_API_KEY="k", OPENAI_API_BASE="https://llm.example.test/v1")


def _budget_payload() -> dict:
    return {
        "categories": [
            {
                "name": name,
                "amount": 1000,
                "percentage": 10,
                "items": ["item"],
                "tips": ["tip"],
                "alternatives": [],
            }
            for name in BUDGET_CATEGORIES
        ]
    }


def _engine(handler=None) -> tuple[FilmPackageEngine, list[dict]]:
    sent: list[dict] = []

    def _record(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        sent.append(payload)
        if handler is None:
            return httpx.Response(500, json={"error": {"message": "unexpected call"}})
        return handler(payload)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return FilmPackageEngine(LLMService(config=CONFIG, client=client), CONFIG), sent


def test_missing_inputs():
    request = InboundRequest(genre="noir", domain_step="characters")
    assert missing_inputs(request, "characters") == ["script"]
    assert missing_inputs(InboundRequest(genre="noir"), "outline") == ["idea"]
    with_outline = InboundRequest(genre="noir", outline=placeholder_outline("x", "noir", 12))
    assert missing_inputs(with_outline, "outline") == []


def test_engine_attaches_accountant_to_service():
    engine, _ = _engine()
    assert engine.llm.accountant is engine.accountant


@pytest.mark.asyncio
async def test_run_rejects_incomplete_request():
    engine, sent = _engine()
    with pytest.raises(InvalidRequestError) as info:
        await engine.run(InboundRequest(genre="noir", domain_step="sound"))
    assert info.value.missing == ["script"]
    assert sent == []


@pytest.mark.asyncio
async def test_supplied_outline_is_returned_without_calls():
    engine, sent = _engine()
    outline = placeholder_outline("A courier", "noir", 12)
    result = await engine.run(
        InboundRequest(genre="noir", outline=outline, domain_step="outline")
    )
    assert result["scenes"][0]["sceneNumber"] == 1
    assert result["strategy"] == "placeholder"
    assert sent == []


@pytest.mark.asyncio
async def test_chunks_step_reports_missing_bible(monkeypatch):
    engine, _ = _engine()
    plan_chunks = AsyncMock(return_value=None)
    monkeypatch.setattr(engine.bible_builder, "plan_chunks", plan_chunks)
    outline = placeholder_outline("A courier", "noir", 27)

    result = await engine.run(
        InboundRequest(genre="noir", outline=outline, target_length="30 min", domain_step="chunks")
    )

    assert result["chunks"] is None
    assert len(result["outline"]["scenes"]) == 27
    boundaries = plan_chunks.await_args.args[1]
    assert boundaries == [(1, 9), (10, 18), (19, 27)]


@pytest.mark.asyncio
async def test_budget_step_end_to_end():
    def handler(payload):
        assert payload["response_format"]["json_schema"]["name"] == "budget_artifact"
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {"content": json.dumps(_budget_payload())},
                        "finish_reason": "stop",
                    }
                ],
                "usage": {"prompt_tokens": 50, "completion_tokens": 20, "total_tokens": 70},
            },
        )

    engine, sent = _engine(handler)
    result = await engine.run(
        InboundRequest(genre="noir", target_length="10 min", low_budget=True, domain_step="budget")
    )

    assert result["kind"] == "budget"
    assert result["lowBudget"] is True
    assert [c["name"] for c in result["categories"]] == BUDGET_CATEGORIES
    assert {c["amount"] for c in result["categories"]} == {500}
    assert len(sent) == 1
    assert engine.usage_summary()["Budget"] == {
        "prompt_tokens": 50,
        "completion_tokens": 20,
        "total_tokens": 70,
        "calls": 1,
    }


@pytest.mark.asyncio
async def test_run_many_maps_failed_step_to_none(monkeypatch):
    engine, _ = _engine()
    artifact = BudgetArtifact.model_validate(_budget_payload())

    async def fake_generate(kind, context, budget=None):
        if kind == "schedule":
            raise DomainGenerationError(kind, "bad output")
        assert context["genre"] == "noir"
        return artifact

    monkeypatch.setattr(engine.domain_runner, "generate", fake_generate)

    results = await engine.run_many(
        InboundRequest(genre="noir", script="INT. ROOM - DAY", target_length="10 min"),
        ["budget", "schedule"],
    )

    assert list(results) == ["budget", "schedule"]
    assert results["budget"]["kind"] == "budget"
    assert results["schedule"] is None
