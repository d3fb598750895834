import json

import httpx
import pytest

from config import EngineSettings
from core.budget import TimeBudget
from core.errors import BudgetExhaustedError, CandidatesExhaustedError, ConfigurationError
from core.llm_interface import LLMService, build_llm_service
from models import GenerationRequest, ModelCandidate
from orchestration.token_accountant import TokenAccountant

BASE = "https://llm.example.test/v1"


def _config(**overrides) -> EngineSettings:
    values = {
        "OPENAI_API_KEY": "k",
        "OPENAI_API_BASE": BASE,
        "TEXT_MODEL": "writer-1",
        "FALLBACK_MODEL": "writer-mini",
    }
    values.update(overrides)
    return EngineSettings(**values)


def _ok(content: str, finish_reason: str = "stop") -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "choices": [{"message": {"content": content}, "finish_reason": finish_reason}],
            "usage": {"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10},
        },
    )


def _service(handler, accountant=None, **overrides) -> tuple[LLMService, list[dict]]:
    sent: list[dict] = []

    def _record(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        sent.append(payload)
        return handler(payload)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return LLMService(config=_config(**overrides), client=client, accountant=accountant), sent


def test_build_candidates_order():
    service = LLMService(config=_config())
    names = [c.model for c in service.build_candidates()]
    assert names == ["writer-1", "writer-1-chat-latest", "writer-mini"]
    assert all(c.token_param == "max_tokens" for c in service.build_candidates())


def test_build_candidates_dedupes_fallback():
    service = LLMService(config=_config(OPENAI_API_BASE="https://api.openai.com/v1"))
    candidates = service.build_candidates("writer-mini-chat-latest", "writer-mini-chat-latest")
    assert [c.model for c in candidates] == ["writer-mini-chat-latest"]
    assert candidates[0].token_param == "max_completion_tokens"

    same = service.build_candidates("writer-mini", "writer-mini")
    assert [c.model for c in same] == ["writer-mini"]


def test_build_candidates_end_in_fallback_with_default_models():
    config = EngineSettings(OPENAI_API_KEY="k")
    service = LLMService(config=config)
    for primary in (config.JSON_MODEL, config.TEXT_MODEL, "other-model"):
        names = [c.model for c in service.build_candidates(primary)]
        assert names
        assert names[0] == primary
        assert names[-1] == config.FALLBACK_MODEL
        assert len(names) == len(set(names))


@pytest.mark.asyncio
async def test_invoke_success_records_usage():
    accountant = TokenAccountant()
    service, sent = _service(lambda payload: _ok("hello"), accountant=accountant)

    response = await service.invoke(
        GenerationRequest(prompt="hi", system_prompt="sys", temperature=0.5, max_tokens=50),
        stage="Outline",
    )

    assert response.text == "hello"
    assert response.model == "writer-1"
    assert response.attempted_models == ["writer-1"]
    assert sent[0]["messages"][0] == {"role": "system", "content": "sys"}
    assert sent[0]["max_tokens"] == 50
    assert sent[0]["temperature"] == 0.5
    assert accountant.get_stage_total("Outline") == 3
    await service.aclose()


@pytest.mark.asyncio
async def test_invoke_falls_through_unavailable_models():
    def handler(payload):
        if payload["model"] != "writer-mini":
            return httpx.Response(
                404, json={"error": {"message": "model not found", "code": "model_not_found"}}
            )
        return _ok("from fallback")

    service, sent = _service(handler)
    response = await service.invoke(GenerationRequest(prompt="hi"))

    assert response.text == "from fallback"
    assert [p["model"] for p in sent] == ["writer-1", "writer-1-chat-latest", "writer-mini"]
    assert response.attempted_models == ["writer-1", "writer-1-chat-latest", "writer-mini"]


@pytest.mark.asyncio
async def test_invoke_treats_timeout_as_transient():
    def handler(payload):
        if payload["model"] == "writer-1":
            raise httpx.ReadTimeout("read timed out")
        return _ok("from alias")

    service, sent = _service(handler)
    response = await service.invoke(GenerationRequest(prompt="hi"))

    assert response.text == "from alias"
    assert response.model == "writer-1-chat-latest"
    assert [p["model"] for p in sent] == ["writer-1", "writer-1-chat-latest"]
    assert response.attempted_models == ["writer-1", "writer-1-chat-latest"]


@pytest.mark.asyncio
async def test_invoke_skips_candidate_with_non_object_body():
    def handler(payload):
        if payload["model"] == "writer-1":
            return httpx.Response(200, json=[{"unexpected": "list"}])
        return _ok("from alias")

    service, sent = _service(handler)
    response = await service.invoke(GenerationRequest(prompt="hi"))

    assert response.text == "from alias"
    assert [p["model"] for p in sent] == ["writer-1", "writer-1-chat-latest"]


@pytest.mark.asyncio
async def test_invoke_strips_rejected_temperature_once():
    def handler(payload):
        if "temperature" in payload:
            return httpx.Response(
                400,
                json={
                    "error": {
                        "message": "Unsupported value: 'temperature' only supports 1.",
                        "type": "invalid_request_error",
                        "param": "temperature",
                        "code": "unsupported_value",
                    }
                },
            )
        return _ok("no temperature")

    service, sent = _service(handler)
    response = await service.invoke(GenerationRequest(prompt="hi", temperature=0.7))

    assert response.text == "no temperature"
    assert response.model == "writer-1"
    assert len(sent) == 2
    assert "temperature" not in sent[1]


@pytest.mark.asyncio
async def test_invoke_renames_token_parameter():
    def handler(payload):
        if "max_tokens" in payload:
            return httpx.Response(
                400,
                json={
                    "error": {
                        "message": "Unsupported parameter: 'max_tokens' is not supported with this model. Use 'max_completion_tokens' instead.",
                        "type": "invalid_request_error",
                        "param": "max_tokens",
                        "code": "unsupported_parameter",
                    }
                },
            )
        return _ok("renamed")

    service, sent = _service(handler)
    response = await service.invoke(GenerationRequest(prompt="hi", max_tokens=99))

    assert response.text == "renamed"
    assert sent[1]["max_completion_tokens"] == 99


@pytest.mark.asyncio
async def test_invoke_auth_failure_is_configuration_error():
    def handler(payload):
        return httpx.Response(
            401, json={"error": {"message": "Incorrect API key provided", "code": "invalid_api_key"}}
        )

    service, sent = _service(handler)
    with pytest.raises(ConfigurationError):
        await service.invoke(GenerationRequest(prompt="hi"))
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_invoke_exhausts_all_candidates(monkeypatch):
    def handler(payload):
        return httpx.Response(429, json={"error": {"message": "slow down", "code": "rate_limit_exceeded"}})

    service, sent = _service(handler)
    delays = []

    async def no_sleep(attempt):
        delays.append(attempt)

    monkeypatch.setattr(service, "_backoff_delay", no_sleep)

    with pytest.raises(CandidatesExhaustedError) as info:
        await service.invoke(GenerationRequest(prompt="hi"))
    assert info.value.attempted == ["writer-1", "writer-1-chat-latest", "writer-mini"]
    assert len(delays) == 3


@pytest.mark.asyncio
async def test_invoke_refuses_to_start_without_budget():
    service, sent = _service(lambda payload: _ok("never"))
    budget = TimeBudget(1, min_call_seconds=5)
    with pytest.raises(BudgetExhaustedError):
        await service.invoke(GenerationRequest(prompt="hi"), budget=budget)
    assert sent == []


@pytest.mark.asyncio
async def test_generate_text_cleans_response():
    service, _ = _service(lambda payload: _ok("```\nINT. ROOM - DAY\n```"))
    text, usage = await service.generate_text("write")
    assert text == "INT. ROOM - DAY"
    assert usage["completion_tokens"] == 3


@pytest.mark.asyncio
async def test_generate_text_empty_prompt_skips_call():
    service, sent = _service(lambda payload: _ok("never"))
    assert await service.generate_text("   ") == ("", None)
    assert sent == []


def test_negotiate_returns_none_for_unknown_param():
    candidate = ModelCandidate(model="m")
    assert LLMService._negotiate(candidate, "response_format") is None
    assert LLMService._negotiate(candidate, "temperature").send_temperature is False


def test_clean_model_response_strips_think_and_preamble():
    service = LLMService(config=_config())
    cleaned = service.clean_model_response(
        "<think>plan</think>Here is the screenplay:\nFADE IN:\n\n\n\nINT. ROOM - DAY"
    )
    assert cleaned == "FADE IN:\n\nINT. ROOM - DAY"


def test_build_llm_service_requires_key():
    with pytest.raises(ConfigurationError):
        build_llm_service(_config(OPENAI_API_KEY=" "))
    with pytest.raises(ConfigurationError):
        build_llm_service(_config(OPENAI_API_BASE="ftp://nope"))
    assert isinstance(build_llm_service(_config()), LLMService)
