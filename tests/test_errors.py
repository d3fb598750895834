import httpx
import pytest

from core.errors import (
    BackendCallError,
    CandidatesExhaustedError,
    DomainGenerationError,
    ErrorKind,
    InvalidRequestError,
    normalize_error,
)


def _status_error(status: int, body) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.test/v1/chat/completions")
    if isinstance(body, str):
        response = httpx.Response(status, text=body, request=request)
    else:
        response = httpx.Response(status, json=body, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


@pytest.mark.parametrize(
    "status, body, kind",
    [
        (
            401,
            {"error": {"message": "Incorrect API key provided", "code": "invalid_api_key"}},
            ErrorKind.AUTHENTICATION,
        ),
        (
            429,
            {"error": {"message": "Rate limit reached", "code": "rate_limit_exceeded"}},
            ErrorKind.RATE_LIMITED,
        ),
        (
            404,
            {"error": {"message": "The model `gpt-x` does not exist", "code": "model_not_found"}},
            ErrorKind.MODEL_UNAVAILABLE,
        ),
        (
            400,
            {
                "error": {
                    "message": "Unsupported value: 'temperature' does not support 0.7 with this model.",
                    "type": "invalid_request_error",
                    "param": "temperature",
                    "code": "unsupported_value",
                }
            },
            ErrorKind.PARAMETER_UNSUPPORTED,
        ),
        (
            400,
            {
                "error": {
                    "message": "This model's maximum context length is 8192 tokens.",
                    "code": "context_length_exceeded",
                }
            },
            ErrorKind.TRUNCATED,
        ),
        (
            400,
            {
                "error": {
                    "message": "This model's maximum context length is 128000 tokens. "
                    "However, your messages resulted in 130512 tokens.",
                    "type": "invalid_request_error",
                    "param": "messages",
                    "code": "context_length_exceeded",
                }
            },
            ErrorKind.TRUNCATED,
        ),
        (500, "upstream exploded", ErrorKind.OTHER),
    ],
)
def test_normalize_http_errors(status, body, kind):
    err = normalize_error(_status_error(status, body), model="gpt-x")
    assert err.kind is kind
    assert err.status_code == status
    assert err.model == "gpt-x"


def test_param_name_extracted_from_message():
    err = normalize_error(
        _status_error(
            400,
            {"error": {"message": "Unsupported parameter: 'max_tokens' is not supported with this model."}},
        )
    )
    assert err.kind is ErrorKind.PARAMETER_UNSUPPORTED
    assert err.param == "max_tokens"


def test_timeout_and_transport_errors():
    request = httpx.Request("POST", "https://api.example.test")
    assert normalize_error(httpx.ReadTimeout("slow", request=request)).kind is ErrorKind.TIMEOUT
    assert normalize_error(httpx.ConnectError("down", request=request)).kind is ErrorKind.TIMEOUT


def test_backend_error_passes_through_and_unknown_is_other():
    original = BackendCallError(ErrorKind.RATE_LIMITED, "slow down")
    assert normalize_error(original) is original
    assert normalize_error(RuntimeError("odd")).kind is ErrorKind.OTHER


def test_error_messages():
    err = BackendCallError(ErrorKind.OTHER, "bad", status_code=500, model="m")
    assert str(err) == "[other] bad (status=500, model=m)"

    exhausted = CandidatesExhaustedError(["a", "b"], err)
    assert exhausted.attempted == ["a", "b"]
    assert "a, b" in str(exhausted)

    assert str(DomainGenerationError("budget", "no json")) == "budget generation failed: no json"
    invalid = InvalidRequestError("characters", ["script", "genre"])
    assert str(invalid) == "characters requires: script, genre"
    assert invalid.missing == ["script", "genre"]
