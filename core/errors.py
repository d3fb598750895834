# core/errors.py
"""Error taxonomy for backend calls and the engine's exception hierarchy.

Backend errors arrive in several shapes depending on provider and model
version. ``normalize_error`` is the only place that inspects them; everything
above the network boundary branches on :class:`ErrorKind`.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    MODEL_UNAVAILABLE = "model_unavailable"
    PARAMETER_UNSUPPORTED = "parameter_unsupported"
    TRUNCATED = "truncated"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    TIMEOUT = "timeout"
    OTHER = "other"


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(EngineError):
    """Missing or invalid configuration. Never retried."""


class BudgetExhaustedError(EngineError):
    """Not enough of the total time budget remains to start another call."""

    def __init__(self, remaining: float, required: float) -> None:
        super().__init__(
            f"time budget exhausted: {remaining:.1f}s remaining, {required:.1f}s required"
        )
        self.remaining = remaining
        self.required = required


class BackendCallError(EngineError):
    """A single backend call failed; ``kind`` says how."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        param: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.param = param
        self.model = model

    def __str__(self) -> str:
        base = super().__str__()
        extras = []
        if self.status_code is not None:
            extras.append(f"status={self.status_code}")
        if self.param:
            extras.append(f"param={self.param}")
        if self.model:
            extras.append(f"model={self.model}")
        return f"[{self.kind.value}] {base}" + (f" ({', '.join(extras)})" if extras else "")


class CandidatesExhaustedError(EngineError):
    """Every model candidate failed for one logical call."""

    def __init__(self, attempted: list[str], last_error: BaseException | None) -> None:
        super().__init__(
            f"all model candidates failed ({', '.join(attempted) or 'none'}): {last_error}"
        )
        self.attempted = attempted
        self.last_error = last_error


class SchemaViolation(EngineError):
    """Parsed output does not satisfy the required shape or counts."""


class DomainGenerationError(EngineError):
    """A domain artifact could not be produced, even after repair."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind} generation failed: {reason}")
        self.kind = kind
        self.reason = reason


class InvalidRequestError(EngineError):
    """An inbound request lacks the inputs its step needs."""

    def __init__(self, step: str, missing: list[str]) -> None:
        super().__init__(f"{step} requires: {', '.join(missing)}")
        self.step = step
        self.missing = missing


_MODEL_CODES = {"model_not_found", "model_not_available", "model_access_denied"}
_PARAM_CODES = {"unsupported_parameter", "unsupported_value", "invalid_parameter"}
_AUTH_CODES = {"invalid_api_key", "invalid_authentication", "insufficient_quota"}
_MODEL_PATTERNS = (
    "model_not_found",
    "does not exist",
    "do not have access",
    "does not have access",
    "not found for model",
    "unknown model",
    "model is not available",
)
_PARAM_PATTERNS = (
    "unsupported parameter",
    "unsupported value",
    "not supported with this model",
    "is not supported",
    "unrecognized request argument",
    "use 'max_completion_tokens' instead",
)
_PARAM_NAME_RE = re.compile(
    r"(?:parameter|argument|value)[:\s]+['\"`]?([a-z_]+)['\"`]?", re.IGNORECASE
)
_KNOWN_PARAMS = ("max_completion_tokens", "max_tokens", "temperature", "response_format")


def _error_envelope(response: httpx.Response) -> dict[str, Any]:
    """Return the provider's ``error`` object, or a synthetic one from the body."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return {"message": response.text[:500]}
    if isinstance(body, dict):
        err = body.get("error", body)
        if isinstance(err, dict):
            return err
        if isinstance(err, str):
            return {"message": err}
    return {"message": str(body)[:500]}


def _extract_param(envelope: dict[str, Any], message: str) -> str | None:
    param = envelope.get("param")
    if isinstance(param, str) and param:
        return param
    match = _PARAM_NAME_RE.search(message)
    if match and match.group(1).lower() in _KNOWN_PARAMS:
        return match.group(1).lower()
    lowered = message.lower()
    for name in _KNOWN_PARAMS:
        if f"'{name}'" in lowered or f"`{name}`" in lowered or f'"{name}"' in lowered:
            return name
    return None


def normalize_error(exc: BaseException, model: str | None = None) -> BackendCallError:
    """Map any exception raised by an HTTP call into a :class:`BackendCallError`."""
    if isinstance(exc, BackendCallError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return BackendCallError(ErrorKind.TIMEOUT, f"request timed out: {exc}", model=model)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        envelope = _error_envelope(exc.response)
        message = str(envelope.get("message") or exc)
        code = str(envelope.get("code") or "").lower()
        err_type = str(envelope.get("type") or "").lower()
        lowered = message.lower()
        param = _extract_param(envelope, message)

        if status in (401, 403) and (code in _AUTH_CODES or "api key" in lowered):
            kind = ErrorKind.AUTHENTICATION
        elif status == 429 or code == "rate_limit_exceeded":
            kind = ErrorKind.RATE_LIMITED
        elif "context_length_exceeded" in code or "maximum context length" in lowered:
            kind = ErrorKind.TRUNCATED
        elif code in _MODEL_CODES or status == 404 or any(
            p in lowered for p in _MODEL_PATTERNS
        ):
            kind = ErrorKind.MODEL_UNAVAILABLE
        elif code in _PARAM_CODES or (
            status == 400
            and (param is not None or any(p in lowered for p in _PARAM_PATTERNS))
            and err_type in ("", "invalid_request_error")
        ):
            kind = ErrorKind.PARAMETER_UNSUPPORTED
        elif status in (401, 403):
            kind = ErrorKind.AUTHENTICATION
        else:
            kind = ErrorKind.OTHER
        return BackendCallError(kind, message, status_code=status, param=param, model=model)
    if isinstance(exc, httpx.RequestError):
        return BackendCallError(ErrorKind.TIMEOUT, f"transport error: {exc}", model=model)
    return BackendCallError(ErrorKind.OTHER, str(exc) or type(exc).__name__, model=model)
