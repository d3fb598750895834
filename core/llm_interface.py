# core/llm_interface.py
"""
Handles all direct interactions with the text-generation backend
(an OpenAI-compatible ``/chat/completions`` endpoint). Includes candidate
model negotiation, token helpers and response cleaning.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.

Copyright 2025 Dennis Lewis
"""

# Standard library imports
import asyncio
import functools
import random
import re

# Type hints
from typing import Any

import httpx

# Third-party imports
import structlog
import tiktoken

# Local imports
from config import EngineSettings, settings
from core.budget import TimeBudget
from core.errors import (
    BackendCallError,
    CandidatesExhaustedError,
    ConfigurationError,
    ErrorKind,
    normalize_error,
)
from models import GenerationRequest, ModelCandidate, RawResponse
from orchestration.token_accountant import TokenAccountant

logger = structlog.get_logger(__name__)


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base or "api.anthropic.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


# --- Tokenizer Cache and Utility Functions (Module Level) ---


@functools.lru_cache(maxsize=10)
def _get_tokenizer(model_name: str) -> tiktoken.Encoding | None:
    """
    Gets a tiktoken encoder for the given model name, with caching.
    Tries model-specific encoding, then a default, then returns None.
    """
    try:
        try:
            encoder = tiktoken.encoding_for_model(model_name)
        except KeyError:
            logger.debug(
                f"No direct tiktoken encoding for '{model_name}'. Using default '{settings.TIKTOKEN_DEFAULT_ENCODING}'."
            )
            encoder = tiktoken.get_encoding(settings.TIKTOKEN_DEFAULT_ENCODING)
        logger.debug(
            f"Tokenizer for model '{model_name}' (using actual encoder '{encoder.name}') found and cached."
        )
        return encoder
    except Exception as e:
        # tiktoken fetches encodings on first use; offline hosts land here.
        logger.error(
            f"Could not load a tokenizer for '{model_name}': {e}. "
            "Token counting will fall back to character-based heuristic."
        )
        return None


def count_tokens(text: str, model_name: str) -> int:
    """
    Counts the number of tokens in a string for a given model.
    Uses tiktoken with caching and fallbacks.
    """
    if not text:
        return 0

    encoder = _get_tokenizer(model_name)

    if encoder:
        return len(encoder.encode(text, allowed_special="all"))
    char_count = len(text)
    token_estimate = int(char_count / settings.FALLBACK_CHARS_PER_TOKEN)
    logger.warning(
        f"count_tokens: Failed to get tokenizer for '{model_name}'. "
        f"Falling back to character-based estimate: {char_count} chars -> ~{token_estimate} tokens."
    )
    return token_estimate


def truncate_text_by_tokens(
    text: str,
    model_name: str,
    max_tokens: int,
    truncation_marker: str = "\n... (truncated)",
    keep: str = "head",
) -> str:
    """
    Truncates text to a maximum number of tokens for a given model.
    ``keep="tail"`` keeps the end of the text instead of the start; the
    marker is then placed in front.
    """
    if not text:
        return ""
    # Every token covers at least one character.
    if len(text) <= max_tokens:
        return text

    encoder = _get_tokenizer(model_name)

    if not encoder:
        max_chars = int(max_tokens * settings.FALLBACK_CHARS_PER_TOKEN)
        if len(text) <= max_chars:
            return text
        effective_max_chars = max(0, max_chars - len(truncation_marker))
        if keep == "tail":
            return truncation_marker + text[len(text) - effective_max_chars :]
        return text[:effective_max_chars] + truncation_marker

    tokens = encoder.encode(text, allowed_special="all")
    if len(tokens) <= max_tokens:
        return text

    marker_tokens_len = (
        len(encoder.encode(truncation_marker, allowed_special="all"))
        if truncation_marker
        else 0
    )
    content_tokens_to_keep = max_tokens - marker_tokens_len
    effective_truncation_marker = truncation_marker
    if content_tokens_to_keep <= 0:
        content_tokens_to_keep = max_tokens
        effective_truncation_marker = ""

    if keep == "tail":
        return effective_truncation_marker + encoder.decode(
            tokens[-content_tokens_to_keep:]
        )
    return encoder.decode(tokens[:content_tokens_to_keep]) + effective_truncation_marker


class LLMService:
    """Issues generation requests against an ordered list of model candidates."""

    def __init__(
        self,
        config: EngineSettings = settings,
        client: httpx.AsyncClient | None = None,
        accountant: TokenAccountant | None = None,
    ):
        self.config = config
        # Use a single async client for all requests to reuse connections
        self._client = client or httpx.AsyncClient(timeout=config.HTTPX_TIMEOUT)
        # Add a semaphore to limit concurrent requests
        self._semaphore = asyncio.Semaphore(config.MAX_PARALLEL_CALLS)
        self.accountant = accountant
        logger.info(
            f"LLMService initialized with a concurrency limit of {config.MAX_PARALLEL_CALLS}."
        )

    async def _backoff_delay(self, attempt: int) -> None:
        """Sleep for an exponentially increasing delay with jitter."""
        delay = self.config.LLM_RETRY_DELAY_SECONDS * (2**attempt)
        jitter = random.uniform(0, delay / 2)
        await asyncio.sleep(delay + jitter)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # --- Candidate lists -------------------------------------------------

    def build_candidates(
        self, primary: str | None = None, fallback: str | None = None
    ) -> list[ModelCandidate]:
        """Primary model, its chat alias, then the fallback.

        Never empty and always ends in the fallback. When the primary is the
        fallback the alias is skipped so the primary is still tried first.
        """
        primary = primary or self.config.TEXT_MODEL
        fallback = fallback or self.config.FALLBACK_MODEL
        suffix = self.config.CHAT_ALIAS_SUFFIX
        names = [primary]
        if suffix and primary != fallback and not primary.endswith(suffix):
            names.append(f"{primary}{suffix}")
        ordered: list[str] = []
        for name in names:
            if name and name != fallback and name not in ordered:
                ordered.append(name)
        ordered.append(fallback)
        token_param = _completion_token_param(self.config.OPENAI_API_BASE)
        return [ModelCandidate(model=name, token_param=token_param) for name in ordered]

    @staticmethod
    def _negotiate(
        candidate: ModelCandidate, param: str | None
    ) -> ModelCandidate | None:
        """Return the candidate with ``param`` stripped or renamed, if possible."""
        if param == "temperature" and candidate.send_temperature:
            return candidate.model_copy(update={"send_temperature": False})
        if param in ("max_tokens", "max_completion_tokens") and param == candidate.token_param:
            other = (
                "max_completion_tokens" if param == "max_tokens" else "max_tokens"
            )
            return candidate.model_copy(update={"token_param": other})
        return None

    def _build_payload(
        self, request: GenerationRequest, candidate: ModelCandidate
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": candidate.model,
            "messages": request.messages(),
            candidate.token_param: request.max_tokens,
        }
        if request.temperature is not None and candidate.send_temperature:
            payload["temperature"] = request.temperature
        if request.response_format is not None:
            payload["response_format"] = request.response_format
        return payload

    def _log_llm_usage(self, model_name: str, usage_data: dict[str, int] | None) -> None:
        """Helper to log LLM token usage if available in the response."""
        if usage_data and isinstance(usage_data, dict):
            logger.info(
                f"LLM ('{model_name}') Usage - Prompt: {usage_data.get('prompt_tokens', 'N/A')} tk, "
                f"Comp: {usage_data.get('completion_tokens', 'N/A')} tk, Total: {usage_data.get('total_tokens', 'N/A')} tk"
            )
        else:
            logger.debug(
                f"LLM ('{model_name}') response missing 'usage' information or 'usage' was not a dictionary."
            )

    async def _post_non_streaming(
        self, payload: dict[str, Any], timeout: float
    ) -> tuple[str, str | None, dict[str, int] | None]:
        """Send a regular chat completion request."""
        payload["stream"] = False
        headers = {"Content-Type": "application/json"}
        if self.config.OPENAI_API_KEY:
            headers["Authorization"] = f"Bearer {self.config.OPENAI_API_KEY}"
        async with self._semaphore:
            response = await self._client.post(
                f"{self.config.OPENAI_API_BASE}/chat/completions",
                json=payload,
                headers=headers,
                timeout=timeout,
            )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise BackendCallError(
                ErrorKind.OTHER,
                f"unexpected response body of type {type(data).__name__}",
                status_code=response.status_code,
                model=payload["model"],
            )
        raw_text = ""
        finish_reason: str | None = None
        if data.get("choices") and len(data["choices"]) > 0:
            choice = data["choices"][0]
            finish_reason = choice.get("finish_reason")
            message = choice.get("message")
            if message and message.get("content"):
                raw_text = message["content"]
        else:
            logger.error(
                f"LLM ('{payload['model']}') Invalid response structure - missing choices/content despite 200 OK: {data}"
            )
        return raw_text, finish_reason, data.get("usage")

    async def invoke(
        self,
        request: GenerationRequest,
        candidates: list[ModelCandidate] | None = None,
        budget: TimeBudget | None = None,
        stage: str | None = None,
    ) -> RawResponse:
        """Issue ``request`` against each candidate in order until one succeeds.

        Model-access failures advance to the next candidate. A rejected
        optional parameter is stripped or renamed and the same candidate is
        retried once. Authentication failures raise ``ConfigurationError``
        immediately; an exhausted budget raises ``BudgetExhaustedError``
        before any call is made.
        """
        if not candidates:
            candidates = self.build_candidates(request.model_hint)

        attempted: list[str] = []
        last_error: BackendCallError | None = None
        for candidate in candidates:
            if candidate.model in attempted:
                continue
            attempted.append(candidate.model)
            current = candidate
            negotiated = False
            while True:
                if budget is not None:
                    budget.ensure()
                    timeout = budget.call_timeout()
                else:
                    timeout = request.timeout or self.config.PER_CALL_TIMEOUT_SECONDS
                payload = self._build_payload(request, current)
                try:
                    text, finish_reason, usage = await self._post_non_streaming(
                        payload, timeout
                    )
                except (httpx.HTTPError, BackendCallError, ValueError) as exc:
                    err = normalize_error(exc, model=current.model)
                else:
                    self._log_llm_usage(current.model, usage)
                    if self.accountant is not None:
                        self.accountant.record_usage(stage or "Unattributed", usage)
                    return RawResponse(
                        text=text,
                        finish_reason=finish_reason,
                        model=current.model,
                        usage=usage,
                        attempted_models=list(attempted),
                    )

                last_error = err
                if err.kind is ErrorKind.AUTHENTICATION:
                    raise ConfigurationError(
                        f"backend rejected credentials: {err}"
                    ) from err
                if err.kind is ErrorKind.PARAMETER_UNSUPPORTED and not negotiated:
                    adjusted = self._negotiate(current, err.param)
                    if adjusted is not None:
                        logger.info(
                            "Parameter rejected; retrying same model once.",
                            model=current.model,
                            param=err.param,
                            request_id=request.request_id,
                        )
                        current = adjusted
                        negotiated = True
                        continue
                if err.kind is ErrorKind.RATE_LIMITED:
                    await self._backoff_delay(0)
                logger.warning(
                    "Model candidate failed; moving on.",
                    model=current.model,
                    kind=err.kind.value,
                    error=str(err),
                    request_id=request.request_id,
                )
                break

        raise CandidatesExhaustedError(attempted, last_error) from last_error

    async def generate_text(
        self,
        prompt: str,
        *,
        model_name: str | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        budget: TimeBudget | None = None,
        stage: str | None = None,
        auto_clean_response: bool = True,
    ) -> tuple[str, dict[str, int] | None]:
        """Plain-text call; returns ``(text, usage)``."""
        if not prompt or not prompt.strip():
            logger.error("generate_text: empty or invalid prompt.")
            return "", None
        request = GenerationRequest(
            prompt=prompt,
            system_prompt=system_prompt,
            model_hint=model_name or self.config.TEXT_MODEL,
            max_tokens=max_tokens or self.config.MAX_DRAFT_TOKENS,
            temperature=temperature,
        )
        response = await self.invoke(
            request, self.build_candidates(request.model_hint), budget=budget, stage=stage
        )
        text = response.text
        if auto_clean_response:
            text = self.clean_model_response(text)
        return text, response.usage

    def clean_model_response(self, text: str) -> str:
        """Cleans common artifacts from LLM text responses, including content within <think> tags and normalizes newlines."""
        if not isinstance(text, str):
            logger.warning(
                f"clean_model_response received non-string input: {type(text)}. Returning empty string."
            )
            return ""

        cleaned_text = text
        for tag_name in ("think", "thought", "thinking", "reasoning", "analysis"):
            cleaned_text = re.sub(
                rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
                "",
                cleaned_text,
                flags=re.DOTALL | re.IGNORECASE,
            )
            cleaned_text = re.sub(
                rf"<\s*/?\s*{tag_name}\s*/?\s*>", "", cleaned_text, flags=re.IGNORECASE
            )

        cleaned_text = re.sub(
            r"```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```",
            r"\1",
            cleaned_text,
            flags=re.DOTALL,
        )

        common_phrases_patterns = [
            r"^\s*(Okay,\s*)?(Sure,\s*)?(Here's|Here is)\s+(the|your)\s+[\w\s]+?:\s*",
            r"^\s*Certainly! Here is the (text|screenplay|script):\s*",
            r"\s*Let me know if you (need|have) any(thing else| other questions| further revisions| adjustments)\b.*?\.?[^\w\n]*$",
            r"\s*I hope this (meets your expectations|helps|is what you were looking for)\b.*?\.?[^\w\n]*$",
        ]
        for pattern_str in common_phrases_patterns:
            cleaned_text = re.sub(
                pattern_str,
                "",
                cleaned_text.strip(),
                count=1,
                flags=re.IGNORECASE,
            )

        final_text = cleaned_text.strip()
        final_text = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", final_text)
        return final_text


def build_llm_service(
    config: EngineSettings = settings,
    client: httpx.AsyncClient | None = None,
    accountant: TokenAccountant | None = None,
) -> LLMService:
    """Construct the process-wide service once, at start-up.

    Raises ``ConfigurationError`` when credentials are missing so the failure
    happens before any generation work begins.
    """
    if not config.OPENAI_API_KEY or not config.OPENAI_API_KEY.strip():
        raise ConfigurationError("OPENAI_API_KEY is not set")
    if not config.OPENAI_API_BASE.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"OPENAI_API_BASE must be an http(s) URL, got {config.OPENAI_API_BASE!r}"
        )
    return LLMService(config=config, client=client, accountant=accountant)
