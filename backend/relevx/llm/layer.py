"""Structured Claude calls for the research providers.

Every provider step (queries, pre-filter, relevance, report) asks for a Pydantic
model back; Instructor does the parsing and re-asks on validation errors.

Retries with backoff live in the orchestrator's RetryPolicy, one level up, so
this layer only fails fast: the circuit breaker trips after repeated API
failures, and requests Anthropic rejects outright surface as FatalProviderError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import anthropic
import instructor
from langfuse import get_client, observe
from pydantic import BaseModel

from relevx.config import MODEL_MAP, ModelTier, settings
from relevx.errors import FatalProviderError
from relevx.models.project import utcnow
from relevx.retry import CircuitBreaker, CircuitBreakerOpenError

logger = logging.getLogger(__name__)

# USD per million tokens: (input, cached input read, output)
PRICING: dict[str, tuple[float, float, float]] = {
    "opus": (15.0, 1.50, 75.0),
    "sonnet": (3.0, 0.30, 15.0),
    "haiku": (0.80, 0.08, 4.0),
}

# Client errors a retry cannot fix
_REJECTED = (
    anthropic.AuthenticationError,
    anthropic.PermissionDeniedError,
    anthropic.BadRequestError,
    anthropic.NotFoundError,
)


def estimate_cost(
    model_tier: ModelTier,
    input_tokens: int,
    output_tokens: int,
    cached_input_tokens: int = 0,
) -> float:
    fresh, cached, output = PRICING[model_tier]
    total = (
        (input_tokens - cached_input_tokens) * fresh
        + cached_input_tokens * cached
        + output_tokens * output
    ) / 1_000_000
    return round(total, 6)


@dataclass
class LLMResponse:
    """Usage and cost of one structured call."""

    model_version: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    stop_reason: str = ""
    cost: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_message(cls, message: Any, model_tier: ModelTier) -> LLMResponse:
        usage = message.usage
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        cached = getattr(usage, "cache_read_input_tokens", 0) or 0
        return cls(
            model_version=message.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_input_tokens=cached,
            stop_reason=message.stop_reason or "",
            cost=estimate_cost(model_tier, input_tokens, output_tokens, cached),
        )


class LLMLayer:
    """Shared Anthropic client for ClaudeProvider.

    Usage:
        llm = LLMLayer()
        batch, meta = await llm.complete_structured(
            messages=[{"role": "user", "content": prompt}],
            model_tier="haiku",
            response_model=RelevanceBatch,
            system=llm.build_cached_system(RELEVANCY_SYSTEM),
        )
    """

    def __init__(self, api_key: str | None = None) -> None:
        self.raw_client = anthropic.AsyncAnthropic(api_key=api_key or settings.anthropic_api_key)
        self.client = instructor.from_anthropic(self.raw_client)
        self.circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0)

    @observe(as_type="generation", name="relevx.structured_call")
    async def complete_structured(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        response_model: type[BaseModel],
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Send one request and return (validated model, usage metadata).

        `system` may be a plain string or cache_control blocks from
        build_cached_system(); `max_retries` is Instructor's validation re-ask
        count, not a network retry.
        """
        if not self.circuit_breaker.allow_request():
            raise CircuitBreakerOpenError("Anthropic circuit breaker is open; skipping call")

        request: dict[str, Any] = dict(
            model=MODEL_MAP[model_tier],
            messages=messages,
            response_model=response_model,
            max_tokens=max_tokens or settings.default_max_tokens,
            max_retries=max_retries or settings.default_max_retries,
            temperature=settings.default_temperature if temperature is None else temperature,
        )
        if system:
            request["system"] = system

        try:
            result, message = await self.client.messages.create_with_completion(**request)
        except _REJECTED as e:
            self.circuit_breaker.record_failure()
            raise FatalProviderError(f"Anthropic rejected request: {e}") from e
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.warning("%s call on %s failed: %s", response_model.__name__, model_tier, e)
            raise
        self.circuit_breaker.record_success()

        meta = LLMResponse.from_message(message, model_tier)
        logger.debug(
            "%s via %s: %d in / %d out tokens, $%.4f",
            response_model.__name__, meta.model_version, meta.input_tokens, meta.output_tokens, meta.cost,
        )
        self._report_generation(meta, response_model.__name__)
        return result, meta

    def _report_generation(self, meta: LLMResponse, schema: str) -> None:
        """Attach model, token usage and cost to the active Langfuse generation."""
        if not settings.langfuse_public_key:
            return
        get_client().update_current_generation(
            model=meta.model_version,
            usage_details={"input": meta.input_tokens, "output": meta.output_tokens},
            metadata={
                "schema": schema,
                "cached_input_tokens": meta.cached_input_tokens,
                "cost_usd": meta.cost,
                "stop_reason": meta.stop_reason,
            },
        )

    def build_cached_system(self, text: str) -> list[dict]:
        """System prompt marked for prompt caching across relevance batches."""
        return [{"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}]

    def estimate_cost(
        self,
        model_tier: ModelTier,
        input_tokens: int,
        output_tokens: int,
        cached_input_tokens: int = 0,
    ) -> float:
        return estimate_cost(model_tier, input_tokens, output_tokens, cached_input_tokens)
