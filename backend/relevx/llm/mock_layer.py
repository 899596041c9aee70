"""Offline stand-in for LLMLayer, used by provider tests and dry runs."""

from __future__ import annotations

from typing import get_origin

from pydantic import BaseModel

from relevx.config import ModelTier
from relevx.llm.layer import LLMResponse, estimate_cost


class MockLLMLayer:
    """Scripted responses keyed by "<tier>:<ResponseModelName>".

    A value can be a model instance (returned every call), a list (one item
    consumed per call) or an Exception (raised). Unscripted keys get an empty
    instance of the response model. Every call is appended to `call_log`.
    """

    def __init__(self, responses: dict[str, object] | None = None) -> None:
        self.responses = responses or {}
        self.call_log: list[dict] = []

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
        self.call_log.append({
            "model_tier": model_tier,
            "response_model": response_model.__name__,
            "messages": messages,
            "system": system,
            "max_tokens": max_tokens,
        })
        scripted = self.responses.get(f"{model_tier}:{response_model.__name__}")
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if scripted else None
        if isinstance(scripted, Exception):
            raise scripted
        result = scripted if scripted is not None else empty_instance(response_model)
        return result, LLMResponse(model_version=f"mock-{model_tier}", stop_reason="end_turn")

    def build_cached_system(self, text: str) -> list[dict]:
        return [{"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}]

    def estimate_cost(self, model_tier: ModelTier, input_tokens: int,
                      output_tokens: int, cached_input_tokens: int = 0) -> float:
        return estimate_cost(model_tier, input_tokens, output_tokens, cached_input_tokens)


_EMPTY_BY_TYPE = {int: 0, float: 0.0, bool: False, str: ""}


def empty_instance(model: type[BaseModel]) -> BaseModel:
    """An instance with zero values for every required field."""
    values = {}
    for name, info in model.model_fields.items():
        if not info.is_required():
            continue
        origin = get_origin(info.annotation)
        if origin is list:
            values[name] = []
        elif origin is dict:
            values[name] = {}
        else:
            values[name] = _EMPTY_BY_TYPE.get(info.annotation, "")
    return model.model_construct(**values) if values else model()
