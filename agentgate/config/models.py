"""Client model name -> runtime model mapping."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ModelRoute:
    model: str
    enable_thinking: bool


MODEL_MAP: dict[str, ModelRoute] = {
    "claude-4.5-opus-high-thinking": ModelRoute("claude-opus-4-5-20251101", True),
    "claude-4.5-opus": ModelRoute("claude-opus-4-5-20251101", False),
    "claude-4-opus": ModelRoute("claude-opus-4-20250514", False),
    "claude-4-sonnet": ModelRoute("claude-sonnet-4-20250514", False),
    "claude-3.5-sonnet": ModelRoute("claude-sonnet-4-20250514", False),
    "claude-3-opus": ModelRoute("claude-3-opus-20240229", False),
    "claude-3-sonnet": ModelRoute("claude-3-sonnet-20240229", False),
    "claude-3-haiku": ModelRoute("claude-3-haiku-20240307", False),
}


def resolve_model(model: str) -> ModelRoute:
    """Map a client-facing model name; unknown names pass through unchanged."""

    route = MODEL_MAP.get(model)
    if route is not None:
        return route
    return ModelRoute(model, "thinking" in model.lower())
