"""
Token counting and usage tracking.

Holds authoritative per-model usage reported by the chat endpoint and the
character-based fallback estimator used when no such report is available.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Rough average for English text across the supported model families
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be >= 0")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ModelUsage:
    """Usage reported by the endpoint for one model that served a message.

    Timings are in seconds and optional; the endpoint omits them for some
    providers.
    """
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    queue_time: Optional[float] = None
    prompt_time: Optional[float] = None
    completion_time: Optional[float] = None
    total_time: Optional[float] = None

    def __post_init__(self):
        """Validate counts, timings and the token total."""
        if not self.model:
            raise ValueError("model is required")
        for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        for name in ("queue_time", "prompt_time", "completion_time", "total_time"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.total_tokens != self.prompt_tokens + self.completion_tokens:
            raise ValueError(
                f"total_tokens ({self.total_tokens}) must equal prompt_tokens + "
                f"completion_tokens ({self.prompt_tokens + self.completion_tokens})"
            )

    @property
    def token_usage(self) -> TokenUsage:
        return TokenUsage(self.prompt_tokens, self.completion_tokens)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ModelUsage":
        """Build from the wire shape ``{"model": ..., "usage": {...}}``.

        A missing ``total_tokens`` is derived from the prompt and completion
        counts.

        Raises:
            ValueError: If the payload is not shaped like a usage entry
        """
        if not isinstance(payload, dict):
            raise ValueError("usage entry must be an object")
        usage = payload.get("usage")
        if not isinstance(usage, dict):
            raise ValueError("usage entry is missing 'usage'")

        prompt = int(usage.get("prompt_tokens", 0))
        completion = int(usage.get("completion_tokens", 0))
        total = usage.get("total_tokens")
        return cls(
            model=str(payload.get("model", "")),
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion if total is None else int(total),
            queue_time=_optional_float(usage.get("queue_time")),
            prompt_time=_optional_float(usage.get("prompt_time")),
            completion_time=_optional_float(usage.get("completion_time")),
            total_time=_optional_float(usage.get("total_time")),
        )

    def to_payload(self) -> Dict[str, Any]:
        usage: Dict[str, Any] = {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }
        for name in ("queue_time", "prompt_time", "completion_time", "total_time"):
            value = getattr(self, name)
            if value is not None:
                usage[name] = value
        return {"model": self.model, "usage": usage}


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def estimate_tokens_from_text(text: str) -> int:
    """Estimate a token count from character length.

    This is a fallback for when the endpoint reports no usage. It is not a
    measured value and must not be mixed with reported counts.

    Args:
        text: Text to estimate

    Returns:
        ceil(len(text) / 4), or 0 for blank text
    """
    if not text or not text.strip():
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
