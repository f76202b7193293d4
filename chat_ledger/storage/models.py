"""
Data models for storage layer.

Defines the persisted usage statistics and the store keys they live under.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

# Fixed, process-wide store keys
USAGE_STATS_KEY = "chat-usage-stats"
SELECTED_MODEL_KEY = "chat-selected-model"
CONVERSATION_KEY_PREFIX = "chat-conversation:"


def conversation_key(conversation_id: str) -> str:
    return f"{CONVERSATION_KEY_PREFIX}{conversation_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UsageStats:
    """Running usage totals for the chat feature.

    ``total_messages`` always equals ``user_messages + ai_messages``.
    """
    total_messages: int = 0
    user_messages: int = 0
    ai_messages: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    models_used: Dict[str, int] = field(default_factory=dict)
    last_updated: str = field(default_factory=_now)

    def touch(self) -> None:
        self.last_updated = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalMessages": self.total_messages,
            "userMessages": self.user_messages,
            "aiMessages": self.ai_messages,
            "totalTokens": self.total_tokens,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "estimatedCost": self.estimated_cost,
            "modelsUsed": dict(self.models_used),
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageStats":
        """Build from a stored record; missing fields fall back to defaults."""
        defaults = cls()
        user_messages = int(data.get("userMessages", defaults.user_messages))
        ai_messages = int(data.get("aiMessages", defaults.ai_messages))
        return cls(
            # Derived so a hand-edited record cannot break the invariant
            total_messages=user_messages + ai_messages,
            user_messages=user_messages,
            ai_messages=ai_messages,
            total_tokens=int(data.get("totalTokens", 0)),
            input_tokens=int(data.get("inputTokens", 0)),
            output_tokens=int(data.get("outputTokens", 0)),
            estimated_cost=float(data.get("estimatedCost", 0.0)),
            models_used={str(k): int(v) for k, v in (data.get("modelsUsed") or {}).items()},
            last_updated=str(data.get("lastUpdated", defaults.last_updated)),
        )
