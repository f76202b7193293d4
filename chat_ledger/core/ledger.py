"""
Usage ledger for chat conversations.

Tracks message counts, token counts and estimated cost across a
conversation, persisting through an injected store.

Token sources:
1. Reported usage - the per-model breakdown the endpoint sends as metadata
2. Estimated usage - character-count heuristic, only when nothing was reported

The two are never mixed within one message.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence

from chat_ledger.storage.models import UsageStats
from .formatting import format_cost, format_tokens
from .pricing import PRICING_TABLE, PricingTable, estimate_breakdown_cost, estimate_cost
from .token_counter import ModelUsage, estimate_tokens_from_text

logger = logging.getLogger(__name__)


class UsageStatsStore(Protocol):
    """Persistence for UsageStats."""

    def load(self) -> UsageStats:
        ...

    def save(self, stats: UsageStats) -> None:
        ...


@dataclass(frozen=True)
class MessageUsage:
    """Tokens and cost attributed to one assistant message."""
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    authoritative: bool


class UsageLedger:
    """Running usage statistics for the chat feature.

    Stats are loaded from the store on construction and saved after every
    change. Concurrent writers are not coordinated; the last save wins.
    """

    def __init__(
        self,
        store: UsageStatsStore,
        prefer_authoritative_usage: bool = True,
        count_user_tokens: bool = False,
        pricing: PricingTable = PRICING_TABLE,
    ):
        """Initialize the ledger.

        Args:
            store: Persistence for the stats
            prefer_authoritative_usage: Use reported usage over estimates when both exist
            count_user_tokens: Add estimated user-message tokens to the token totals
                when the user message is recorded
            pricing: Price table for cost estimates
        """
        self.store = store
        self.prefer_authoritative_usage = prefer_authoritative_usage
        self.count_user_tokens = count_user_tokens
        self.pricing = pricing
        self.stats = store.load()
        self._pending_prompt_tokens = 0
        # Part of the pending estimate already added to the totals
        self._counted_prompt_tokens = 0

    def load(self) -> UsageStats:
        """Reload stats from the store, discarding in-memory changes."""
        self.stats = self.store.load()
        return self.stats

    def save(self) -> None:
        self.store.save(self.stats)

    def record_user_message(self, text: str) -> None:
        """Count a user message.

        The estimated prompt size is remembered for the next assistant
        message; it only reaches the token totals when count_user_tokens is set,
        and is replaced there if the reply comes with reported usage.
        """
        tokens = estimate_tokens_from_text(text)
        self._pending_prompt_tokens = tokens
        self._counted_prompt_tokens = 0

        self.stats.total_messages += 1
        self.stats.user_messages += 1
        if self.count_user_tokens:
            self.stats.input_tokens += tokens
            self.stats.total_tokens += tokens
            self._counted_prompt_tokens = tokens
        self.stats.touch()
        self.save()

    def record_ai_message(
        self,
        content: str,
        model: str,
        usage_breakdown: Optional[Sequence[ModelUsage]] = None,
    ) -> MessageUsage:
        """Count an assistant message and add its tokens and cost.

        Args:
            content: Final message text
            model: Model the message was requested from
            usage_breakdown: Usage reported by the endpoint, if any

        Returns:
            The usage attributed to this message
        """
        usage = self._message_usage(content, model, usage_breakdown)

        self.stats.total_messages += 1
        self.stats.ai_messages += 1
        self.stats.output_tokens += usage.output_tokens
        self.stats.total_tokens += usage.output_tokens
        # The estimate counted with the user message is either this message's
        # input (estimated) or superseded by it (reported)
        input_delta = usage.input_tokens - self._counted_prompt_tokens
        self.stats.input_tokens += input_delta
        self.stats.total_tokens += input_delta
        self.stats.estimated_cost += usage.cost
        self.stats.models_used[model] = self.stats.models_used.get(model, 0) + 1
        self.stats.touch()
        self.save()

        self._pending_prompt_tokens = 0
        self._counted_prompt_tokens = 0
        return usage

    def _message_usage(
        self,
        content: str,
        model: str,
        usage_breakdown: Optional[Sequence[ModelUsage]],
    ) -> MessageUsage:
        if usage_breakdown and self.prefer_authoritative_usage:
            return MessageUsage(
                model=model,
                input_tokens=sum(u.prompt_tokens for u in usage_breakdown),
                output_tokens=sum(u.completion_tokens for u in usage_breakdown),
                cost=estimate_breakdown_cost(usage_breakdown, self.pricing),
                authoritative=True,
            )

        if usage_breakdown:
            logger.debug("Ignoring reported usage for %s, estimating instead", model)
        input_tokens = self._pending_prompt_tokens
        output_tokens = estimate_tokens_from_text(content)
        return MessageUsage(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=estimate_cost(model, input_tokens, output_tokens, self.pricing),
            authoritative=False,
        )

    def reset(self) -> UsageStats:
        """Zero every counter and persist the empty stats.

        Callers are expected to have confirmed the reset with the user.
        """
        self.stats = UsageStats()
        self._pending_prompt_tokens = 0
        self._counted_prompt_tokens = 0
        self.save()
        logger.info("Usage statistics reset")
        return self.stats

    def top_model(self) -> Optional[str]:
        if not self.stats.models_used:
            return None
        return max(self.stats.models_used.items(), key=lambda item: item[1])[0]

    def summary(self) -> Dict[str, Optional[str]]:
        """Human-readable summary of the current stats."""
        stats = self.stats
        return {
            "messages": (
                f"{stats.total_messages} ({stats.user_messages} sent, "
                f"{stats.ai_messages} received)"
            ),
            "tokens": format_tokens(stats.total_tokens),
            "cost": format_cost(stats.estimated_cost),
            "top_model": self.top_model(),
        }
