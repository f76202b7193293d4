"""
Pricing calculations and rate management.

Per-million-token prices for the models served behind the chat endpoint.
Costs are computed in Decimal and returned unrounded; formatting to a fixed
number of places is left to the display layer.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Union

from .token_counter import ModelUsage, TokenUsage

logger = logging.getLogger(__name__)

ONE_MILLION = Decimal("1000000")

Rate = Union[Decimal, float, int, str]


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_per_million: Decimal  # USD per 1M prompt tokens
    output_per_million: Decimal  # USD per 1M completion tokens

    def __post_init__(self):
        if self.input_per_million < 0 or self.output_per_million < 0:
            raise ValueError("prices must be >= 0")


ZERO_PRICING = ModelPricing(Decimal("0"), Decimal("0"))


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def __contains__(self, model: str) -> bool:
        return model in self.prices

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Unknown models are priced at zero rather than rejected, so that a
        new model on the endpoint never breaks accounting.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or zero rates if unknown
        """
        pricing = self.prices.get(model)
        if pricing is None:
            logger.warning("Unknown model %r, defaulting cost to 0", model)
            return ZERO_PRICING
        return pricing

    def with_overrides(self, overrides: Mapping[str, Mapping[str, Rate]]) -> "PricingTable":
        """Return a new table with extra or replaced model prices.

        Args:
            overrides: model -> {"input": rate, "output": rate}
        """
        prices = dict(self.prices)
        for model, rates in overrides.items():
            prices[model] = ModelPricing(
                input_per_million=Decimal(str(rates.get("input", 0))),
                output_per_million=Decimal(str(rates.get("output", 0))),
            )
        return PricingTable(prices)


def _pricing(input_rate: str, output_rate: str) -> ModelPricing:
    return ModelPricing(Decimal(input_rate), Decimal(output_rate))


# Groq on-demand prices, USD per 1M tokens
PRICING_TABLE = PricingTable({
    # Compound systems bill through the underlying models
    "groq/compound": _pricing("0", "0"),
    "groq/compound-mini": _pricing("0", "0"),
    "llama-3.1-8b-instant": _pricing("0.05", "0.08"),
    "llama-3.1-70b-versatile": _pricing("0.59", "0.79"),
    "llama-3.3-70b-versatile": _pricing("0.59", "0.79"),
    "llama-3.2-1b-preview": _pricing("0.04", "0.04"),
    "llama-3.2-3b-preview": _pricing("0.06", "0.06"),
    "llama-3.2-11b-vision-preview": _pricing("0.18", "0.18"),
    "llama-3.2-90b-vision-preview": _pricing("0.90", "0.90"),
    "mixtral-8x7b-32768": _pricing("0.24", "0.24"),
    "gemma2-9b-it": _pricing("0.20", "0.20"),
    "gemma-7b-it": _pricing("0.07", "0.07"),
    "meta-llama/llama-guard-4-12b": _pricing("0.20", "0.20"),
    "meta-llama/llama-4-maverick-17b-128e-instruct": _pricing("0.20", "0.60"),
    "meta-llama/llama-4-scout-17b-16e-instruct": _pricing("0.11", "0.34"),
    "meta-llama/llama-prompt-guard-2-22m": _pricing("0.03", "0.03"),
    "meta-llama/llama-prompt-guard-2-86m": _pricing("0.04", "0.04"),
    "moonshotai/kimi-k2-instruct-0905": _pricing("1.00", "3.00"),
    "qwen/qwen3-32b": _pricing("0.29", "0.59"),
    "openai/gpt-oss-120b": _pricing("0.15", "0.75"),
    "openai/gpt-oss-20b": _pricing("0.10", "0.50"),
})


def calculate_cost(model: str, usage: TokenUsage, table: PricingTable = PRICING_TABLE) -> Decimal:
    """Calculate the exact cost of a usage record.

    Args:
        model: Model identifier
        usage: Token usage data
        table: Price table to look the model up in

    Returns:
        Cost in USD as an unrounded Decimal
    """
    pricing = table.get_pricing(model)

    # (tokens / 1M) * price_per_million
    prompt_cost = (Decimal(usage.prompt_tokens) / ONE_MILLION) * pricing.input_per_million
    completion_cost = (Decimal(usage.completion_tokens) / ONE_MILLION) * pricing.output_per_million

    return prompt_cost + completion_cost


def estimate_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    table: PricingTable = PRICING_TABLE,
) -> float:
    """Estimate the USD cost of a completion.

    Args:
        model: Model identifier
        prompt_tokens: Prompt token count
        completion_tokens: Completion token count
        table: Price table to look the model up in

    Returns:
        Cost in USD; 0 for models missing from the table

    Raises:
        ValueError: If a token count is negative
    """
    usage = TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return float(calculate_cost(model, usage, table))


def estimate_breakdown_cost(
    usage_breakdown: Iterable[ModelUsage],
    table: PricingTable = PRICING_TABLE,
) -> float:
    """Sum the cost of every model in a usage breakdown."""
    total = Decimal("0")
    for entry in usage_breakdown:
        total += calculate_cost(entry.model, entry.token_usage, table)
    return float(total)
