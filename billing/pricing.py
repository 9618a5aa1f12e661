"""
Model pricing for metered AI usage.

Prices are USD per 1M tokens, split into input (prompt) and output (completion).
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from django.conf import settings

ONE_MILLION = Decimal('1000000')
USD_QUANTUM = Decimal('0.000001')

# When a provider only reports a total, assume this share was prompt tokens.
# TODO: replace with per-model ratios once provider usage data is collected.
PROMPT_SHARE = Decimal('0.7')


@dataclass(frozen=True)
class ModelPrice:
    input_per_1m: Decimal
    output_per_1m: Decimal


MODEL_PRICES = {
    'gpt-4o': ModelPrice(Decimal('2.50'), Decimal('10.00')),
    'gpt-4o-mini': ModelPrice(Decimal('0.15'), Decimal('0.60')),
    'gpt-4.1': ModelPrice(Decimal('2.00'), Decimal('8.00')),
    'gpt-4.1-mini': ModelPrice(Decimal('0.40'), Decimal('1.60')),
    'claude-3-5-sonnet': ModelPrice(Decimal('3.00'), Decimal('15.00')),
}

# Unknown models are billed at the most expensive common rate
DEFAULT_PRICE = ModelPrice(Decimal('3.00'), Decimal('15.00'))


def price_for_model(model_name: Optional[str]) -> ModelPrice:
    """
    Look up a model's price. OpenRouter-style names ("openai/gpt-4o") and
    dated snapshots ("gpt-4o-2024-08-06") resolve to their base entry.
    """
    if not model_name:
        return DEFAULT_PRICE
    name = model_name.split('/')[-1].lower()
    if name in MODEL_PRICES:
        return MODEL_PRICES[name]
    # Longest prefix wins so gpt-4o-mini-2024-07-18 doesn't match gpt-4o
    for key in sorted(MODEL_PRICES, key=len, reverse=True):
        if name.startswith(key):
            return MODEL_PRICES[key]
    return DEFAULT_PRICE


def split_total_tokens(total_tokens: int):
    """Estimate (prompt, completion) from a bare total using the 70/30 split."""
    prompt_tokens = int(Decimal(total_tokens) * PROMPT_SHARE)
    return prompt_tokens, total_tokens - prompt_tokens


def calculate_cost(model_name, prompt_tokens=0, completion_tokens=0, total_tokens=0) -> Decimal:
    """USD cost of one call, rounded to the ledger's 6 decimal places."""
    if not prompt_tokens and not completion_tokens and total_tokens:
        prompt_tokens, completion_tokens = split_total_tokens(total_tokens)
    price = price_for_model(model_name)
    cost = (
        Decimal(prompt_tokens) * price.input_per_1m
        + Decimal(completion_tokens) * price.output_per_1m
    ) / ONE_MILLION
    return cost.quantize(USD_QUANTUM, rounding=ROUND_HALF_UP)


def stage_cost_estimate(stage_name: str) -> Decimal:
    """Flat pre-check amount for a stage, from BILLING['STAGE_COST_ESTIMATES']."""
    billing = settings.BILLING
    estimate = billing['STAGE_COST_ESTIMATES'].get(stage_name, billing['DEFAULT_STAGE_COST'])
    return Decimal(str(estimate))
