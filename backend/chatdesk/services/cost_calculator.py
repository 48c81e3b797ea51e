"""
Cost estimation for metered token usage.

Projects are metered in tokens, not money; this module only turns token
counts into an indicative USD figure for the admin usage report.
Decimal everywhere avoids floating-point rounding on money.

Prices are a hardcoded snapshot per 1K tokens.
"""

from decimal import Decimal

# Per-1K-token prices in USD.
# Format: model_name -> { "input": Decimal, "output": Decimal }
MODEL_PRICING: dict[str, dict[str, Decimal]] = {
    # OpenAI
    "gpt-4o": {
        "input": Decimal("0.0025"),
        "output": Decimal("0.01"),
    },
    "gpt-4o-mini": {
        "input": Decimal("0.00015"),
        "output": Decimal("0.0006"),
    },
    "gpt-4-turbo": {
        "input": Decimal("0.01"),
        "output": Decimal("0.03"),
    },
    "gpt-3.5-turbo": {
        "input": Decimal("0.0005"),
        "output": Decimal("0.0015"),
    },
    # Google
    "gemini-1.5-flash": {
        "input": Decimal("0.000075"),
        "output": Decimal("0.0003"),
    },
}

_ONE_THOUSAND = Decimal("1000")

# Blended estimate when only a total is known: 60% prompt, 40% completion.
_INPUT_SHARE = Decimal("0.6")


def get_supported_models() -> list[str]:
    """Return a sorted list of model names with known pricing."""
    return sorted(MODEL_PRICING.keys())


def calculate_cost(
    model_name: str,
    input_tokens: int,
    output_tokens: int,
) -> Decimal:
    """
    Exact USD cost of one call.

    Raises:
        ValueError: If model_name is not in the pricing table.
    """
    pricing = MODEL_PRICING.get(model_name)
    if pricing is None:
        supported = ", ".join(get_supported_models())
        raise ValueError(
            f"Unknown model '{model_name}'. "
            f"Supported models: {supported}"
        )

    input_cost = (Decimal(input_tokens) / _ONE_THOUSAND) * pricing["input"]
    output_cost = (Decimal(output_tokens) / _ONE_THOUSAND) * pricing["output"]

    return input_cost + output_cost


def estimate_cost(model_name: str, total_tokens: int) -> Decimal | None:
    """Blended estimate from a token total; None for unpriced models."""
    if model_name not in MODEL_PRICING:
        return None

    input_tokens = (Decimal(total_tokens) * _INPUT_SHARE).to_integral_value()
    output_tokens = Decimal(total_tokens) - input_tokens
    return calculate_cost(model_name, int(input_tokens), int(output_tokens))
