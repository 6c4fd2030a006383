"""Model token pricing in USD per million tokens."""

from collections.abc import Mapping
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict

# Default pricing (per million tokens) when a model is not in the table
DEFAULT_INPUT_PRICE_PER_MILLION = Decimal("3.00")
DEFAULT_OUTPUT_PRICE_PER_MILLION = Decimal("15.00")

TOKENS_PER_MILLION = Decimal("1000000")


class TokenType(str, Enum):
    PROMPT = "prompt"
    COMPLETION = "completion"


class ModelPrice(BaseModel):
    """USD price per million prompt and completion tokens."""

    model_config = ConfigDict(frozen=True)

    prompt: Decimal
    completion: Decimal

    def for_type(self, token_type: TokenType | str) -> Decimal:
        if TokenType(token_type) == TokenType.PROMPT:
            return self.prompt
        return self.completion


DEFAULT_MODEL_PRICES: dict[str, ModelPrice] = {
    "gpt-4o-mini": ModelPrice(prompt=Decimal("0.15"), completion=Decimal("0.60")),
    "gpt-4o": ModelPrice(prompt=Decimal("2.50"), completion=Decimal("10.00")),
    "gpt-4.1-nano": ModelPrice(prompt=Decimal("0.10"), completion=Decimal("0.40")),
    "gpt-4.1-mini": ModelPrice(prompt=Decimal("0.40"), completion=Decimal("1.60")),
    "gpt-4.1": ModelPrice(prompt=Decimal("2.00"), completion=Decimal("8.00")),
    "o3": ModelPrice(prompt=Decimal("2.00"), completion=Decimal("8.00")),
    "claude-3-5-haiku": ModelPrice(prompt=Decimal("0.80"), completion=Decimal("4.00")),
    "claude-3-7-sonnet": ModelPrice(prompt=Decimal("3.00"), completion=Decimal("15.00")),
    "claude-sonnet-4": ModelPrice(prompt=Decimal("3.00"), completion=Decimal("15.00")),
    "claude-opus-4": ModelPrice(prompt=Decimal("15.00"), completion=Decimal("75.00")),
    "gemini-2.5-flash": ModelPrice(prompt=Decimal("0.30"), completion=Decimal("2.50")),
    "gemini-2.5-pro": ModelPrice(prompt=Decimal("1.25"), completion=Decimal("10.00")),
}


class PriceTable:
    """Resolves the price of a model's tokens.

    Lookup order: ``{endpoint}:{model}`` override, exact model, longest model
    prefix (so ``gpt-4o-mini-2024-07-18`` prices as ``gpt-4o-mini``), default.
    """

    def __init__(
        self,
        prices: Mapping[str, ModelPrice] | None = None,
        default: ModelPrice | None = None,
    ) -> None:
        self._prices = dict(DEFAULT_MODEL_PRICES if prices is None else prices)
        self._default = default or ModelPrice(
            prompt=DEFAULT_INPUT_PRICE_PER_MILLION,
            completion=DEFAULT_OUTPUT_PRICE_PER_MILLION,
        )
        # Longest prefixes first
        self._prefixes = sorted(self._prices, key=len, reverse=True)

    def _lookup(self, model: str, endpoint: str | None) -> ModelPrice:
        if endpoint and f"{endpoint}:{model}" in self._prices:
            return self._prices[f"{endpoint}:{model}"]
        if model in self._prices:
            return self._prices[model]
        for prefix in self._prefixes:
            if ":" not in prefix and model.startswith(prefix):
                return self._prices[prefix]
        return self._default

    def price_for(
        self,
        model: str,
        token_type: TokenType | str,
        endpoint: str | None = None,
    ) -> Decimal:
        """USD per million tokens of ``token_type`` for ``model``."""
        return self._lookup(model, endpoint).for_type(token_type)

    def cost_usd(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        endpoint: str | None = None,
    ) -> Decimal:
        """Calculate the USD cost of one completion.

        Args:
            model: Model name as reported by the provider
            prompt_tokens: Number of prompt tokens
            completion_tokens: Number of completion tokens
            endpoint: Optional endpoint for endpoint-specific pricing

        Returns:
            Total cost in dollars as Decimal
        """
        price = self._lookup(model, endpoint)
        prompt_cost = Decimal(max(prompt_tokens, 0)) / TOKENS_PER_MILLION * price.prompt
        completion_cost = (
            Decimal(max(completion_tokens, 0)) / TOKENS_PER_MILLION * price.completion
        )
        return prompt_cost + completion_cost
