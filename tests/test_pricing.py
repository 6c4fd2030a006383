"""Tests for the model price table."""

from decimal import Decimal

import pytest

from tiergate.pricing import (
    DEFAULT_INPUT_PRICE_PER_MILLION,
    DEFAULT_OUTPUT_PRICE_PER_MILLION,
    ModelPrice,
    PriceTable,
    TokenType,
)


@pytest.fixture
def table() -> PriceTable:
    return PriceTable(
        {
            "gpt-4o": ModelPrice(prompt=Decimal("2.50"), completion=Decimal("10.00")),
            "gpt-4o-mini": ModelPrice(prompt=Decimal("0.15"), completion=Decimal("0.60")),
            "azure:gpt-4o": ModelPrice(prompt=Decimal("2.75"), completion=Decimal("11.00")),
        }
    )


class TestPriceFor:
    """Tests for price resolution order."""

    def test_exact_model(self, table: PriceTable) -> None:
        assert table.price_for("gpt-4o", TokenType.PROMPT) == Decimal("2.50")
        assert table.price_for("gpt-4o", "completion") == Decimal("10.00")

    def test_longest_prefix_wins(self, table: PriceTable) -> None:
        assert table.price_for("gpt-4o-mini-2024-07-18", "prompt") == Decimal("0.15")
        assert table.price_for("gpt-4o-2024-08-06", "prompt") == Decimal("2.50")

    def test_endpoint_override(self, table: PriceTable) -> None:
        assert table.price_for("gpt-4o", "prompt", endpoint="azure") == Decimal("2.75")
        assert table.price_for("gpt-4o", "prompt", endpoint="openai") == Decimal("2.50")

    def test_unknown_model_uses_default(self, table: PriceTable) -> None:
        assert table.price_for("mystery", "prompt") == DEFAULT_INPUT_PRICE_PER_MILLION
        assert table.price_for("mystery", "completion") == DEFAULT_OUTPUT_PRICE_PER_MILLION

    def test_invalid_token_type(self, table: PriceTable) -> None:
        with pytest.raises(ValueError):
            table.price_for("gpt-4o", "cached")

    def test_default_table_has_known_models(self) -> None:
        assert PriceTable().price_for("gpt-4o-mini", "prompt") == Decimal("0.15")


class TestCostUsd:
    """Tests for per-call cost."""

    def test_cost(self, table: PriceTable) -> None:
        cost = table.cost_usd("gpt-4o", 1_000_000, 500_000)
        assert cost == Decimal("7.50")

    def test_small_counts(self, table: PriceTable) -> None:
        cost = table.cost_usd("gpt-4o-mini", 1000, 1000)
        assert cost == Decimal("0.00075")

    def test_negative_counts_are_ignored(self, table: PriceTable) -> None:
        assert table.cost_usd("gpt-4o", -5, 0) == Decimal("0")
