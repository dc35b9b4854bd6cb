"""Tests for provider payload models and coercion helpers."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from trading_mirror.providers.models import (
    POLYGON_USDC_ADDRESS,
    GammaMarket,
    KalshiBalance,
    KalshiMarketPosition,
    KalshiOrder,
    PolymarketBalance,
    PolymarketOrder,
    PricePoint,
    TradingProvider,
    parse_string_array,
    parse_timestamp,
    provider_order,
    to_decimal,
)

# ============================================================================
# Coercion helpers
# ============================================================================


class TestToDecimal:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (1, Decimal("1")),
            ("0.25", Decimal("0.25")),
            (" 3 ", Decimal("3")),
            (0.5, Decimal("0.5")),
        ],
    )
    def test_parses(self, value: object, expected: Decimal) -> None:
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", [None, True, "", "abc", "NaN", float("inf"), [], {}])
    def test_rejects(self, value: object) -> None:
        assert to_decimal(value) is None


class TestParsers:
    def test_string_array_from_json(self) -> None:
        assert parse_string_array('["Yes", "No"]') == ["Yes", "No"]

    def test_string_array_from_list(self) -> None:
        assert parse_string_array(["a", "b"]) == ["a", "b"]

    @pytest.mark.parametrize("value", [None, "", "not json", '{"a": 1}', "[1, 2]", [1]])
    def test_string_array_rejects(self, value: object) -> None:
        assert parse_string_array(value) is None

    def test_timestamp_seconds_and_millis(self) -> None:
        expected = datetime(2024, 1, 1, tzinfo=UTC)
        assert parse_timestamp(1704067200) == expected
        assert parse_timestamp(1704067200000) == expected

    def test_timestamp_iso(self) -> None:
        assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=UTC)

    def test_timestamp_garbage(self) -> None:
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


class TestProviderOrder:
    def test_auto_prefers_polymarket(self) -> None:
        assert provider_order("auto", polymarket_connected=True, kalshi_connected=True) == [
            TradingProvider.POLYMARKET,
            TradingProvider.KALSHI,
        ]

    def test_preferred_kalshi_first(self) -> None:
        assert provider_order(
            TradingProvider.KALSHI, polymarket_connected=True, kalshi_connected=True
        ) == [TradingProvider.KALSHI, TradingProvider.POLYMARKET]

    def test_disconnected_providers_skipped(self) -> None:
        assert provider_order(
            TradingProvider.POLYMARKET, polymarket_connected=False, kalshi_connected=True
        ) == [TradingProvider.KALSHI]
        assert provider_order("auto", polymarket_connected=False, kalshi_connected=False) == []

    def test_reference_assets(self) -> None:
        assert TradingProvider.POLYMARKET.reference_asset == POLYGON_USDC_ADDRESS
        assert TradingProvider.KALSHI.reference_asset == "USD"


# ============================================================================
# Polymarket payloads
# ============================================================================


class TestPolymarketPayloads:
    def test_balance_aliases(self) -> None:
        balance = PolymarketBalance.from_dict({"asset": "token_1", "size": "12.5"})

        assert balance.asset_id == "token_1"
        assert balance.balance == Decimal("12.5")
        assert not balance.is_cash

    def test_balance_cash_detection_is_case_insensitive(self) -> None:
        balance = PolymarketBalance.from_dict(
            {"asset_id": POLYGON_USDC_ADDRESS.upper().replace("0X", "0x"), "balance": 5}
        )
        assert balance.is_cash

    def test_balance_tolerates_garbage(self) -> None:
        balance = PolymarketBalance.from_dict("not a dict")
        assert balance.asset_id == ""
        assert balance.balance is None

    def test_order_remaining_size_from_original(self) -> None:
        order = PolymarketOrder.from_dict(
            {
                "id": "0xorder",
                "asset_id": "token_1",
                "side": "BUY",
                "price": "0.42",
                "original_size": "10",
                "size_matched": "4",
                "status": "LIVE",
                "created_at": 1704067200,
            }
        )

        assert order.order_id == "0xorder"
        assert order.token_id == "token_1"
        assert order.size == Decimal("6")
        assert order.price == Decimal("0.42")
        assert order.created_at == datetime(2024, 1, 1, tzinfo=UTC)

    def test_gamma_market_decodes_arrays(self) -> None:
        market = GammaMarket.from_dict(
            {
                "id": "123",
                "slug": "will-it-rain",
                "question": "Will it rain?",
                "outcomes": '["Yes", "No"]',
                "outcomePrices": '["0.6", "0.4"]',
                "clobTokenIds": '["token_yes", "token_no"]',
                "bestBid": "0.59",
            }
        )

        assert market.outcomes == ("Yes", "No")
        assert market.outcome_prices == (Decimal("0.6"), Decimal("0.4"))
        assert market.clob_token_ids == ("token_yes", "token_no")
        assert market.best_bid == Decimal("0.59")
        assert market.best_ask is None


# ============================================================================
# Kalshi payloads
# ============================================================================


class TestKalshiPayloads:
    def test_balance_converts_cents(self) -> None:
        balance = KalshiBalance.from_dict({"balance": 12345, "portfolio_value": 500})

        assert balance.balance == Decimal("123.45")
        assert balance.portfolio_value == Decimal("5")

    def test_negative_position_is_no_side(self) -> None:
        position = KalshiMarketPosition.from_dict({"ticker": "RAIN-24", "position": -7})

        assert position.side == "no"
        assert position.shares == Decimal("7")
        assert position.token_id == "RAIN-24:no"

    def test_positive_position_is_yes_side(self) -> None:
        position = KalshiMarketPosition.from_dict(
            {"ticker": "RAIN-24", "position": 3, "market_exposure": 180}
        )

        assert position.token_id == "RAIN-24:yes"
        assert position.market_exposure_cents == Decimal("180")

    def test_order_price_and_side(self) -> None:
        order = KalshiOrder.from_dict(
            {
                "order_id": "o1",
                "ticker": "RAIN-24",
                "side": "NO",
                "action": "buy",
                "yes_price": 70,
                "no_price": 30,
                "remaining_count": 4,
                "initial_count": 10,
                "status": "resting",
                "created_time": "2024-01-01T00:00:00Z",
            }
        )

        assert order.token_id == "RAIN-24:no"
        assert order.display_side == "BUY NO"
        assert order.price == Decimal("0.3")
        assert order.size == Decimal("4")

    def test_order_without_side_has_no_token(self) -> None:
        order = KalshiOrder.from_dict({"order_id": "o1", "ticker": "RAIN-24"})
        assert order.token_id is None
        assert order.display_side is None


class TestPricePoint:
    def test_valid_point(self) -> None:
        assert PricePoint.from_dict({"t": 100, "p": "0.5"}) == PricePoint(ts=100, price=Decimal("0.5"))

    @pytest.mark.parametrize("data", [{"t": 100}, {"p": 0.5}, {"t": "x", "p": 0.5}, None])
    def test_unusable_point(self, data: object) -> None:
        assert PricePoint.from_dict(data) is None
