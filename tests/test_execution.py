"""Tests for the order pass-through."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from trading_mirror.credentials import InMemoryCredentialStore, KalshiCredentials, PolymarketCredentials
from trading_mirror.execution import (
    TradingError,
    TradingService,
    build_kalshi_order,
    validate_polymarket_order,
)
from trading_mirror.providers.http import ProviderAuthError, ProviderError
from trading_mirror.providers.models import TradingProvider
from trading_mirror.storage.mirror import MirrorStore
from trading_mirror.sync.orchestrator import SyncOutcome


class FakeClientFactory:
    def __init__(self) -> None:
        self.polymarket_client = MagicMock()
        self.polymarket_client.place_order.return_value = {"success": True, "orderID": "0xabc"}
        self.polymarket_client.cancel_order.return_value = {"canceled": ["0xabc"]}
        self.kalshi_client = MagicMock()
        self.kalshi_client.place_order.return_value = {"order": {"order_id": "k1", "status": "resting"}}
        self.kalshi_client.cancel_order.return_value = {"order": {"order_id": "k1", "status": "canceled"}}

    def polymarket(self, credentials: PolymarketCredentials) -> MagicMock:
        return self.polymarket_client

    def kalshi(self, credentials: KalshiCredentials) -> MagicMock:
        return self.kalshi_client


@pytest.fixture
def clients() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def orchestrator() -> AsyncMock:
    mock = AsyncMock()
    mock.sync_provider.return_value = SyncOutcome(provider=TradingProvider.KALSHI)
    return mock


@pytest.fixture
def service(
    store: MirrorStore,
    clients: FakeClientFactory,
    orchestrator: AsyncMock,
    user_id: str,
    polymarket_credentials: PolymarketCredentials,
    kalshi_credentials: KalshiCredentials,
) -> TradingService:
    creds = InMemoryCredentialStore()
    creds.set_credentials(user_id, TradingProvider.POLYMARKET, polymarket_credentials)
    creds.set_credentials(user_id, TradingProvider.KALSHI, kalshi_credentials)
    return TradingService(store, creds, clients, orchestrator)


# ============================================================================
# Validation
# ============================================================================


class TestBuildKalshiOrder:
    def test_payload(self) -> None:
        payload = build_kalshi_order(
            ticker=" RAIN-24 ", side="YES", action="Buy", count=3, price_cents=42, client_order_id="cid"
        )

        assert payload == {
            "ticker": "RAIN-24",
            "side": "yes",
            "action": "buy",
            "count": 3,
            "type": "limit",
            "client_order_id": "cid",
            "time_in_force": "good_till_canceled",
            "yes_price": 42,
        }

    def test_no_side_price_key(self) -> None:
        payload = build_kalshi_order(ticker="A", side="no", action="sell", count=1, price_cents=10)

        assert payload["no_price"] == 10
        assert "yes_price" not in payload
        assert payload["client_order_id"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"ticker": "  "},
            {"side": "maybe"},
            {"action": "hold"},
            {"count": 0},
            {"price_cents": 0},
            {"price_cents": 100},
            {"time_in_force": "forever"},
        ],
    )
    def test_rejects_invalid(self, overrides: dict[str, object]) -> None:
        kwargs = {"ticker": "A", "side": "yes", "action": "buy", "count": 1, "price_cents": 50}
        kwargs.update(overrides)
        with pytest.raises(ValueError):
            build_kalshi_order(**kwargs)  # type: ignore[arg-type]


class TestValidatePolymarketOrder:
    def test_normalizes_side(self) -> None:
        assert (
            validate_polymarket_order(token_id="t", side="buy", price=Decimal("0.5"), size=Decimal("1"))
            == "BUY"
        )

    @pytest.mark.parametrize(
        ("side", "price", "size"),
        [
            ("HOLD", "0.5", "1"),
            ("BUY", "0", "1"),
            ("BUY", "1", "1"),
            ("SELL", "0.5", "0"),
        ],
    )
    def test_rejects_invalid(self, side: str, price: str, size: str) -> None:
        with pytest.raises(ValueError):
            validate_polymarket_order(token_id="t", side=side, price=Decimal(price), size=Decimal(size))


# ============================================================================
# TradingService
# ============================================================================


class TestTradingService:
    @pytest.mark.asyncio
    async def test_kalshi_order_logged_and_synced(
        self,
        service: TradingService,
        store: MirrorStore,
        clients: FakeClientFactory,
        orchestrator: AsyncMock,
        user_id: str,
    ) -> None:
        resp = await service.place_kalshi_order(
            user_id, ticker="RAIN", side="yes", action="buy", count=2, price_cents=40, client_order_id="cid"
        )

        assert resp["order"]["order_id"] == "k1"
        sent = clients.kalshi_client.place_order.call_args.args[0]
        assert sent["client_order_id"] == "cid"
        clients.kalshi_client.close.assert_called_once()

        actions = await store.list_recent_actions(user_id, "kalshi")
        assert [a.action_type for a in actions] == ["place_order_success", "place_order_attempt"]
        assert actions[1].request["ticker"] == "RAIN"
        assert actions[0].response["order"]["status"] == "resting"
        orchestrator.sync_provider.assert_awaited_once_with(user_id, TradingProvider.KALSHI)

    @pytest.mark.asyncio
    async def test_polymarket_order(
        self,
        service: TradingService,
        store: MirrorStore,
        clients: FakeClientFactory,
        user_id: str,
    ) -> None:
        resp = await service.place_polymarket_order(
            user_id, token_id="token_42", side="buy", price=Decimal("0.55"), size=Decimal("10")
        )

        assert resp["orderID"] == "0xabc"
        kwargs = clients.polymarket_client.place_order.call_args.kwargs
        assert kwargs["side"] == "BUY"
        assert kwargs["price"] == Decimal("0.55")
        actions = await store.list_recent_actions(user_id, "polymarket")
        assert actions[-1].request == {
            "token_id": "token_42",
            "side": "BUY",
            "price": "0.55",
            "size": "10",
            "tick_size": "0.01",
            "neg_risk": False,
        }

    @pytest.mark.asyncio
    async def test_provider_failure_logged_and_raised(
        self,
        service: TradingService,
        store: MirrorStore,
        clients: FakeClientFactory,
        orchestrator: AsyncMock,
        user_id: str,
    ) -> None:
        clients.kalshi_client.place_order.side_effect = ProviderError(
            "Kalshi API request failed (400): insufficient balance", provider="Kalshi", status_code=400
        )

        with pytest.raises(TradingError, match="insufficient balance") as exc_info:
            await service.place_kalshi_order(
                user_id, ticker="RAIN", side="yes", action="buy", count=2, price_cents=40
            )

        assert exc_info.value.provider == TradingProvider.KALSHI
        actions = await store.list_recent_actions(user_id, "kalshi")
        assert [a.action_type for a in actions] == ["place_order_error", "place_order_attempt"]
        assert "insufficient balance" in actions[0].response["error"]
        orchestrator.sync_provider.assert_not_awaited()
        clients.kalshi_client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_client_construction_failure_logged_and_raised(
        self,
        service: TradingService,
        store: MirrorStore,
        clients: FakeClientFactory,
        orchestrator: AsyncMock,
        user_id: str,
    ) -> None:
        clients.kalshi = MagicMock(  # type: ignore[method-assign]
            side_effect=ProviderAuthError("Invalid Kalshi private key PEM", provider="Kalshi")
        )

        with pytest.raises(TradingError, match="Invalid Kalshi private key PEM") as exc_info:
            await service.place_kalshi_order(
                user_id, ticker="RAIN", side="yes", action="buy", count=2, price_cents=40
            )

        assert isinstance(exc_info.value.__cause__, ProviderAuthError)
        actions = await store.list_recent_actions(user_id, "kalshi")
        assert [a.action_type for a in actions] == ["place_order_error", "place_order_attempt"]
        assert "Invalid Kalshi private key PEM" in actions[0].response["error"]
        clients.kalshi_client.place_order.assert_not_called()
        orchestrator.sync_provider.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_order(
        self,
        service: TradingService,
        store: MirrorStore,
        clients: FakeClientFactory,
        user_id: str,
    ) -> None:
        await service.cancel_order(user_id, TradingProvider.POLYMARKET, "0xabc")

        clients.polymarket_client.cancel_order.assert_called_once_with("0xabc")
        actions = await store.list_recent_actions(user_id, "polymarket")
        assert [a.action_type for a in actions] == ["cancel_order_success", "cancel_order_attempt"]

    @pytest.mark.asyncio
    async def test_not_connected(
        self, store: MirrorStore, clients: FakeClientFactory
    ) -> None:
        service = TradingService(store, InMemoryCredentialStore(), clients)

        with pytest.raises(TradingError, match="kalshi account not connected"):
            await service.cancel_order("nobody", TradingProvider.KALSHI, "k1")
        assert await store.list_recent_actions("nobody", "kalshi") == []

    @pytest.mark.asyncio
    async def test_invalid_order_never_reaches_provider(
        self, service: TradingService, store: MirrorStore, clients: FakeClientFactory, user_id: str
    ) -> None:
        with pytest.raises(ValueError):
            await service.place_kalshi_order(
                user_id, ticker="RAIN", side="yes", action="buy", count=1, price_cents=150
            )

        clients.kalshi_client.place_order.assert_not_called()
        assert await store.list_recent_actions(user_id, "kalshi") == []

    @pytest.mark.asyncio
    async def test_failed_follow_up_sync_does_not_raise(
        self,
        service: TradingService,
        orchestrator: AsyncMock,
        user_id: str,
    ) -> None:
        orchestrator.sync_provider.return_value = SyncOutcome(
            provider=TradingProvider.KALSHI, error="Kalshi API request failed (503)"
        )

        resp = await service.cancel_order(user_id, TradingProvider.KALSHI, "k1")

        assert resp["order"]["status"] == "canceled"
