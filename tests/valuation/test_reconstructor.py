"""Tests for portfolio valuation and performance reconstruction."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from trading_mirror.credentials import InMemoryCredentialStore, KalshiCredentials, PolymarketCredentials
from trading_mirror.providers.models import POLYGON_USDC_ADDRESS, PricePoint, TradingProvider
from trading_mirror.storage.mirror import MirrorState, MirrorStore
from trading_mirror.storage.repos import BalanceDTO, OrderDTO, PositionDTO
from trading_mirror.valuation.reconstructor import (
    DAY_SECONDS,
    DAILY_FIDELITY_MINUTES,
    PortfolioReconstructor,
    build_portfolio_context,
    clamp_pct,
    daily_timestamps,
    format_position_line,
    sample_series_at,
    top_by_value,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
END_TS = int(NOW.timestamp())


class FakeHistorySource:
    """Serves canned price series; an Exception entry makes the call fail."""

    def __init__(
        self,
        day: dict[str, list[PricePoint] | Exception],
        month: dict[str, list[PricePoint] | Exception],
    ) -> None:
        self.day = day
        self.month = month
        self.calls: list[tuple[str, int, int, int | None]] = []

    async def price_history(
        self, token_id: str, *, start_ts: int, end_ts: int, fidelity: int | None = None
    ) -> list[PricePoint]:
        self.calls.append((token_id, start_ts, end_ts, fidelity))
        table = self.month if fidelity is not None else self.day
        result = table.get(token_id, [])
        if isinstance(result, Exception):
            raise result
        return result


def _position(token_id: str, shares: str, price: str, **kwargs: object) -> PositionDTO:
    return PositionDTO(
        token_id=token_id,
        market_question=kwargs.pop("question", f"Market {token_id}?"),  # type: ignore[arg-type]
        shares=Decimal(shares),
        current_price=Decimal(price),
        value=Decimal(shares) * Decimal(price),
        **kwargs,  # type: ignore[arg-type]
    )


async def _mirror(
    store: MirrorStore,
    user_id: str,
    provider: str,
    *,
    cash_asset: str,
    cash: str,
    positions: list[PositionDTO],
    finished_at: datetime,
) -> None:
    run = await store.start_run(user_id, provider, now=finished_at - timedelta(seconds=5))
    positions_value = sum((p.value or Decimal("0") for p in positions), Decimal("0"))
    await store.reconcile(
        run,
        MirrorState(
            balances=[BalanceDTO(asset_id=cash_asset, balance=Decimal(cash))],
            positions=positions,
            orders=[OrderDTO(order_id="o1", side="BUY", price=Decimal("0.5"), size=Decimal("1"))],
            cash_balance=Decimal(cash),
            positions_value=positions_value,
            total_value=Decimal(cash) + positions_value,
        ),
        now=finished_at,
    )
    await store.finish_run(run.id, status="success", now=finished_at)


@pytest.fixture
def credentials(
    user_id: str,
    polymarket_credentials: PolymarketCredentials,
    kalshi_credentials: KalshiCredentials,
) -> InMemoryCredentialStore:
    creds = InMemoryCredentialStore()
    creds.set_credentials(user_id, TradingProvider.POLYMARKET, polymarket_credentials)
    creds.set_credentials(user_id, TradingProvider.KALSHI, kalshi_credentials)
    return creds


@pytest.fixture
def history() -> FakeHistorySource:
    return FakeHistorySource(
        day={
            "token_42": [
                PricePoint(ts=END_TS - DAY_SECONDS, price=Decimal("0.5")),
                PricePoint(ts=END_TS - 3600, price=Decimal("0.55")),
                PricePoint(ts=END_TS, price=Decimal("0.6")),
            ],
            "token_43": RuntimeError("history unavailable"),
        },
        month={
            "token_42": [
                PricePoint(ts=END_TS - 10 * DAY_SECONDS, price=Decimal("0.5")),
                PricePoint(ts=END_TS, price=Decimal("0.6")),
            ],
            "token_43": RuntimeError("history unavailable"),
        },
    )


@pytest.fixture
def reconstructor(
    store: MirrorStore, credentials: InMemoryCredentialStore, history: FakeHistorySource
) -> PortfolioReconstructor:
    return PortfolioReconstructor(store, credentials, {TradingProvider.POLYMARKET: history})


# ============================================================================
# Series helpers
# ============================================================================


class TestSeriesHelpers:
    def test_sample_series_at(self) -> None:
        points = [PricePoint(ts=100, price=Decimal("0.2")), PricePoint(ts=200, price=Decimal("0.4"))]

        assert sample_series_at(points, 50) == Decimal("0.2")
        assert sample_series_at(points, 100) == Decimal("0.2")
        assert sample_series_at(points, 199) == Decimal("0.2")
        assert sample_series_at(points, 500) == Decimal("0.4")
        assert sample_series_at([], 100) is None

    def test_daily_timestamps(self) -> None:
        stamps = daily_timestamps(END_TS)

        assert len(stamps) == 31
        assert stamps[0] == END_TS - 30 * DAY_SECONDS
        assert stamps[-1] == END_TS
        assert stamps == sorted(stamps)

    def test_clamp_pct(self) -> None:
        assert clamp_pct(Decimal("5000")) == Decimal("999")
        assert clamp_pct(Decimal("-5000")) == Decimal("-999")
        assert clamp_pct(Decimal("12.5")) == Decimal("12.5")

    def test_top_by_value_puts_unpriced_last(self) -> None:
        unpriced = PositionDTO(token_id="u", market_question="U", shares=Decimal("100"))
        positions = [_position("a", "1", "0.1"), unpriced, _position("b", "10", "0.5")]

        assert [p.token_id for p in top_by_value(positions, 2)] == ["b", "a"]


# ============================================================================
# Portfolio summary
# ============================================================================


class TestSummarize:
    @pytest.mark.asyncio
    async def test_totals_pnl_and_series(
        self,
        reconstructor: PortfolioReconstructor,
        store: MirrorStore,
        history: FakeHistorySource,
        user_id: str,
    ) -> None:
        await _mirror(
            store,
            user_id,
            "polymarket",
            cash_asset=POLYGON_USDC_ADDRESS,
            cash="92",
            positions=[_position("token_42", "10", "0.6"), _position("token_43", "5", "0.4")],
            finished_at=NOW - timedelta(minutes=1),
        )

        summary = await reconstructor.summarize(user_id, TradingProvider.POLYMARKET, now=NOW)

        assert summary.cash_balance == Decimal("92")
        assert summary.total_value == Decimal("100")
        assert not summary.stale
        assert summary.last_error is None
        assert [o.order_id for o in summary.orders] == ["o1"]

        # Only token_42 has a usable 24h series: (0.6 - 0.5) * 10 shares.
        assert summary.pnl_24h == Decimal("1")
        assert summary.pnl_24h_pct == Decimal("1")
        by_token = {p.position.token_id: p for p in summary.positions}
        assert by_token["token_42"].pnl_24h == Decimal("1")
        assert by_token["token_43"].pnl_24h is None

        series = summary.performance_30d
        assert len(series) == 31
        assert series[-1].ts == END_TS
        # token_43 has no history and is carried at its current value of 2.
        assert series[0].value == Decimal("99")
        assert series[-1].value == Decimal("100")

        month_calls = [c for c in history.calls if c[3] == DAILY_FIDELITY_MINUTES]
        assert {c[0] for c in month_calls} == {"token_42", "token_43"}
        assert all(c[1] == END_TS - 30 * DAY_SECONDS for c in month_calls)

    @pytest.mark.asyncio
    async def test_pnl_limited_to_top_positions(
        self,
        store: MirrorStore,
        credentials: InMemoryCredentialStore,
        history: FakeHistorySource,
        user_id: str,
    ) -> None:
        await _mirror(
            store,
            user_id,
            "polymarket",
            cash_asset=POLYGON_USDC_ADDRESS,
            cash="0",
            positions=[_position(f"tok_{i}", "1", f"0.{i + 1}") for i in range(5)],
            finished_at=NOW,
        )
        reconstructor = PortfolioReconstructor(
            store, credentials, {TradingProvider.POLYMARKET: history}, pnl_top_n=2, chart_top_n=1
        )

        await reconstructor.summarize(user_id, TradingProvider.POLYMARKET, now=NOW)

        day_calls = [c[0] for c in history.calls if c[3] is None]
        month_calls = [c[0] for c in history.calls if c[3] is not None]
        assert sorted(day_calls) == ["tok_3", "tok_4"]
        assert month_calls == ["tok_4"]

    @pytest.mark.asyncio
    async def test_kalshi_without_history_is_flat(
        self, reconstructor: PortfolioReconstructor, store: MirrorStore, user_id: str
    ) -> None:
        await _mirror(
            store,
            user_id,
            "kalshi",
            cash_asset="USD",
            cash="25",
            positions=[_position("RAIN:yes", "4", "0.5", outcome="YES")],
            finished_at=NOW - timedelta(minutes=10),
        )

        summary = await reconstructor.summarize(user_id, TradingProvider.KALSHI, now=NOW)

        assert summary.total_value == Decimal("27")
        assert summary.stale
        assert summary.pnl_24h is None
        assert len(summary.performance_30d) == 31
        assert {p.value for p in summary.performance_30d} == {Decimal("27")}
        assert len(summary.snapshot_history) == 1

    @pytest.mark.asyncio
    async def test_total_covers_positions_beyond_list_limit(
        self, reconstructor: PortfolioReconstructor, store: MirrorStore, user_id: str
    ) -> None:
        await _mirror(
            store,
            user_id,
            "kalshi",
            cash_asset="USD",
            cash="10",
            positions=[_position(f"MKT-{i:03d}:yes", "1", "1") for i in range(200)],
            finished_at=NOW,
        )

        summary = await reconstructor.summarize(user_id, TradingProvider.KALSHI, now=NOW)
        snapshot = await store.latest_portfolio_snapshot(user_id, "kalshi")

        assert len(summary.positions) == 140
        assert summary.total_value == Decimal("210")
        assert snapshot is not None
        assert summary.total_value == snapshot.total_value

    @pytest.mark.asyncio
    async def test_never_synced(self, reconstructor: PortfolioReconstructor, user_id: str) -> None:
        summary = await reconstructor.summarize(user_id, TradingProvider.KALSHI, now=NOW)

        assert summary.total_value is None
        assert summary.cash_balance is None
        assert summary.stale
        assert summary.last_synced_at is None
        assert summary.performance_30d == []

    @pytest.mark.asyncio
    async def test_last_error_from_failed_run(
        self, reconstructor: PortfolioReconstructor, store: MirrorStore, user_id: str
    ) -> None:
        await _mirror(
            store,
            user_id,
            "kalshi",
            cash_asset="USD",
            cash="10",
            positions=[],
            finished_at=NOW - timedelta(minutes=30),
        )
        failed = await store.start_run(user_id, "kalshi", now=NOW - timedelta(minutes=1))
        await store.finish_run(failed.id, status="error", error="Kalshi API request failed (401)", now=NOW)

        summary = await reconstructor.summarize(user_id, TradingProvider.KALSHI, now=NOW)

        assert summary.last_error == "Kalshi API request failed (401)"
        assert summary.total_value == Decimal("10")
        assert summary.last_synced_at == NOW - timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_to_dict(
        self, reconstructor: PortfolioReconstructor, store: MirrorStore, user_id: str
    ) -> None:
        await _mirror(
            store,
            user_id,
            "kalshi",
            cash_asset="USD",
            cash="25",
            positions=[_position("RAIN:yes", "4", "0.5")],
            finished_at=NOW,
        )

        payload = (await reconstructor.summarize(user_id, TradingProvider.KALSHI, now=NOW)).to_dict()

        assert payload["provider"] == "kalshi"
        assert payload["positions"][0]["token_id"] == "RAIN:yes"
        assert payload["performance_30d"][-1] == {"t": END_TS, "v": Decimal("27")}
        assert payload["last_synced_at"] == NOW.isoformat()


class TestGetPortfolio:
    @pytest.mark.asyncio
    async def test_nothing_connected(self, store: MirrorStore) -> None:
        reconstructor = PortfolioReconstructor(store, InMemoryCredentialStore())

        summary = await reconstructor.get_portfolio("nobody", now=NOW)

        assert summary.provider is None
        assert not summary.stale

    @pytest.mark.asyncio
    async def test_preferred_provider(self, reconstructor: PortfolioReconstructor, user_id: str) -> None:
        auto = await reconstructor.get_portfolio(user_id, now=NOW)
        kalshi = await reconstructor.get_portfolio(user_id, TradingProvider.KALSHI, now=NOW)

        assert auto.provider is TradingProvider.POLYMARKET
        assert kalshi.provider is TradingProvider.KALSHI

    @pytest.mark.asyncio
    async def test_falls_back_to_connected_provider(
        self, store: MirrorStore, user_id: str, kalshi_credentials: KalshiCredentials
    ) -> None:
        creds = InMemoryCredentialStore()
        creds.set_credentials(user_id, TradingProvider.KALSHI, kalshi_credentials)
        reconstructor = PortfolioReconstructor(store, creds)

        summary = await reconstructor.get_portfolio(user_id, TradingProvider.POLYMARKET, now=NOW)

        assert summary.provider is TradingProvider.KALSHI


# ============================================================================
# Assistant context
# ============================================================================


class TestPortfolioContext:
    def test_format_position_line(self) -> None:
        line = format_position_line(_position("token_42", "10", "0.6", question="Will it rain?", outcome="Yes"))

        assert line == "- Will it rain? (Yes): 10 @ 0.6 (value 6)"

    def test_format_unpriced(self) -> None:
        position = PositionDTO(token_id="t", market_question="Q", shares=Decimal("2"))

        assert format_position_line(position) == "- Q: 2 @ ? (value ?)"

    @pytest.mark.asyncio
    async def test_context_sections(self, store: MirrorStore, user_id: str) -> None:
        await _mirror(
            store,
            user_id,
            "kalshi",
            cash_asset="USD",
            cash="25",
            positions=[_position("RAIN:yes", "4", "0.5", question="Rain?", outcome="YES")],
            finished_at=NOW,
        )

        text = await build_portfolio_context(store, user_id)

        assert text == "# kalshi portfolio\n- Rain? (YES): 4 @ 0.5 (value 2)"
        assert await build_portfolio_context(store, "nobody") == ""
