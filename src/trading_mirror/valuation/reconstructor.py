"""Portfolio valuation and approximate performance reconstruction.

The read path reads only the mirror (current tables and portfolio
snapshots) plus public price history. It never triggers a sync.

24h PnL and the 30-day series assume the *current* share counts were held
unchanged over the whole window. They are presentation-grade estimates,
not ledgered realized/unrealized accounting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from trading_mirror.credentials import CredentialStore, connected_providers
from trading_mirror.providers.models import PricePoint, ProviderPreference, TradingProvider, provider_order
from trading_mirror.storage.mirror import MirrorStore
from trading_mirror.storage.repos import RUN_STATUS_ERROR, OrderDTO, PositionDTO
from trading_mirror.sync.resolver import PriceHistorySource

logger = logging.getLogger(__name__)

DAY_SECONDS = 86_400
PERFORMANCE_DAYS = 30
DAILY_FIDELITY_MINUTES = 1440
PNL_PCT_LIMIT = Decimal("999")
DEFAULT_PNL_TOP_N = 12
DEFAULT_CHART_TOP_N = 6
DEFAULT_STALE_AFTER_SECONDS = 240
DEFAULT_POSITION_LIMIT = 140
DEFAULT_SNAPSHOT_HISTORY_LIMIT = 80

ZERO = Decimal("0")


@dataclass(frozen=True)
class PerformancePoint:
    """One point of a portfolio value series (unix seconds, dollars)."""

    ts: int
    value: Decimal


@dataclass
class PortfolioPosition:
    """A mirrored position plus its approximate 24h move."""

    position: PositionDTO
    pnl_24h: Decimal | None = None
    pnl_24h_pct: Decimal | None = None


@dataclass
class PortfolioSummary:
    """Everything a portfolio view needs, read from the mirror."""

    provider: TradingProvider | None
    cash_balance: Decimal | None = None
    total_value: Decimal | None = None
    pnl_24h: Decimal | None = None
    pnl_24h_pct: Decimal | None = None
    performance_30d: list[PerformancePoint] = field(default_factory=list)
    positions: list[PortfolioPosition] = field(default_factory=list)
    orders: list[OrderDTO] = field(default_factory=list)
    snapshot_history: list[PerformancePoint] = field(default_factory=list)
    last_synced_at: datetime | None = None
    stale: bool = True
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value if self.provider else None,
            "cash_balance": self.cash_balance,
            "total_value": self.total_value,
            "pnl_24h": self.pnl_24h,
            "pnl_24h_pct": self.pnl_24h_pct,
            "performance_30d": [{"t": p.ts, "v": p.value} for p in self.performance_30d],
            "positions": [
                {
                    "token_id": p.position.token_id,
                    "market_question": p.position.market_question,
                    "outcome": p.position.outcome,
                    "shares": p.position.shares,
                    "avg_price": p.position.avg_price,
                    "current_price": p.position.current_price,
                    "value": p.position.value,
                    "pnl": p.position.pnl,
                    "pnl_pct": p.position.pnl_pct,
                    "pnl_24h": p.pnl_24h,
                    "pnl_24h_pct": p.pnl_24h_pct,
                }
                for p in self.positions
            ],
            "orders": [
                {
                    "order_id": o.order_id,
                    "token_id": o.token_id,
                    "side": o.side,
                    "price": o.price,
                    "size": o.size,
                    "status": o.status,
                }
                for o in self.orders
            ],
            "snapshot_history": [{"t": p.ts, "v": p.value} for p in self.snapshot_history],
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "stale": self.stale,
            "last_error": self.last_error,
        }


def sample_series_at(points: Sequence[PricePoint], ts: int) -> Decimal | None:
    """Latest price at or before ``ts``; the first price when ``ts`` precedes the series.

    ``points`` must be sorted by timestamp.
    """
    if not points:
        return None
    best: Decimal | None = None
    for point in points:
        if point.ts <= ts:
            best = point.price
        else:
            break
    return best if best is not None else points[0].price


def daily_timestamps(end_ts: int, days: int = PERFORMANCE_DAYS) -> list[int]:
    """``days + 1`` daily timestamps ending at ``end_ts``, oldest first."""
    return [end_ts - i * DAY_SECONDS for i in range(days, -1, -1)]


def clamp_pct(value: Decimal) -> Decimal:
    return max(-PNL_PCT_LIMIT, min(PNL_PCT_LIMIT, value))


def _value(position: PositionDTO) -> Decimal:
    return position.value if position.value is not None else ZERO


def top_by_value(positions: Sequence[PositionDTO], n: int) -> list[PositionDTO]:
    return sorted(positions, key=_value, reverse=True)[:n]


class PortfolioReconstructor:
    """Builds ``PortfolioSummary`` values from the mirror and price history."""

    def __init__(
        self,
        store: MirrorStore,
        credentials: CredentialStore,
        history_sources: Mapping[TradingProvider, PriceHistorySource] | None = None,
        *,
        pnl_top_n: int = DEFAULT_PNL_TOP_N,
        chart_top_n: int = DEFAULT_CHART_TOP_N,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
        position_limit: int = DEFAULT_POSITION_LIMIT,
        snapshot_history_limit: int = DEFAULT_SNAPSHOT_HISTORY_LIMIT,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._history_sources = dict(history_sources or {})
        self._pnl_top_n = pnl_top_n
        self._chart_top_n = chart_top_n
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._position_limit = position_limit
        self._snapshot_history_limit = snapshot_history_limit

    async def get_portfolio(
        self,
        user_id: str,
        preferred: ProviderPreference = "auto",
        *,
        now: datetime | None = None,
    ) -> PortfolioSummary:
        """Summarize the preferred connected account (falling back to the other)."""
        connected = await connected_providers(self._credentials, user_id)
        candidates = provider_order(
            preferred,
            polymarket_connected=connected[TradingProvider.POLYMARKET],
            kalshi_connected=connected[TradingProvider.KALSHI],
        )
        if not candidates:
            return PortfolioSummary(provider=None, stale=False)
        return await self.summarize(user_id, candidates[0], now=now)

    async def summarize(
        self,
        user_id: str,
        provider: TradingProvider,
        *,
        now: datetime | None = None,
    ) -> PortfolioSummary:
        """Summarize one account's mirrored state."""
        now = now or datetime.now(UTC)

        balances = await self._store.list_balances(user_id, provider)
        positions = await self._store.list_positions(user_id, provider, limit=self._position_limit)
        positions_value = await self._store.positions_value(user_id, provider)
        orders = await self._store.list_orders(user_id, provider)
        last_success = await self._store.latest_successful_run(user_id, provider)
        latest = await self._store.latest_run(user_id, provider)
        snapshots = await self._store.portfolio_snapshot_series(
            user_id, provider, limit=self._snapshot_history_limit
        )

        cash = next(
            (b.balance for b in balances if b.asset_id.lower() == provider.reference_asset.lower()),
            None,
        )
        if last_success is None and not balances and not positions:
            total_value = None
        else:
            # positions above is capped for display; the total covers every row
            total_value = (cash or ZERO) + positions_value

        last_synced_at = last_success.finished_at if last_success else None
        summary = PortfolioSummary(
            provider=provider,
            cash_balance=cash,
            total_value=total_value,
            positions=[PortfolioPosition(position=p) for p in positions],
            orders=orders,
            snapshot_history=[
                PerformancePoint(ts=int(s.captured_at.timestamp()), value=s.total_value)
                for s in snapshots
                if s.total_value is not None
            ],
            last_synced_at=last_synced_at,
            stale=last_synced_at is None or now - last_synced_at > self._stale_after,
            last_error=latest.error if latest and latest.status == RUN_STATUS_ERROR else None,
        )

        end_ts = int(now.timestamp())
        source = self._history_sources.get(provider)
        if source is None:
            summary.performance_30d = self._flat_series(total_value, end_ts)
            return summary

        await self._apply_pnl_24h(summary, source, end_ts)
        summary.performance_30d = await self._performance_30d(summary, source, end_ts)
        return summary

    # ------------------------------------------------------------------
    # 24h PnL
    # ------------------------------------------------------------------

    async def _apply_pnl_24h(self, summary: PortfolioSummary, source: PriceHistorySource, end_ts: int) -> None:
        start_ts = end_ts - DAY_SECONDS
        candidates = top_by_value([p.position for p in summary.positions], self._pnl_top_n)
        results = await asyncio.gather(
            *(source.price_history(p.token_id, start_ts=start_ts, end_ts=end_ts) for p in candidates),
            return_exceptions=True,
        )

        pnl_by_token: dict[str, Decimal] = {}
        for position, result in zip(candidates, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("24h price history failed for %s: %s", position.token_id, result)
                continue
            if len(result) < 2:
                continue
            pnl_by_token[position.token_id] = (result[-1].price - result[0].price) * position.shares

        total_pnl = sum(pnl_by_token.values(), ZERO)
        summary.pnl_24h = total_pnl
        if summary.total_value is not None and summary.total_value > 0:
            summary.pnl_24h_pct = clamp_pct(total_pnl / summary.total_value * 100)

        for item in summary.positions:
            pnl = pnl_by_token.get(item.position.token_id)
            if pnl is None:
                continue
            item.pnl_24h = pnl
            value = item.position.value
            if value is not None and value != 0:
                item.pnl_24h_pct = pnl / abs(value) * 100

    # ------------------------------------------------------------------
    # 30-day series
    # ------------------------------------------------------------------

    async def _performance_30d(
        self, summary: PortfolioSummary, source: PriceHistorySource, end_ts: int
    ) -> list[PerformancePoint]:
        start_ts = end_ts - PERFORMANCE_DAYS * DAY_SECONDS
        chart = top_by_value([p.position for p in summary.positions], self._chart_top_n)
        results = await asyncio.gather(
            *(
                source.price_history(
                    p.token_id, start_ts=start_ts, end_ts=end_ts, fidelity=DAILY_FIDELITY_MINUTES
                )
                for p in chart
            ),
            return_exceptions=True,
        )

        series: list[tuple[PositionDTO, list[PricePoint]]] = []
        for position, result in zip(chart, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("30d price history failed for %s: %s", position.token_id, result)
                result = []
            series.append((position, sorted(result, key=lambda pt: pt.ts)))

        cash = summary.cash_balance or ZERO
        points = []
        for ts in daily_timestamps(end_ts):
            positions_value = ZERO
            for position, history in series:
                price = sample_series_at(history, ts)
                if price is None:
                    positions_value += _value(position)
                else:
                    positions_value += price * position.shares
            points.append(PerformancePoint(ts=ts, value=cash + positions_value))
        return points

    @staticmethod
    def _flat_series(total_value: Decimal | None, end_ts: int) -> list[PerformancePoint]:
        if total_value is None:
            return []
        return [PerformancePoint(ts=ts, value=total_value) for ts in daily_timestamps(end_ts)]


# ============================================================================
# Assistant context
# ============================================================================


def _fmt(value: Decimal | None) -> str:
    if value is None:
        return "?"
    return format(value.normalize(), "f")


def format_position_line(position: PositionDTO) -> str:
    outcome = f" ({position.outcome})" if position.outcome else ""
    label = position.market_question or position.token_id
    return (
        f"- {label}{outcome}: {_fmt(position.shares)} @ {_fmt(position.current_price)} "
        f"(value {_fmt(position.value)})"
    )


async def build_portfolio_context(store: MirrorStore, user_id: str, *, limit: int = 8) -> str:
    """Render the top mirrored positions of each provider as plain text.

    Providers with no mirrored positions are omitted; an empty string means
    nothing is mirrored for the user.
    """
    sections = []
    for provider in TradingProvider:
        positions = await store.list_positions(user_id, provider, limit=limit)
        if not positions:
            continue
        lines = [f"# {provider} portfolio"]
        lines.extend(format_position_line(p) for p in positions)
        sections.append("\n".join(lines))
    return "\n\n".join(sections)
