"""Normalize raw provider payloads into canonical mirror rows.

Pure functions: no I/O, no clock. Rows are de-duplicated by their mirror
key (first occurrence wins) so repeated upstream pages cannot violate the
current-table primary keys.
"""

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal

from trading_mirror.providers.models import (
    CENTS,
    KALSHI_CASH_ASSET,
    KalshiBalance,
    KalshiMarketPosition,
    KalshiOrder,
    PolymarketBalance,
    PolymarketOrder,
)
from trading_mirror.storage.mirror import MirrorState
from trading_mirror.storage.repos import BalanceDTO, OrderDTO, PositionDTO
from trading_mirror.sync.resolver import MarketInfo, dedupe

logger = logging.getLogger(__name__)

MAX_POLYMARKET_POSITIONS = 120
MAX_POLYMARKET_ORDERS = 300
MAX_KALSHI_TICKERS = 500
MAX_KALSHI_POSITIONS = 1000
MAX_KALSHI_ORDERS = 500


def _totals(
    cash: Decimal | None, positions: Iterable[PositionDTO]
) -> tuple[Decimal, Decimal]:
    positions_value = sum((p.value for p in positions if p.value is not None), Decimal("0"))
    return positions_value, (cash or Decimal("0")) + positions_value


def _orders(rows: Iterable[OrderDTO], cap: int) -> list[OrderDTO]:
    seen: set[str] = set()
    out: list[OrderDTO] = []
    for row in rows:
        if not row.order_id or row.order_id in seen:
            continue
        seen.add(row.order_id)
        out.append(row)
        if len(out) >= cap:
            break
    return out


# ============================================================================
# Polymarket
# ============================================================================


def polymarket_position_tokens(balances: Iterable[PolymarketBalance]) -> list[str]:
    """Token ids held with positive shares, excluding the cash asset."""
    tokens = [
        b.asset_id
        for b in balances
        if b.asset_id and not b.is_cash and b.balance is not None and b.balance > 0
    ]
    return dedupe(tokens)[:MAX_POLYMARKET_POSITIONS]


def normalize_polymarket(
    balances: list[PolymarketBalance],
    markets: Mapping[str, MarketInfo | None],
    orders: list[PolymarketOrder],
) -> MirrorState:
    """Build the mirror state for a Polymarket account.

    A token balance is a position: it is valued at the outcome's mark from
    the resolved market, or left unpriced when metadata is unavailable.
    """
    balance_rows: list[BalanceDTO] = []
    seen_assets: set[str] = set()
    shares_by_token: dict[str, PolymarketBalance] = {}
    cash: Decimal | None = None
    for b in balances:
        if not b.asset_id or b.asset_id in seen_assets:
            continue
        seen_assets.add(b.asset_id)
        balance_rows.append(BalanceDTO(asset_id=b.asset_id, balance=b.balance, raw=b.raw))
        if b.is_cash:
            cash = b.balance
        else:
            shares_by_token[b.asset_id] = b

    positions: list[PositionDTO] = []
    for token_id in polymarket_position_tokens(shares_by_token.values()):
        holding = shares_by_token[token_id]
        shares = holding.balance or Decimal("0")
        market = markets.get(token_id)
        quote = market.quote_for(token_id) if market else None
        price = quote.mark if quote else None
        positions.append(
            PositionDTO(
                token_id=token_id,
                market_question=(market.question or market.slug or token_id) if market else token_id,
                shares=shares,
                market_id=market.market_id if market else None,
                market_slug=market.slug if market else None,
                outcome=quote.label if quote else None,
                current_price=price,
                value=shares * price if price is not None else None,
                raw={"token_balance": holding.raw, "market": market.raw if market else None},
            )
        )

    order_rows = _orders(
        (
            OrderDTO(
                order_id=o.order_id,
                token_id=o.token_id,
                side=o.side,
                price=o.price,
                size=o.size,
                status=o.status,
                created_at=o.created_at,
                raw=o.raw,
            )
            for o in orders
        ),
        MAX_POLYMARKET_ORDERS,
    )

    positions_value, total_value = _totals(cash, positions)
    unresolved = sum(1 for p in positions if p.market_id is None)
    return MirrorState(
        balances=balance_rows,
        positions=positions,
        orders=order_rows,
        cash_balance=cash,
        positions_value=positions_value,
        total_value=total_value,
        meta={
            "balance_count": len(balance_rows),
            "position_count": len(positions),
            "order_count": len(order_rows),
            "unresolved_markets": unresolved,
        },
    )


# ============================================================================
# Kalshi
# ============================================================================


def kalshi_position_tickers(positions: Iterable[KalshiMarketPosition]) -> list[str]:
    """Tickers of open positions whose metadata should be resolved."""
    return dedupe([p.ticker for p in positions if p.ticker and p.shares > 0])[:MAX_KALSHI_TICKERS]


def _kalshi_position(
    kp: KalshiMarketPosition, market: MarketInfo | None
) -> PositionDTO:
    shares = kp.shares
    quote = market.quote_for(kp.token_id) if market else None
    price = quote.mark if quote else None

    exposure_cents = kp.market_exposure_cents
    avg_price = exposure_cents / shares / CENTS if exposure_cents is not None else None
    pnl = kp.realized_pnl_cents / CENTS if kp.realized_pnl_cents is not None else None
    pnl_pct = None
    if pnl is not None and exposure_cents is not None and exposure_cents != 0:
        pnl_pct = pnl / abs(exposure_cents / CENTS) * 100

    question = (market.question if market else None) or kp.title or kp.ticker
    return PositionDTO(
        token_id=kp.token_id,
        market_question=question,
        shares=shares,
        market_id=kp.ticker,
        outcome=kp.side.upper(),
        avg_price=avg_price,
        current_price=price,
        value=shares * price if price is not None else None,
        pnl=pnl,
        pnl_pct=pnl_pct,
        raw={"position": kp.raw, "market": market.raw if market else None},
    )


def normalize_kalshi(
    balance: KalshiBalance,
    positions: list[KalshiMarketPosition],
    markets: Mapping[str, MarketInfo | None],
    orders: list[KalshiOrder],
) -> MirrorState:
    """Build the mirror state for a Kalshi account.

    The position's sign selects the side (``>= 0`` is YES); the mark is the
    mid of that side's bid/ask.
    """
    balance_rows = [
        BalanceDTO(asset_id=KALSHI_CASH_ASSET, balance=balance.balance, raw={"balance": balance.raw})
    ]

    rows: list[PositionDTO] = []
    seen: set[str] = set()
    for kp in positions:
        if not kp.ticker or kp.shares <= 0 or kp.token_id in seen:
            continue
        seen.add(kp.token_id)
        rows.append(_kalshi_position(kp, markets.get(kp.ticker)))
        if len(rows) >= MAX_KALSHI_POSITIONS:
            break

    order_rows = _orders(
        (
            OrderDTO(
                order_id=o.order_id,
                token_id=o.token_id,
                side=o.display_side,
                price=o.price,
                size=o.size,
                status=o.status,
                created_at=o.created_at,
                raw=o.raw,
            )
            for o in orders
        ),
        MAX_KALSHI_ORDERS,
    )

    positions_value, total_value = _totals(balance.balance, rows)
    meta: dict[str, object] = {
        "balance_count": len(balance_rows),
        "position_count": len(rows),
        "order_count": len(order_rows),
        "unresolved_markets": sum(1 for r in rows if not r.raw.get("market")),
    }
    if balance.portfolio_value is not None:
        meta["reported_portfolio_value"] = str(balance.portfolio_value)
    return MirrorState(
        balances=balance_rows,
        positions=rows,
        orders=order_rows,
        cash_balance=balance.balance,
        positions_value=positions_value,
        total_value=total_value,
        meta=meta,
    )
