"""Raw provider payload models and defensive parsing helpers.

Every constructor here tolerates missing or malformed fields: numbers that
cannot be parsed become ``None`` and strings default to empty, so a single
bad row from an upstream API never aborts a sync.
"""

import contextlib
import json
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Literal

POLYGON_USDC_ADDRESS = "0x2791bca1f2de4661ed88a30c99a7a9449aa84174"
KALSHI_CASH_ASSET = "USD"

CENTS = Decimal("100")


class TradingProvider(StrEnum):
    """Supported trading venues."""

    POLYMARKET = "polymarket"
    KALSHI = "kalshi"

    @property
    def reference_asset(self) -> str:
        """Asset id whose balance counts as cash."""
        if self is TradingProvider.POLYMARKET:
            return POLYGON_USDC_ADDRESS
        return KALSHI_CASH_ASSET


ProviderPreference = TradingProvider | Literal["auto"]


def provider_order(
    preferred: ProviderPreference,
    *,
    polymarket_connected: bool,
    kalshi_connected: bool,
) -> list[TradingProvider]:
    """Return the providers to try, in order.

    The preferred provider comes first when connected, followed by the other
    connected provider as a fallback. ``"auto"`` means Polymarket first.
    """
    connected = {
        TradingProvider.POLYMARKET: polymarket_connected,
        TradingProvider.KALSHI: kalshi_connected,
    }
    if preferred == "auto" or preferred is TradingProvider.POLYMARKET:
        ranked = [TradingProvider.POLYMARKET, TradingProvider.KALSHI]
    else:
        ranked = [TradingProvider.KALSHI, TradingProvider.POLYMARKET]
    return [provider for provider in ranked if connected[provider]]


# ============================================================================
# Coercion helpers
# ============================================================================


def to_decimal(value: Any) -> Decimal | None:
    """Coerce a JSON scalar to a finite Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def as_str(value: Any) -> str:
    """Return a stripped string for scalar values, else an empty string."""
    if value is None or isinstance(value, (dict, list, tuple)):
        return ""
    return str(value).strip()


def first_present(data: dict[str, Any], *keys: str) -> Any:
    """Return the first value in ``data`` that is not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def parse_string_array(value: Any) -> list[str] | None:
    """Parse a JSON-encoded array of strings (Gamma style).

    Lists of strings are accepted as-is; anything else yields None.
    """
    if isinstance(value, list):
        return list(value) if all(isinstance(v, str) for v in value) else None
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    if not isinstance(parsed, list) or not all(isinstance(v, str) for v in parsed):
        return None
    return parsed


def parse_timestamp(value: Any) -> datetime | None:
    """Parse unix seconds, unix milliseconds or an ISO-8601 string into UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    number = to_decimal(value)
    if number is not None:
        seconds = float(number)
        if seconds > 10_000_000_000:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


# ============================================================================
# Polymarket payloads
# ============================================================================


@dataclass(frozen=True)
class PolymarketBalance:
    """One asset balance (collateral or conditional token)."""

    asset_id: str
    balance: Decimal | None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_cash(self) -> bool:
        return self.asset_id.lower() == POLYGON_USDC_ADDRESS

    @classmethod
    def from_dict(cls, data: Any) -> "PolymarketBalance":
        data = _dict(data)
        return cls(
            asset_id=as_str(first_present(data, "asset_id", "asset", "token_id")),
            balance=to_decimal(first_present(data, "balance", "size")),
            raw=data,
        )


@dataclass(frozen=True)
class PolymarketOrder:
    """A resting CLOB order as returned by ``get_orders``."""

    order_id: str
    token_id: str | None
    side: str | None
    price: Decimal | None
    size: Decimal | None
    status: str | None
    created_at: datetime | None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "PolymarketOrder":
        data = _dict(data)
        side = data.get("side")
        status = data.get("status")
        original = to_decimal(first_present(data, "original_size", "originalSize"))
        matched = to_decimal(data.get("size_matched"))
        size = to_decimal(data.get("size"))
        if size is None and original is not None:
            size = original - matched if matched is not None else original
        return cls(
            order_id=as_str(first_present(data, "id", "order_id", "orderId")),
            token_id=as_str(first_present(data, "asset_id", "token_id", "assetId")) or None,
            side=side if isinstance(side, str) else None,
            price=to_decimal(data.get("price")),
            size=size,
            status=status if isinstance(status, str) else None,
            created_at=parse_timestamp(first_present(data, "created_at", "createdAt")),
            raw=data,
        )


@dataclass(frozen=True)
class GammaMarket:
    """Gamma market metadata with decoded outcome arrays."""

    market_id: str
    slug: str | None
    question: str | None
    outcomes: tuple[str, ...]
    outcome_prices: tuple[Decimal | None, ...]
    clob_token_ids: tuple[str, ...]
    best_bid: Decimal | None = None
    best_ask: Decimal | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "GammaMarket":
        data = _dict(data)
        slug = as_str(data.get("slug")) or None
        question = as_str(data.get("question")) or None
        prices = parse_string_array(data.get("outcomePrices")) or []
        return cls(
            market_id=as_str(first_present(data, "id", "conditionId", "condition_id")),
            slug=slug,
            question=question,
            outcomes=tuple(parse_string_array(data.get("outcomes")) or ()),
            outcome_prices=tuple(to_decimal(p) for p in prices),
            clob_token_ids=tuple(parse_string_array(data.get("clobTokenIds")) or ()),
            best_bid=to_decimal(data.get("bestBid")),
            best_ask=to_decimal(data.get("bestAsk")),
            raw=data,
        )


# ============================================================================
# Kalshi payloads
# ============================================================================


@dataclass(frozen=True)
class KalshiBalance:
    """Account balance in dollars (converted from cents)."""

    balance: Decimal | None
    portfolio_value: Decimal | None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "KalshiBalance":
        data = _dict(data)
        balance_cents = to_decimal(data.get("balance"))
        portfolio_cents = to_decimal(data.get("portfolio_value"))
        return cls(
            balance=balance_cents / CENTS if balance_cents is not None else None,
            portfolio_value=portfolio_cents / CENTS if portfolio_cents is not None else None,
            raw=data,
        )


@dataclass(frozen=True)
class KalshiMarketPosition:
    """One ``market_positions`` row. Monetary fields stay in cents."""

    ticker: str
    position: Decimal
    market_exposure_cents: Decimal | None
    realized_pnl_cents: Decimal | None
    title: str | None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def side(self) -> Literal["yes", "no"]:
        return "yes" if self.position >= 0 else "no"

    @property
    def shares(self) -> Decimal:
        return abs(self.position)

    @property
    def token_id(self) -> str:
        return f"{self.ticker}:{self.side}"

    @classmethod
    def from_dict(cls, data: Any) -> "KalshiMarketPosition":
        data = _dict(data)
        title = as_str(first_present(data, "title", "market_title")) or None
        return cls(
            ticker=as_str(first_present(data, "ticker", "market_ticker", "market")),
            position=to_decimal(first_present(data, "position", "net_position")) or Decimal("0"),
            market_exposure_cents=to_decimal(data.get("market_exposure")),
            realized_pnl_cents=to_decimal(data.get("realized_pnl")),
            title=title,
            raw=data,
        )


@dataclass(frozen=True)
class KalshiOrder:
    """A resting Kalshi order."""

    order_id: str
    ticker: str
    side: str
    action: str
    yes_price_cents: Decimal | None
    no_price_cents: Decimal | None
    remaining_count: Decimal | None
    initial_count: Decimal | None
    status: str | None
    created_at: datetime | None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def token_id(self) -> str | None:
        if self.ticker and self.side in ("yes", "no"):
            return f"{self.ticker}:{self.side}"
        return None

    @property
    def display_side(self) -> str | None:
        """Side rendered as ``"BUY YES"`` / ``"SELL NO"``."""
        if self.action and self.side:
            return f"{self.action.upper()} {self.side.upper()}"
        return None

    @property
    def price(self) -> Decimal | None:
        cents = self.yes_price_cents if self.side == "yes" else self.no_price_cents
        return cents / CENTS if cents is not None else None

    @property
    def size(self) -> Decimal | None:
        return self.remaining_count if self.remaining_count is not None else self.initial_count

    @classmethod
    def from_dict(cls, data: Any) -> "KalshiOrder":
        data = _dict(data)
        status = data.get("status")
        return cls(
            order_id=as_str(first_present(data, "order_id", "id")),
            ticker=as_str(data.get("ticker")),
            side=as_str(data.get("side")).lower(),
            action=as_str(data.get("action")).lower(),
            yes_price_cents=to_decimal(data.get("yes_price")),
            no_price_cents=to_decimal(data.get("no_price")),
            remaining_count=to_decimal(data.get("remaining_count")),
            initial_count=to_decimal(data.get("initial_count")),
            status=status if isinstance(status, str) else None,
            created_at=parse_timestamp(data.get("created_time")),
            raw=data,
        )


@dataclass(frozen=True)
class KalshiMarket:
    """Kalshi market metadata. Quotes are in cents."""

    ticker: str
    title: str | None
    yes_sub_title: str | None
    yes_bid: Decimal | None
    yes_ask: Decimal | None
    no_bid: Decimal | None
    no_ask: Decimal | None
    last_price: Decimal | None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "KalshiMarket":
        data = _dict(data)
        return cls(
            ticker=as_str(data.get("ticker")),
            title=as_str(data.get("title")) or None,
            yes_sub_title=as_str(data.get("yes_sub_title")) or None,
            yes_bid=to_decimal(data.get("yes_bid")),
            yes_ask=to_decimal(data.get("yes_ask")),
            no_bid=to_decimal(data.get("no_bid")),
            no_ask=to_decimal(data.get("no_ask")),
            last_price=to_decimal(data.get("last_price")),
            raw=data,
        )


# ============================================================================
# Price history
# ============================================================================


@dataclass(frozen=True)
class PricePoint:
    """One sample of a price-history series."""

    ts: int
    price: Decimal

    @classmethod
    def from_dict(cls, data: Any) -> "PricePoint | None":
        """Build from ``{"t": ..., "p": ...}``; returns None when unusable."""
        data = _dict(data)
        ts = to_decimal(data.get("t"))
        price = to_decimal(data.get("p"))
        if ts is None or price is None:
            return None
        return cls(ts=int(ts), price=price)
