"""Market metadata resolution.

Resolvers turn raw token ids or tickers into question/outcome/price
metadata. Lookups are de-duplicated, split into upstream-sized batches and
run concurrently; a failing batch only blanks its own identifiers.
Nothing is cached between calls.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol, TypeVar

from trading_mirror.providers.gamma import PolymarketMarketDataClient
from trading_mirror.providers.kalshi import KalshiClient
from trading_mirror.providers.models import CENTS, GammaMarket, KalshiMarket, PricePoint

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 90

T = TypeVar("T")


@dataclass(frozen=True)
class OutcomeQuote:
    """Price data for one outcome of a market, in dollars per share."""

    label: str | None
    token_id: str
    price: Decimal | None = None
    best_bid: Decimal | None = None
    best_ask: Decimal | None = None

    @property
    def mark(self) -> Decimal | None:
        """Direct price, else the bid/ask mid, else whichever side exists."""
        if self.price is not None:
            return self.price
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        if self.best_bid is not None:
            return self.best_bid
        return self.best_ask


@dataclass(frozen=True)
class MarketInfo:
    """Resolved market metadata."""

    market_id: str
    question: str | None
    slug: str | None = None
    quotes: tuple[OutcomeQuote, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    def quote_for(self, token_id: str) -> OutcomeQuote | None:
        for quote in self.quotes:
            if quote.token_id == token_id:
                return quote
        return None

    @classmethod
    def from_gamma(cls, market: GammaMarket) -> "MarketInfo":
        quotes = []
        for idx, token_id in enumerate(market.clob_token_ids):
            quotes.append(
                OutcomeQuote(
                    label=market.outcomes[idx] if idx < len(market.outcomes) else None,
                    token_id=token_id,
                    price=market.outcome_prices[idx] if idx < len(market.outcome_prices) else None,
                    # Gamma's best bid/ask quote the first outcome only.
                    best_bid=market.best_bid if idx == 0 else None,
                    best_ask=market.best_ask if idx == 0 else None,
                )
            )
        return cls(
            market_id=market.market_id,
            question=market.question,
            slug=market.slug,
            quotes=tuple(quotes),
            raw=market.raw,
        )

    @classmethod
    def from_kalshi(cls, market: KalshiMarket) -> "MarketInfo":
        def dollars(cents: Decimal | None) -> Decimal | None:
            return cents / CENTS if cents is not None else None

        return cls(
            market_id=market.ticker,
            question=market.title or market.yes_sub_title,
            quotes=(
                OutcomeQuote(
                    label="YES",
                    token_id=f"{market.ticker}:yes",
                    best_bid=dollars(market.yes_bid),
                    best_ask=dollars(market.yes_ask),
                ),
                OutcomeQuote(
                    label="NO",
                    token_id=f"{market.ticker}:no",
                    best_bid=dollars(market.no_bid),
                    best_ask=dollars(market.no_ask),
                ),
            ),
            raw=market.raw,
        )


class PriceHistorySource(Protocol):
    """Source of historical price series for valuation."""

    async def price_history(
        self,
        token_id: str,
        *,
        start_ts: int,
        end_ts: int,
        fidelity: int | None = None,
    ) -> list[PricePoint]: ...


def dedupe(identifiers: Sequence[str]) -> list[str]:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for identifier in identifiers:
        value = identifier.strip()
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def _resolve_batches(
    identifiers: Sequence[str],
    *,
    batch_size: int,
    fetch: Callable[[list[str]], list[T]],
    index: Callable[[T], list[tuple[str, MarketInfo]]],
    source: str,
) -> dict[str, MarketInfo | None]:
    ids = dedupe(identifiers)
    resolved: dict[str, MarketInfo | None] = dict.fromkeys(ids)
    if not ids:
        return resolved

    batches = chunked(ids, batch_size)
    results = await asyncio.gather(
        *(asyncio.to_thread(fetch, batch) for batch in batches),
        return_exceptions=True,
    )
    for batch, result in zip(batches, results, strict=True):
        if isinstance(result, BaseException):
            logger.warning(
                "%s metadata batch of %d failed; leaving unresolved: %s", source, len(batch), result
            )
            continue
        wanted = set(batch)
        for market in result:
            for key, info in index(market):
                if key in wanted and resolved.get(key) is None:
                    resolved[key] = info

    missing = sum(1 for v in resolved.values() if v is None)
    if missing:
        logger.debug("%s metadata unresolved for %d of %d identifiers", source, missing, len(ids))
    return resolved


class PolymarketMarketResolver:
    """Resolves CLOB token ids via Gamma and serves CLOB price history."""

    def __init__(self, client: PolymarketMarketDataClient, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._client = client
        self._batch_size = batch_size

    async def resolve(self, token_ids: Sequence[str]) -> dict[str, MarketInfo | None]:
        """Map each token id to its market, or None when unavailable."""

        def index(market: GammaMarket) -> list[tuple[str, MarketInfo]]:
            info = MarketInfo.from_gamma(market)
            return [(token_id, info) for token_id in market.clob_token_ids]

        return await _resolve_batches(
            token_ids,
            batch_size=self._batch_size,
            fetch=self._client.get_markets_by_token_ids,
            index=index,
            source="Polymarket",
        )

    async def price_history(
        self,
        token_id: str,
        *,
        start_ts: int,
        end_ts: int,
        fidelity: int | None = None,
    ) -> list[PricePoint]:
        return await asyncio.to_thread(
            self._client.get_prices_history,
            token_id,
            start_ts=start_ts,
            end_ts=end_ts,
            fidelity=fidelity,
        )


class KalshiMarketResolver:
    """Resolves Kalshi tickers through the authenticated markets endpoint."""

    def __init__(self, client: KalshiClient, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._client = client
        self._batch_size = batch_size

    async def resolve(self, tickers: Sequence[str]) -> dict[str, MarketInfo | None]:
        """Map each ticker to its market, or None when unavailable."""

        def index(market: KalshiMarket) -> list[tuple[str, MarketInfo]]:
            if not market.ticker:
                return []
            return [(market.ticker, MarketInfo.from_kalshi(market))]

        return await _resolve_batches(
            tickers,
            batch_size=self._batch_size,
            fetch=self._client.get_markets_by_tickers,
            index=index,
            source="Kalshi",
        )
