"""Sync engine - orchestration, normalization, metadata resolution and leases."""

from trading_mirror.sync.leases import InMemorySyncLeaseStore, RedisSyncLeaseStore, SyncLeaseStore, lease_key
from trading_mirror.sync.normalize import normalize_kalshi, normalize_polymarket
from trading_mirror.sync.orchestrator import SYNC_IN_PROGRESS, SyncOrchestrator, SyncOutcome
from trading_mirror.sync.resolver import (
    KalshiMarketResolver,
    MarketInfo,
    OutcomeQuote,
    PolymarketMarketResolver,
    PriceHistorySource,
)

__all__ = [
    "SYNC_IN_PROGRESS",
    "InMemorySyncLeaseStore",
    "KalshiMarketResolver",
    "MarketInfo",
    "OutcomeQuote",
    "PolymarketMarketResolver",
    "PriceHistorySource",
    "RedisSyncLeaseStore",
    "SyncLeaseStore",
    "SyncOrchestrator",
    "SyncOutcome",
    "lease_key",
    "normalize_kalshi",
    "normalize_polymarket",
]
