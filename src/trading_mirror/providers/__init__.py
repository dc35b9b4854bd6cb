"""Provider adapters - authenticated clients for Polymarket and Kalshi."""

from trading_mirror.providers.http import (
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    RateLimiter,
    RetryError,
    with_retry,
)
from trading_mirror.providers.models import (
    KALSHI_CASH_ASSET,
    POLYGON_USDC_ADDRESS,
    TradingProvider,
    provider_order,
)

__all__ = [
    "KALSHI_CASH_ASSET",
    "POLYGON_USDC_ADDRESS",
    "ProviderAuthError",
    "ProviderError",
    "ProviderTransientError",
    "RateLimiter",
    "RetryError",
    "TradingProvider",
    "provider_order",
    "with_retry",
]
