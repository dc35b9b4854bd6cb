"""Thin order pass-through with an audit trail.

Every placement or cancellation appends an ``*_attempt`` row to the trading
action log before calling the provider, then an ``*_success`` or
``*_error`` row. A successful action triggers a follow-up sync so the
mirror reflects the new resting orders.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from trading_mirror.credentials import (
    CredentialStore,
    KalshiCredentials,
    PolymarketCredentials,
    lookup_credentials,
)
from trading_mirror.providers.models import TradingProvider

if TYPE_CHECKING:
    from trading_mirror.providers.factory import ProviderClientFactory
    from trading_mirror.storage.mirror import MirrorStore
    from trading_mirror.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

POLYMARKET_SIDES = frozenset({"BUY", "SELL"})
KALSHI_SIDES = frozenset({"yes", "no"})
KALSHI_ACTIONS = frozenset({"buy", "sell"})
KALSHI_TIME_IN_FORCE = frozenset({"fill_or_kill", "good_till_canceled", "immediate_or_cancel"})


class TradingError(Exception):
    """Raised when an order action cannot be performed."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


def build_kalshi_order(
    *,
    ticker: str,
    side: str,
    action: str,
    count: int,
    price_cents: int,
    time_in_force: str = "good_till_canceled",
    client_order_id: str | None = None,
) -> dict[str, Any]:
    """Validate inputs and build a Kalshi limit order payload.

    Raises:
        ValueError: If any field is out of range.
    """
    ticker = ticker.strip()
    if not ticker:
        raise ValueError("ticker is required")
    side = side.lower()
    if side not in KALSHI_SIDES:
        raise ValueError(f"side must be one of {sorted(KALSHI_SIDES)}")
    action = action.lower()
    if action not in KALSHI_ACTIONS:
        raise ValueError(f"action must be one of {sorted(KALSHI_ACTIONS)}")
    if count < 1:
        raise ValueError("count must be at least 1")
    if not 1 <= price_cents <= 99:
        raise ValueError("price_cents must be between 1 and 99")
    if time_in_force not in KALSHI_TIME_IN_FORCE:
        raise ValueError(f"time_in_force must be one of {sorted(KALSHI_TIME_IN_FORCE)}")

    return {
        "ticker": ticker,
        "side": side,
        "action": action,
        "count": count,
        "type": "limit",
        "client_order_id": client_order_id or str(uuid.uuid4()),
        "time_in_force": time_in_force,
        f"{side}_price": price_cents,
    }


def validate_polymarket_order(*, token_id: str, side: str, price: Decimal, size: Decimal) -> str:
    """Validate a Polymarket limit order and return the normalized side."""
    if not token_id.strip():
        raise ValueError("token_id is required")
    side = side.upper()
    if side not in POLYMARKET_SIDES:
        raise ValueError(f"side must be one of {sorted(POLYMARKET_SIDES)}")
    if not Decimal("0") < price < Decimal("1"):
        raise ValueError("price must be between 0 and 1 (exclusive)")
    if size <= 0:
        raise ValueError("size must be positive")
    return side


class TradingService:
    """Places and cancels orders on behalf of a user."""

    def __init__(
        self,
        store: MirrorStore,
        credentials: CredentialStore,
        clients: ProviderClientFactory,
        orchestrator: SyncOrchestrator | None = None,
        *,
        sync_after: bool = True,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._clients = clients
        self._orchestrator = orchestrator
        self._sync_after = sync_after

    async def place_polymarket_order(
        self,
        user_id: str,
        *,
        token_id: str,
        side: str,
        price: Decimal,
        size: Decimal,
        tick_size: str = "0.01",
        neg_risk: bool = False,
    ) -> dict[str, Any]:
        side = validate_polymarket_order(token_id=token_id, side=side, price=price, size=size)
        credentials = await self._require(user_id, TradingProvider.POLYMARKET)
        if not isinstance(credentials, PolymarketCredentials):
            raise TradingError("Polymarket orders require PolymarketCredentials", provider=TradingProvider.POLYMARKET)

        request = {
            "token_id": token_id,
            "side": side,
            "price": str(price),
            "size": str(size),
            "tick_size": tick_size,
            "neg_risk": neg_risk,
        }
        return await self._perform(
            user_id,
            TradingProvider.POLYMARKET,
            "place_order",
            request,
            lambda: self._clients.polymarket(credentials),
            lambda client: client.place_order(
                token_id=token_id,
                side=side,
                price=price,
                size=size,
                tick_size=tick_size,
                neg_risk=neg_risk,
            ),
        )

    async def place_kalshi_order(
        self,
        user_id: str,
        *,
        ticker: str,
        side: str,
        action: str,
        count: int,
        price_cents: int,
        time_in_force: str = "good_till_canceled",
        client_order_id: str | None = None,
    ) -> dict[str, Any]:
        payload = build_kalshi_order(
            ticker=ticker,
            side=side,
            action=action,
            count=count,
            price_cents=price_cents,
            time_in_force=time_in_force,
            client_order_id=client_order_id,
        )
        credentials = await self._require(user_id, TradingProvider.KALSHI)
        if not isinstance(credentials, KalshiCredentials):
            raise TradingError("Kalshi orders require KalshiCredentials", provider=TradingProvider.KALSHI)

        return await self._perform(
            user_id,
            TradingProvider.KALSHI,
            "place_order",
            payload,
            lambda: self._clients.kalshi(credentials),
            lambda client: client.place_order(payload),
        )

    async def cancel_order(self, user_id: str, provider: TradingProvider, order_id: str) -> dict[str, Any]:
        if not order_id.strip():
            raise ValueError("order_id is required")
        credentials = await self._require(user_id, provider)

        def connect() -> Any:
            if isinstance(credentials, PolymarketCredentials):
                return self._clients.polymarket(credentials)
            return self._clients.kalshi(credentials)

        return await self._perform(
            user_id,
            provider,
            "cancel_order",
            {"order_id": order_id},
            connect,
            lambda client: client.cancel_order(order_id),
        )

    async def _require(self, user_id: str, provider: TradingProvider) -> PolymarketCredentials | KalshiCredentials:
        credentials = await lookup_credentials(self._credentials, user_id, provider)
        if credentials is None:
            raise TradingError(f"{provider} account not connected", provider=provider)
        return credentials

    async def _perform(
        self,
        user_id: str,
        provider: TradingProvider,
        action: str,
        request: dict[str, Any],
        connect: Callable[[], Any],
        call: Callable[[Any], dict[str, Any]],
    ) -> dict[str, Any]:
        """Build the adapter, run ``call`` on it, and log attempt and outcome.

        Adapter construction sits inside the logged path so a bad key or
        PEM is recorded as an ``*_error`` action like any provider failure.
        """
        await self._store.log_action(user_id, provider, f"{action}_attempt", request=request)
        try:
            client = connect()
            try:
                response = await asyncio.to_thread(call, client)
            finally:
                client.close()
        except Exception as e:
            logger.warning("%s %s failed for user %s: %s", provider, action, user_id, e)
            await self._store.log_action(
                user_id, provider, f"{action}_error", request=request, response={"error": str(e)}
            )
            raise TradingError(f"{provider} {action} failed: {e}", provider=provider) from e

        await self._store.log_action(user_id, provider, f"{action}_success", request=request, response=response)
        logger.info("%s %s succeeded for user %s", provider, action, user_id)

        if self._sync_after and self._orchestrator is not None:
            outcome = await self._orchestrator.sync_provider(user_id, provider)
            if not outcome.ok:
                logger.warning("Follow-up %s sync after %s did not succeed: %s", provider, action, outcome.error)
        return response
