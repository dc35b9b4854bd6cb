"""Sync orchestrator: pulls provider state and reconciles the mirror.

One sync of one account runs as:

1. take the per-account lease (if a lease store is configured),
2. durably open a ``running`` sync run,
3. fetch balances, positions and orders concurrently,
4. resolve market metadata for the held instruments,
5. normalize and reconcile the mirror in one transaction,
6. close the run as ``success`` or ``error``.

Any failure before reconciliation leaves the mirror untouched. Orders are
best-effort: a failing orders fetch degrades to an empty order list.
Callers always receive a ``SyncOutcome``; adapter exceptions never escape.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from trading_mirror.credentials import (
    CredentialStore,
    KalshiCredentials,
    PolymarketCredentials,
    ProviderCredentials,
    connected_providers,
    lookup_credentials,
)
from trading_mirror.providers.models import ProviderPreference, TradingProvider, provider_order
from trading_mirror.storage.mirror import MirrorState, MirrorStore
from trading_mirror.sync.leases import SyncLeaseStore, lease_key
from trading_mirror.sync.normalize import (
    kalshi_position_tickers,
    normalize_kalshi,
    normalize_polymarket,
    polymarket_position_tokens,
)
from trading_mirror.sync.resolver import DEFAULT_BATCH_SIZE, KalshiMarketResolver, PolymarketMarketResolver

if TYPE_CHECKING:
    from trading_mirror.providers.factory import ProviderClientFactory
    from trading_mirror.storage.repos import SyncRunDTO

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL_SECONDS = 120
DEFAULT_STALE_RUN_TIMEOUT_SECONDS = 900
SYNC_IN_PROGRESS = "sync already in progress"


@dataclass
class SyncOutcome:
    """Structured result of a sync request.

    ``provider`` is None when no account is connected. ``skipped`` marks a
    sync that did not start because another one holds the account lease.
    """

    provider: TradingProvider | None
    run: SyncRunDTO | None = None
    error: str | None = None
    skipped: bool = False
    connected: bool = True
    attempts: list[SyncOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.provider is not None and self.error is None and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value if self.provider else None,
            "run_id": self.run.id if self.run else None,
            "status": self.run.status if self.run else None,
            "error": self.error,
            "skipped": self.skipped,
            "attempts": [
                {"provider": a.provider.value if a.provider else None, "error": a.error}
                for a in self.attempts
            ],
        }


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class SyncOrchestrator:
    """Drives syncs per (user, provider) and the provider fallback policy."""

    def __init__(
        self,
        store: MirrorStore,
        credentials: CredentialStore,
        clients: ProviderClientFactory,
        market_data: PolymarketMarketResolver,
        *,
        leases: SyncLeaseStore | None = None,
        lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
        stale_run_timeout_seconds: int = DEFAULT_STALE_RUN_TIMEOUT_SECONDS,
        metadata_batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Mirror store to reconcile into.
            credentials: Credential lookup; ``None`` means "not connected".
            clients: Factory for per-account provider adapters.
            market_data: Polymarket metadata resolver (public, shared).
            leases: Optional per-account lease store.
            lease_ttl_seconds: TTL of a sync lease.
            stale_run_timeout_seconds: Age after which ``running`` runs are reaped.
            metadata_batch_size: Identifiers per Kalshi metadata request.
        """
        self._store = store
        self._credentials = credentials
        self._clients = clients
        self._market_data = market_data
        self._leases = leases
        self._lease_ttl_seconds = lease_ttl_seconds
        self._stale_run_timeout = timedelta(seconds=stale_run_timeout_seconds)
        self._metadata_batch_size = metadata_batch_size

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def sync_now(self, user_id: str, preferred: ProviderPreference = "auto") -> SyncOutcome:
        """Sync the user's preferred account, falling back to the other one."""
        connected = await connected_providers(self._credentials, user_id)
        return await self.sync_any(
            user_id,
            preferred,
            polymarket_connected=connected[TradingProvider.POLYMARKET],
            kalshi_connected=connected[TradingProvider.KALSHI],
        )

    async def sync_any(
        self,
        user_id: str,
        preferred: ProviderPreference = "auto",
        *,
        polymarket_connected: bool,
        kalshi_connected: bool,
    ) -> SyncOutcome:
        """Try connected providers in preference order until one succeeds.

        Returns the first successful outcome, the last failed one when all
        attempts failed, or ``SyncOutcome(provider=None)`` when nothing is
        connected.
        """
        candidates = provider_order(
            preferred,
            polymarket_connected=polymarket_connected,
            kalshi_connected=kalshi_connected,
        )
        if not candidates:
            logger.info("No trading account connected for user %s", user_id)
            return SyncOutcome(provider=None, connected=False)

        attempts: list[SyncOutcome] = []
        for provider in candidates:
            outcome = await self.sync_provider(user_id, provider)
            attempts.append(outcome)
            if outcome.ok or outcome.skipped:
                break
            logger.warning(
                "%s sync failed for user %s (%s); trying next provider",
                provider,
                user_id,
                outcome.error,
            )

        final = attempts[-1]
        final.attempts = attempts
        return final

    async def sync_provider(self, user_id: str, provider: TradingProvider) -> SyncOutcome:
        """Run one sync of one account and return its outcome."""
        credentials = await lookup_credentials(self._credentials, user_id, provider)
        if credentials is None:
            return SyncOutcome(
                provider=provider,
                error=f"{provider} account not connected",
                connected=False,
            )

        key = lease_key(user_id, provider)
        token: str | None = None
        if self._leases is not None:
            try:
                token = await self._leases.acquire(key, self._lease_ttl_seconds)
            except Exception as e:
                logger.warning("Could not acquire sync lease %s: %s", key, e)
                return SyncOutcome(provider=provider, error=f"sync lease unavailable: {_error_message(e)}")
            if token is None:
                logger.info("Skipping %s sync for user %s: %s", provider, user_id, SYNC_IN_PROGRESS)
                return SyncOutcome(provider=provider, error=SYNC_IN_PROGRESS, skipped=True)

        try:
            return await self._run(user_id, provider, credentials)
        finally:
            if self._leases is not None and token is not None:
                try:
                    await self._leases.release(key, token)
                except Exception as e:
                    logger.warning("Could not release sync lease %s: %s", key, e)

    async def sweep_stale_runs(self) -> list[str]:
        """Mark runs stuck in ``running`` past the timeout as errors."""
        return await self._store.reap_stale_runs(self._stale_run_timeout)

    # ------------------------------------------------------------------
    # One sync
    # ------------------------------------------------------------------

    async def _run(
        self, user_id: str, provider: TradingProvider, credentials: ProviderCredentials
    ) -> SyncOutcome:
        try:
            run = await self._store.start_run(user_id, provider)
        except Exception as e:
            logger.exception("Could not open %s sync run for user %s", provider, user_id)
            return SyncOutcome(provider=provider, error=_error_message(e))

        try:
            state = await self._fetch(provider, credentials)
            await self._store.reconcile(run, state)
        except Exception as e:
            message = _error_message(e)
            logger.warning("%s sync run %s failed: %s", provider, run.id, message)
            closed = await self._close(run, status="error", error=message, meta={})
            return SyncOutcome(provider=provider, run=closed, error=message)

        closed = await self._close(run, status="success", error=None, meta=state.meta)
        logger.info("%s sync run %s succeeded for user %s", provider, run.id, user_id)
        return SyncOutcome(provider=provider, run=closed)

    async def _close(
        self,
        run: SyncRunDTO,
        *,
        status: str,
        error: str | None,
        meta: dict[str, Any],
    ) -> SyncRunDTO:
        try:
            closed = await self._store.finish_run(run.id, status=status, error=error, meta=meta)  # type: ignore[arg-type]
        except Exception:
            logger.exception("Could not close sync run %s", run.id)
            return run
        return closed or run

    async def _fetch(self, provider: TradingProvider, credentials: ProviderCredentials) -> MirrorState:
        if provider is TradingProvider.POLYMARKET:
            if not isinstance(credentials, PolymarketCredentials):
                raise TypeError("Polymarket sync requires PolymarketCredentials")
            return await self._fetch_polymarket(credentials)
        if not isinstance(credentials, KalshiCredentials):
            raise TypeError("Kalshi sync requires KalshiCredentials")
        return await self._fetch_kalshi(credentials)

    async def _fetch_polymarket(self, credentials: PolymarketCredentials) -> MirrorState:
        client = self._clients.polymarket(credentials)
        try:
            balances, orders = await asyncio.gather(
                asyncio.to_thread(client.get_balances),
                asyncio.to_thread(client.get_orders),
                return_exceptions=True,
            )
            if isinstance(balances, BaseException):
                raise balances
            orders, orders_error = self._degrade_orders(orders)

            markets = await self._market_data.resolve(polymarket_position_tokens(balances))
            state = normalize_polymarket(balances, markets, orders)
        finally:
            client.close()
        if orders_error:
            state.meta["orders_error"] = orders_error
        return state

    async def _fetch_kalshi(self, credentials: KalshiCredentials) -> MirrorState:
        client = self._clients.kalshi(credentials)
        try:
            balance, positions, orders = await asyncio.gather(
                asyncio.to_thread(client.get_balance),
                asyncio.to_thread(client.get_positions),
                asyncio.to_thread(client.get_orders),
                return_exceptions=True,
            )
            if isinstance(balance, BaseException):
                raise balance
            if isinstance(positions, BaseException):
                raise positions
            orders, orders_error = self._degrade_orders(orders)

            resolver = KalshiMarketResolver(client, batch_size=self._metadata_batch_size)
            markets = await resolver.resolve(kalshi_position_tickers(positions))
            state = normalize_kalshi(balance, positions, markets, orders)
        finally:
            client.close()
        if orders_error:
            state.meta["orders_error"] = orders_error
        return state

    @staticmethod
    def _degrade_orders(orders: Any) -> tuple[list[Any], str | None]:
        if isinstance(orders, BaseException):
            message = _error_message(orders)
            logger.warning("Orders fetch failed; mirroring no resting orders this sync: %s", message)
            return [], message
        return orders, None
