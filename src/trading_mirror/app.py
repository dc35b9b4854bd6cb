"""Application wiring for the trading mirror.

``MirrorApp`` builds every component from ``Settings`` and owns the shared
resources (database engine, Redis connection, public market-data client).

Example:
    ```python
    async with MirrorApp(settings) as app:
        outcome = await app.orchestrator.sync_now(settings.local_user_id)
        summary = await app.reconstructor.get_portfolio(settings.local_user_id)
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from trading_mirror.config import Settings, get_settings
from trading_mirror.credentials import CredentialStore, SettingsCredentialStore
from trading_mirror.execution import TradingService
from trading_mirror.providers.factory import SettingsClientFactory
from trading_mirror.providers.models import TradingProvider
from trading_mirror.storage.database import DatabaseManager
from trading_mirror.storage.mirror import MirrorStore
from trading_mirror.sync.leases import RedisSyncLeaseStore
from trading_mirror.sync.orchestrator import SyncOrchestrator
from trading_mirror.sync.resolver import PolymarketMarketResolver
from trading_mirror.valuation.reconstructor import PortfolioReconstructor

if TYPE_CHECKING:
    from types import TracebackType

    from trading_mirror.providers.gamma import PolymarketMarketDataClient

logger = logging.getLogger(__name__)


class MirrorApp:
    """Owns the resources and services of one process."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        credentials: CredentialStore | None = None,
        use_redis: bool = True,
    ) -> None:
        """Initialize the application.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            credentials: Credential store. Defaults to the settings-backed local user store.
            use_redis: Take per-account sync leases in Redis.
        """
        self._settings = settings or get_settings()
        self._credentials = credentials or SettingsCredentialStore(self._settings)
        self._use_redis = use_redis

        self._db_manager: DatabaseManager | None = None
        self._redis: Redis | None = None
        self._market_data_client: PolymarketMarketDataClient | None = None
        self._store: MirrorStore | None = None
        self._orchestrator: SyncOrchestrator | None = None
        self._reconstructor: PortfolioReconstructor | None = None
        self._trading: TradingService | None = None

    async def __aenter__(self) -> MirrorApp:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    @property
    def db_manager(self) -> DatabaseManager:
        if self._db_manager is None:
            raise RuntimeError("MirrorApp is not started")
        return self._db_manager

    @property
    def store(self) -> MirrorStore:
        if self._store is None:
            raise RuntimeError("MirrorApp is not started")
        return self._store

    @property
    def orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("MirrorApp is not started")
        return self._orchestrator

    @property
    def reconstructor(self) -> PortfolioReconstructor:
        if self._reconstructor is None:
            raise RuntimeError("MirrorApp is not started")
        return self._reconstructor

    @property
    def trading(self) -> TradingService:
        if self._trading is None:
            raise RuntimeError("MirrorApp is not started")
        return self._trading

    async def start(self) -> None:
        """Create shared resources and wire the services."""
        settings = self._settings

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)
        self._store = MirrorStore(self._db_manager.session_factory)

        leases = None
        if self._use_redis:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
            leases = RedisSyncLeaseStore(self._redis)

        clients = SettingsClientFactory(settings)
        self._market_data_client = clients.market_data()
        market_data = PolymarketMarketResolver(
            self._market_data_client, batch_size=settings.sync.metadata_batch_size
        )

        self._orchestrator = SyncOrchestrator(
            self._store,
            self._credentials,
            clients,
            market_data,
            leases=leases,
            lease_ttl_seconds=settings.sync.lease_ttl_seconds,
            stale_run_timeout_seconds=settings.sync.stale_run_timeout_seconds,
            metadata_batch_size=settings.sync.metadata_batch_size,
        )
        self._reconstructor = PortfolioReconstructor(
            self._store,
            self._credentials,
            {TradingProvider.POLYMARKET: market_data},
            pnl_top_n=settings.valuation.pnl_top_n,
            chart_top_n=settings.valuation.chart_top_n,
            stale_after_seconds=settings.valuation.stale_after_seconds,
        )
        self._trading = TradingService(self._store, self._credentials, clients, self._orchestrator)
        logger.info("Trading mirror initialized")

    async def stop(self) -> None:
        """Release shared resources."""
        if self._market_data_client:
            self._market_data_client.close()
            self._market_data_client = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._store = None
        self._orchestrator = None
        self._reconstructor = None
        self._trading = None
        logger.debug("Resources cleaned up")
