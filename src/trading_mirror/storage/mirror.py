"""Mirror store: the persistence boundary of the sync engine.

Every public method opens its own transaction. ``reconcile`` writes all
current-state and snapshot rows of one sync inside a single transaction,
so readers see either the previous complete mirror or the new one.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from trading_mirror.storage.database import session_scope
from trading_mirror.storage.repos import (
    RUN_STATUS_ERROR,
    RUN_STATUS_SUCCESS,
    BalanceDTO,
    BalanceRepository,
    OrderDTO,
    OrderRepository,
    PortfolioSnapshotDTO,
    PositionDTO,
    PositionRepository,
    SnapshotRepository,
    SyncRunDTO,
    SyncRunRepository,
    TradingActionDTO,
    TradingActionRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

STALE_RUN_MESSAGE = "stale run reaped"

CurrentKind = Literal["positions", "orders"]
SnapshotKind = Literal["balances", "positions", "portfolio"]


@dataclass
class MirrorState:
    """A fully normalized account state ready to reconcile."""

    balances: list[BalanceDTO] = field(default_factory=list)
    positions: list[PositionDTO] = field(default_factory=list)
    orders: list[OrderDTO] = field(default_factory=list)
    cash_balance: Decimal | None = None
    positions_value: Decimal | None = None
    total_value: Decimal | None = None
    meta: dict[str, Any] = field(default_factory=dict)


class MirrorStore:
    """Mirror store over an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def start_run(self, user_id: str, provider: str, *, now: datetime | None = None) -> SyncRunDTO:
        """Durably record a ``running`` sync run before any external call."""
        started_at = now or datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            run = await SyncRunRepository(session).create(
                run_id=str(uuid.uuid4()),
                user_id=user_id,
                provider=provider,
                started_at=started_at,
            )
        logger.info("Started %s sync run %s for user %s", provider, run.id, user_id)
        return run

    async def finish_run(
        self,
        run_id: str,
        *,
        status: Literal["success", "error"],
        error: str | None = None,
        meta: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> SyncRunDTO | None:
        """Close a run exactly once; a run that already left ``running`` is left as is."""
        async with session_scope(self._session_factory) as session:
            repo = SyncRunRepository(session)
            changed = await repo.finish(
                run_id,
                status=status,
                error=error,
                meta=meta,
                finished_at=now or datetime.now(UTC),
            )
            if not changed:
                logger.warning("Sync run %s was not running; leaving it unchanged", run_id)
            return await repo.get(run_id)

    async def get_run(self, run_id: str) -> SyncRunDTO | None:
        async with session_scope(self._session_factory) as session:
            return await SyncRunRepository(session).get(run_id)

    async def latest_run(self, user_id: str, provider: str) -> SyncRunDTO | None:
        async with session_scope(self._session_factory) as session:
            return await SyncRunRepository(session).get_latest(user_id, provider)

    async def latest_successful_run(self, user_id: str, provider: str) -> SyncRunDTO | None:
        async with session_scope(self._session_factory) as session:
            return await SyncRunRepository(session).get_latest(
                user_id, provider, status=RUN_STATUS_SUCCESS
            )

    async def reap_stale_runs(self, older_than: timedelta, *, now: datetime | None = None) -> list[str]:
        """Mark runs stuck in ``running`` for longer than ``older_than`` as errors."""
        now = now or datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            reaped = await SyncRunRepository(session).reap_stale(
                started_before=now - older_than,
                message=STALE_RUN_MESSAGE,
                now=now,
            )
        if reaped:
            logger.warning("Reaped %d stale sync runs", len(reaped))
        return reaped

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, run: SyncRunDTO, state: MirrorState, *, now: datetime | None = None) -> None:
        """Apply one sync's state: balance upsert, position/order replace, snapshots.

        All writes share one transaction; on any failure nothing is applied.
        """
        now = now or datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            await self._reconcile(session, run, state, now)
        logger.info(
            "Reconciled %s mirror for user %s: %d balances, %d positions, %d orders",
            run.provider,
            run.user_id,
            len(state.balances),
            len(state.positions),
            len(state.orders),
        )

    async def _reconcile(
        self, session: AsyncSession, run: SyncRunDTO, state: MirrorState, now: datetime
    ) -> None:
        user_id, provider = run.user_id, run.provider
        await BalanceRepository(session).upsert_many(user_id, provider, state.balances, now=now)
        await PositionRepository(session).replace(user_id, provider, state.positions, now=now)
        await OrderRepository(session).replace(user_id, provider, state.orders, now=now)

        snapshots = SnapshotRepository(session)
        await snapshots.add_balances(run.id, user_id, provider, state.balances, now=now)
        await snapshots.add_positions(run.id, user_id, provider, state.positions, now=now)
        await snapshots.add_portfolio(
            PortfolioSnapshotDTO(
                run_id=run.id,
                user_id=user_id,
                provider=provider,
                cash_balance=state.cash_balance,
                positions_value=state.positions_value,
                total_value=state.total_value,
                captured_at=now,
                raw={
                    "position_count": len(state.positions),
                    "order_count": len(state.orders),
                },
            )
        )

    async def replace_current(
        self,
        user_id: str,
        provider: str,
        kind: CurrentKind,
        rows: Sequence[PositionDTO] | Sequence[OrderDTO],
        *,
        now: datetime | None = None,
    ) -> int:
        """Delete all current rows of ``kind`` for the account, then insert ``rows``."""
        now = now or datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            if kind == "positions":
                return await PositionRepository(session).replace(user_id, provider, rows, now=now)  # type: ignore[arg-type]
            if kind == "orders":
                return await OrderRepository(session).replace(user_id, provider, rows, now=now)  # type: ignore[arg-type]
        raise ValueError(f"Unknown current-state kind: {kind}")

    async def append_snapshot(
        self,
        run: SyncRunDTO,
        kind: SnapshotKind,
        rows: Sequence[BalanceDTO] | Sequence[PositionDTO] | Sequence[PortfolioSnapshotDTO],
        *,
        now: datetime | None = None,
    ) -> int:
        """Insert snapshot rows for ``run``. Insert-only; retries may duplicate rows."""
        now = now or datetime.now(UTC)
        async with session_scope(self._session_factory) as session:
            repo = SnapshotRepository(session)
            if kind == "balances":
                return await repo.add_balances(run.id, run.user_id, run.provider, rows, now=now)  # type: ignore[arg-type]
            if kind == "positions":
                return await repo.add_positions(run.id, run.user_id, run.provider, rows, now=now)  # type: ignore[arg-type]
            if kind == "portfolio":
                for row in rows:
                    await repo.add_portfolio(row)  # type: ignore[arg-type]
                return len(rows)
        raise ValueError(f"Unknown snapshot kind: {kind}")

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def list_balances(self, user_id: str, provider: str) -> list[BalanceDTO]:
        async with session_scope(self._session_factory) as session:
            return await BalanceRepository(session).list_current(user_id, provider)

    async def list_positions(
        self, user_id: str, provider: str, *, limit: int | None = None
    ) -> list[PositionDTO]:
        async with session_scope(self._session_factory) as session:
            return await PositionRepository(session).list_current(user_id, provider, limit=limit)

    async def positions_value(self, user_id: str, provider: str) -> Decimal:
        """Total value of all current positions, independent of any list limit."""
        async with session_scope(self._session_factory) as session:
            return await PositionRepository(session).total_value(user_id, provider)

    async def list_orders(self, user_id: str, provider: str) -> list[OrderDTO]:
        async with session_scope(self._session_factory) as session:
            return await OrderRepository(session).list_current(user_id, provider)

    async def latest_portfolio_snapshot(self, user_id: str, provider: str) -> PortfolioSnapshotDTO | None:
        async with session_scope(self._session_factory) as session:
            return await SnapshotRepository(session).latest_portfolio(user_id, provider)

    async def portfolio_snapshot_series(
        self,
        user_id: str,
        provider: str,
        *,
        since: datetime | None = None,
        limit: int = 80,
    ) -> list[PortfolioSnapshotDTO]:
        async with session_scope(self._session_factory) as session:
            return await SnapshotRepository(session).portfolio_series(
                user_id, provider, since=since, limit=limit
            )

    # ------------------------------------------------------------------
    # Trading action log
    # ------------------------------------------------------------------

    async def log_action(
        self,
        user_id: str,
        provider: str,
        action_type: str,
        *,
        request: dict[str, Any] | None = None,
        response: dict[str, Any] | None = None,
    ) -> TradingActionDTO:
        async with session_scope(self._session_factory) as session:
            return await TradingActionRepository(session).append(
                TradingActionDTO(
                    user_id=user_id,
                    provider=provider,
                    action_type=action_type,
                    request=request or {},
                    response=response or {},
                )
            )

    async def list_recent_actions(
        self, user_id: str, provider: str, *, limit: int = 30
    ) -> list[TradingActionDTO]:
        async with session_scope(self._session_factory) as session:
            return await TradingActionRepository(session).list_recent(user_id, provider, limit=limit)


__all__ = [
    "RUN_STATUS_ERROR",
    "RUN_STATUS_SUCCESS",
    "STALE_RUN_MESSAGE",
    "MirrorState",
    "MirrorStore",
]
