"""Repository pattern implementations for the trading mirror.

DTOs here double as the canonical Balance/Position/Order shapes that
normalization produces and reconciliation persists.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from trading_mirror.storage.models import (
    BalanceCurrentModel,
    BalanceSnapshotModel,
    OrderCurrentModel,
    PortfolioSnapshotModel,
    PositionCurrentModel,
    PositionSnapshotModel,
    SyncRunModel,
    TradingActionModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

RUN_STATUS_RUNNING = "running"
RUN_STATUS_SUCCESS = "success"
RUN_STATUS_ERROR = "error"


def _dump(payload: dict[str, Any] | None) -> str:
    return json.dumps(payload or {}, default=str, sort_keys=True)


def _load(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        logger.warning("Discarding undecodable JSON column value")
        return {}
    return value if isinstance(value, dict) else {"value": value}


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


@dataclass
class SyncRunDTO:
    """Data transfer object for sync runs."""

    id: str
    user_id: str
    provider: str
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, model: SyncRunModel) -> SyncRunDTO:
        return cls(
            id=model.id,
            user_id=model.user_id,
            provider=model.provider,
            status=model.status,
            started_at=_as_utc(model.started_at),  # type: ignore[arg-type]
            finished_at=_as_utc(model.finished_at),
            error=model.error,
            meta=_load(model.meta_json),
        )


@dataclass
class BalanceDTO:
    """Canonical balance row."""

    asset_id: str
    balance: Decimal | None
    raw: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: BalanceCurrentModel) -> BalanceDTO:
        return cls(
            asset_id=model.asset_id,
            balance=model.balance,
            raw=_load(model.raw_json),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class PositionDTO:
    """Canonical open position row."""

    token_id: str
    market_question: str
    shares: Decimal
    market_id: str | None = None
    market_slug: str | None = None
    outcome: str | None = None
    avg_price: Decimal | None = None
    current_price: Decimal | None = None
    value: Decimal | None = None
    pnl: Decimal | None = None
    pnl_pct: Decimal | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: PositionCurrentModel) -> PositionDTO:
        return cls(
            token_id=model.token_id,
            market_question=model.market_question,
            shares=model.shares,
            market_id=model.market_id,
            market_slug=model.market_slug,
            outcome=model.outcome,
            avg_price=model.avg_price,
            current_price=model.current_price,
            value=model.value,
            pnl=model.pnl,
            pnl_pct=model.pnl_pct,
            raw=_load(model.raw_json),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class OrderDTO:
    """Canonical resting order row."""

    order_id: str
    token_id: str | None = None
    side: str | None = None
    price: Decimal | None = None
    size: Decimal | None = None
    status: str | None = None
    created_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    last_seen_at: datetime | None = None

    @classmethod
    def from_model(cls, model: OrderCurrentModel) -> OrderDTO:
        return cls(
            order_id=model.order_id,
            token_id=model.token_id,
            side=model.side,
            price=model.price,
            size=model.size,
            status=model.status,
            created_at=_as_utc(model.created_at),
            raw=_load(model.raw_json),
            last_seen_at=_as_utc(model.last_seen_at),
        )


@dataclass
class PortfolioSnapshotDTO:
    """Portfolio totals captured at sync time."""

    run_id: str
    user_id: str
    provider: str
    cash_balance: Decimal | None
    positions_value: Decimal | None
    total_value: Decimal | None
    captured_at: datetime
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, model: PortfolioSnapshotModel) -> PortfolioSnapshotDTO:
        return cls(
            run_id=model.run_id,
            user_id=model.user_id,
            provider=model.provider,
            cash_balance=model.cash_balance,
            positions_value=model.positions_value,
            total_value=model.total_value,
            captured_at=_as_utc(model.captured_at),  # type: ignore[arg-type]
            raw=_load(model.raw_json),
        )


@dataclass
class TradingActionDTO:
    """Data transfer object for the trading action log."""

    user_id: str
    provider: str
    action_type: str
    request: dict[str, Any] = field(default_factory=dict)
    response: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, model: TradingActionModel) -> TradingActionDTO:
        return cls(
            id=model.id,
            user_id=model.user_id,
            provider=model.provider,
            action_type=model.action_type,
            request=_load(model.request_json),
            response=_load(model.response_json),
            created_at=_as_utc(model.created_at),
        )


class SyncRunRepository:
    """Repository for the sync run audit table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, *, run_id: str, user_id: str, provider: str, started_at: datetime) -> SyncRunDTO:
        model = SyncRunModel(
            id=run_id,
            user_id=user_id,
            provider=provider,
            status=RUN_STATUS_RUNNING,
            started_at=started_at,
            finished_at=None,
            error=None,
            meta_json=_dump({}),
        )
        self.session.add(model)
        await self.session.flush()
        return SyncRunDTO.from_model(model)

    async def get(self, run_id: str) -> SyncRunDTO | None:
        result = await self.session.execute(select(SyncRunModel).where(SyncRunModel.id == run_id))
        model = result.scalar_one_or_none()
        return SyncRunDTO.from_model(model) if model else None

    async def finish(
        self,
        run_id: str,
        *,
        status: str,
        error: str | None,
        meta: dict[str, Any] | None,
        finished_at: datetime,
    ) -> bool:
        """Close a run. Only runs still ``running`` transition; returns whether this one did."""
        result = await self.session.execute(
            update(SyncRunModel)
            .where((SyncRunModel.id == run_id) & (SyncRunModel.status == RUN_STATUS_RUNNING))
            .values(
                status=status,
                error=error if status == RUN_STATUS_ERROR else None,
                meta_json=_dump(meta),
                finished_at=finished_at,
            )
        )
        await self.session.flush()
        return bool(result.rowcount)

    async def get_latest(
        self, user_id: str, provider: str, *, status: str | None = None
    ) -> SyncRunDTO | None:
        stmt = select(SyncRunModel).where(
            (SyncRunModel.user_id == user_id) & (SyncRunModel.provider == provider)
        )
        if status is not None:
            stmt = stmt.where(SyncRunModel.status == status)
        stmt = stmt.order_by(SyncRunModel.started_at.desc()).limit(1)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return SyncRunDTO.from_model(model) if model else None

    async def reap_stale(self, *, started_before: datetime, message: str, now: datetime) -> list[str]:
        """Mark runs stuck in ``running`` since before the cutoff as errors."""
        result = await self.session.execute(
            select(SyncRunModel.id).where(
                (SyncRunModel.status == RUN_STATUS_RUNNING) & (SyncRunModel.started_at < started_before)
            )
        )
        run_ids = [row[0] for row in result.all()]
        if not run_ids:
            return []
        await self.session.execute(
            update(SyncRunModel)
            .where(SyncRunModel.id.in_(run_ids) & (SyncRunModel.status == RUN_STATUS_RUNNING))
            .values(status=RUN_STATUS_ERROR, error=message, finished_at=now)
        )
        await self.session.flush()
        return run_ids


class BalanceRepository:
    """Repository for current balances (upsert by key)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(
        self, user_id: str, provider: str, rows: Sequence[BalanceDTO], *, now: datetime
    ) -> int:
        if not rows:
            return 0
        values = [
            {
                "user_id": user_id,
                "provider": provider,
                "asset_id": row.asset_id,
                "balance": row.balance,
                "updated_at": now,
                "raw_json": _dump(row.raw),
            }
            for row in rows
        ]
        dialect = self.session.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(BalanceCurrentModel).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "provider", "asset_id"],
            set_={
                "balance": stmt.excluded.balance,
                "updated_at": stmt.excluded.updated_at,
                "raw_json": stmt.excluded.raw_json,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(values)

    async def list_current(self, user_id: str, provider: str) -> list[BalanceDTO]:
        result = await self.session.execute(
            select(BalanceCurrentModel)
            .where((BalanceCurrentModel.user_id == user_id) & (BalanceCurrentModel.provider == provider))
            .order_by(BalanceCurrentModel.asset_id)
        )
        return [BalanceDTO.from_model(m) for m in result.scalars().all()]


class PositionRepository:
    """Repository for current positions (replace semantics)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def replace(
        self, user_id: str, provider: str, rows: Sequence[PositionDTO], *, now: datetime
    ) -> int:
        """Delete every position for the account, then insert ``rows``."""
        await self.session.execute(
            delete(PositionCurrentModel).where(
                (PositionCurrentModel.user_id == user_id) & (PositionCurrentModel.provider == provider)
            )
        )
        for row in rows:
            self.session.add(
                PositionCurrentModel(
                    user_id=user_id,
                    provider=provider,
                    token_id=row.token_id,
                    market_id=row.market_id,
                    market_slug=row.market_slug,
                    market_question=row.market_question,
                    outcome=row.outcome,
                    shares=row.shares,
                    avg_price=row.avg_price,
                    current_price=row.current_price,
                    value=row.value,
                    pnl=row.pnl,
                    pnl_pct=row.pnl_pct,
                    updated_at=now,
                    raw_json=_dump(row.raw),
                )
            )
        await self.session.flush()
        return len(rows)

    async def list_current(self, user_id: str, provider: str, *, limit: int | None = None) -> list[PositionDTO]:
        """Current positions, highest value first."""
        stmt = (
            select(PositionCurrentModel)
            .where((PositionCurrentModel.user_id == user_id) & (PositionCurrentModel.provider == provider))
            .order_by(PositionCurrentModel.value.desc().nulls_last(), PositionCurrentModel.token_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [PositionDTO.from_model(m) for m in result.scalars().all()]

    async def total_value(self, user_id: str, provider: str) -> Decimal:
        """Sum of value across every current position for the account."""
        result = await self.session.execute(
            select(PositionCurrentModel.value).where(
                (PositionCurrentModel.user_id == user_id) & (PositionCurrentModel.provider == provider)
            )
        )
        return sum((v for v in result.scalars().all() if v is not None), Decimal(0))


class OrderRepository:
    """Repository for current resting orders (replace semantics)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def replace(
        self, user_id: str, provider: str, rows: Sequence[OrderDTO], *, now: datetime
    ) -> int:
        """Delete every order for the account, then insert ``rows``."""
        await self.session.execute(
            delete(OrderCurrentModel).where(
                (OrderCurrentModel.user_id == user_id) & (OrderCurrentModel.provider == provider)
            )
        )
        for row in rows:
            self.session.add(
                OrderCurrentModel(
                    user_id=user_id,
                    provider=provider,
                    order_id=row.order_id,
                    token_id=row.token_id,
                    side=row.side,
                    price=row.price,
                    size=row.size,
                    status=row.status,
                    created_at=row.created_at,
                    last_seen_at=now,
                    raw_json=_dump(row.raw),
                )
            )
        await self.session.flush()
        return len(rows)

    async def list_current(self, user_id: str, provider: str) -> list[OrderDTO]:
        result = await self.session.execute(
            select(OrderCurrentModel)
            .where((OrderCurrentModel.user_id == user_id) & (OrderCurrentModel.provider == provider))
            .order_by(OrderCurrentModel.created_at.desc().nulls_last(), OrderCurrentModel.order_id)
        )
        return [OrderDTO.from_model(m) for m in result.scalars().all()]


class SnapshotRepository:
    """Repository for the append-only snapshot tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_balances(
        self, run_id: str, user_id: str, provider: str, rows: Sequence[BalanceDTO], *, now: datetime
    ) -> int:
        self.session.add_all(
            BalanceSnapshotModel(
                run_id=run_id,
                user_id=user_id,
                provider=provider,
                asset_id=row.asset_id,
                balance=row.balance,
                captured_at=now,
                raw_json=_dump(row.raw),
            )
            for row in rows
        )
        await self.session.flush()
        return len(rows)

    async def add_positions(
        self, run_id: str, user_id: str, provider: str, rows: Sequence[PositionDTO], *, now: datetime
    ) -> int:
        self.session.add_all(
            PositionSnapshotModel(
                run_id=run_id,
                user_id=user_id,
                provider=provider,
                token_id=row.token_id,
                shares=row.shares,
                price=row.current_price,
                value=row.value,
                captured_at=now,
                raw_json=_dump(row.raw),
            )
            for row in rows
        )
        await self.session.flush()
        return len(rows)

    async def add_portfolio(self, dto: PortfolioSnapshotDTO) -> PortfolioSnapshotDTO:
        self.session.add(
            PortfolioSnapshotModel(
                run_id=dto.run_id,
                user_id=dto.user_id,
                provider=dto.provider,
                cash_balance=dto.cash_balance,
                positions_value=dto.positions_value,
                total_value=dto.total_value,
                captured_at=dto.captured_at,
                raw_json=_dump(dto.raw),
            )
        )
        await self.session.flush()
        return dto

    async def latest_portfolio(self, user_id: str, provider: str) -> PortfolioSnapshotDTO | None:
        result = await self.session.execute(
            select(PortfolioSnapshotModel)
            .where((PortfolioSnapshotModel.user_id == user_id) & (PortfolioSnapshotModel.provider == provider))
            .order_by(PortfolioSnapshotModel.captured_at.desc(), PortfolioSnapshotModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return PortfolioSnapshotDTO.from_model(model) if model else None

    async def portfolio_series(
        self,
        user_id: str,
        provider: str,
        *,
        since: datetime | None = None,
        limit: int = 80,
    ) -> list[PortfolioSnapshotDTO]:
        """Most recent ``limit`` portfolio snapshots, returned oldest first."""
        stmt = select(PortfolioSnapshotModel).where(
            (PortfolioSnapshotModel.user_id == user_id) & (PortfolioSnapshotModel.provider == provider)
        )
        if since is not None:
            stmt = stmt.where(PortfolioSnapshotModel.captured_at >= since)
        stmt = stmt.order_by(PortfolioSnapshotModel.captured_at.desc(), PortfolioSnapshotModel.id.desc()).limit(
            limit
        )
        result = await self.session.execute(stmt)
        rows = [PortfolioSnapshotDTO.from_model(m) for m in result.scalars().all()]
        rows.reverse()
        return rows


class TradingActionRepository:
    """Repository for the trading action log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, dto: TradingActionDTO) -> TradingActionDTO:
        model = TradingActionModel(
            user_id=dto.user_id,
            provider=dto.provider,
            action_type=dto.action_type,
            request_json=_dump(dto.request),
            response_json=_dump(dto.response),
            created_at=dto.created_at or datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return TradingActionDTO.from_model(model)

    async def list_recent(self, user_id: str, provider: str, *, limit: int = 30) -> list[TradingActionDTO]:
        result = await self.session.execute(
            select(TradingActionModel)
            .where((TradingActionModel.user_id == user_id) & (TradingActionModel.provider == provider))
            .order_by(TradingActionModel.created_at.desc(), TradingActionModel.id.desc())
            .limit(limit)
        )
        return [TradingActionDTO.from_model(m) for m in result.scalars().all()]
