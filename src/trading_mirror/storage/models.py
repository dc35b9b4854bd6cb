"""SQLAlchemy models for the trading mirror.

Current-state tables hold one row per live balance, position or order and
are replaced wholesale on every successful sync. Snapshot tables and the
action log are append-only.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncRunModel(Base):
    """Audit record for one sync attempt of one provider account."""

    __tablename__ = "trading_sync_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (
        Index("idx_trading_sync_runs_user_provider_started", "user_id", "provider", "started_at"),
        Index("idx_trading_sync_runs_status_started", "status", "started_at"),
    )


class BalanceCurrentModel(Base):
    """Latest mirrored balance per asset."""

    __tablename__ = "trading_balances_current"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    provider: Mapped[str] = mapped_column(String(16), primary_key=True)
    asset_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")


class PositionCurrentModel(Base):
    """Latest mirrored open position per token."""

    __tablename__ = "trading_positions_current"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    provider: Mapped[str] = mapped_column(String(16), primary_key=True)
    token_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    market_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    market_slug: Mapped[str | None] = mapped_column(String(256), nullable=True)
    market_question: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shares: Mapped[Decimal] = mapped_column(Numeric(30, 8), nullable=False)
    avg_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    pnl: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    pnl_pct: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (Index("idx_trading_positions_current_value", "user_id", "provider", "value"),)


class OrderCurrentModel(Base):
    """Latest mirrored resting order."""

    __tablename__ = "trading_orders_current"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    provider: Mapped[str] = mapped_column(String(16), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    token_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    side: Mapped[str | None] = mapped_column(String(16), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    size: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")


class BalanceSnapshotModel(Base):
    """Balance row captured by one sync run."""

    __tablename__ = "trading_balance_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trading_sync_runs.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    asset_id: Mapped[str] = mapped_column(String(128), nullable=False)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (Index("idx_trading_balance_snapshots_run", "run_id"),)


class PositionSnapshotModel(Base):
    """Position row captured by one sync run."""

    __tablename__ = "trading_position_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trading_sync_runs.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    shares: Mapped[Decimal] = mapped_column(Numeric(30, 8), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (
        Index("idx_trading_position_snapshots_run", "run_id"),
        Index("idx_trading_position_snapshots_token", "user_id", "provider", "token_id", "captured_at"),
    )


class PortfolioSnapshotModel(Base):
    """Portfolio totals captured by one sync run."""

    __tablename__ = "trading_portfolio_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trading_sync_runs.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    cash_balance: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    positions_value: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(30, 8), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    __table_args__ = (
        Index("idx_trading_portfolio_snapshots_user_provider_captured", "user_id", "provider", "captured_at"),
    )


class TradingActionModel(Base):
    """Append-only audit log of order placement and cancellation."""

    __tablename__ = "trading_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    request_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    response_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_trading_actions_user_provider_created", "user_id", "provider", "created_at"),
    )
