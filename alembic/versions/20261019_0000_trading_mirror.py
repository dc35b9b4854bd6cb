"""Trading mirror schema: sync runs, current tables, snapshots and action log.

Revision ID: 001_trading_mirror
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_trading_mirror"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Sync run audit table
    op.create_table(
        "trading_sync_runs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("meta_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_trading_sync_runs_user_provider_started",
        "trading_sync_runs",
        ["user_id", "provider", "started_at"],
    )
    op.create_index("idx_trading_sync_runs_status_started", "trading_sync_runs", ["status", "started_at"])

    # Current-state tables
    op.create_table(
        "trading_balances_current",
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("asset_id", sa.String(128), nullable=False),
        sa.Column("balance", sa.Numeric(30, 8), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "provider", "asset_id"),
    )

    op.create_table(
        "trading_positions_current",
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("token_id", sa.String(128), nullable=False),
        sa.Column("market_id", sa.String(128), nullable=True),
        sa.Column("market_slug", sa.String(256), nullable=True),
        sa.Column("market_question", sa.Text(), nullable=False),
        sa.Column("outcome", sa.String(128), nullable=True),
        sa.Column("shares", sa.Numeric(30, 8), nullable=False),
        sa.Column("avg_price", sa.Numeric(18, 8), nullable=True),
        sa.Column("current_price", sa.Numeric(18, 8), nullable=True),
        sa.Column("value", sa.Numeric(30, 8), nullable=True),
        sa.Column("pnl", sa.Numeric(30, 8), nullable=True),
        sa.Column("pnl_pct", sa.Numeric(18, 6), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "provider", "token_id"),
    )
    op.create_index(
        "idx_trading_positions_current_value",
        "trading_positions_current",
        ["user_id", "provider", "value"],
    )

    op.create_table(
        "trading_orders_current",
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("order_id", sa.String(128), nullable=False),
        sa.Column("token_id", sa.String(128), nullable=True),
        sa.Column("side", sa.String(16), nullable=True),
        sa.Column("price", sa.Numeric(18, 8), nullable=True),
        sa.Column("size", sa.Numeric(30, 8), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "provider", "order_id"),
    )

    # Append-only snapshot tables
    op.create_table(
        "trading_balance_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("asset_id", sa.String(128), nullable=False),
        sa.Column("balance", sa.Numeric(30, 8), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["trading_sync_runs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_trading_balance_snapshots_run", "trading_balance_snapshots", ["run_id"])

    op.create_table(
        "trading_position_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("token_id", sa.String(128), nullable=False),
        sa.Column("shares", sa.Numeric(30, 8), nullable=False),
        sa.Column("price", sa.Numeric(18, 8), nullable=True),
        sa.Column("value", sa.Numeric(30, 8), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["trading_sync_runs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_trading_position_snapshots_run", "trading_position_snapshots", ["run_id"])
    op.create_index(
        "idx_trading_position_snapshots_token",
        "trading_position_snapshots",
        ["user_id", "provider", "token_id", "captured_at"],
    )

    op.create_table(
        "trading_portfolio_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("cash_balance", sa.Numeric(30, 8), nullable=True),
        sa.Column("positions_value", sa.Numeric(30, 8), nullable=True),
        sa.Column("total_value", sa.Numeric(30, 8), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["trading_sync_runs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_trading_portfolio_snapshots_user_provider_captured",
        "trading_portfolio_snapshots",
        ["user_id", "provider", "captured_at"],
    )

    # Trading action log
    op.create_table(
        "trading_actions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("request_json", sa.Text(), nullable=False),
        sa.Column("response_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_trading_actions_user_provider_created",
        "trading_actions",
        ["user_id", "provider", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_trading_actions_user_provider_created", table_name="trading_actions")
    op.drop_table("trading_actions")

    op.drop_index(
        "idx_trading_portfolio_snapshots_user_provider_captured", table_name="trading_portfolio_snapshots"
    )
    op.drop_table("trading_portfolio_snapshots")

    op.drop_index("idx_trading_position_snapshots_token", table_name="trading_position_snapshots")
    op.drop_index("idx_trading_position_snapshots_run", table_name="trading_position_snapshots")
    op.drop_table("trading_position_snapshots")

    op.drop_index("idx_trading_balance_snapshots_run", table_name="trading_balance_snapshots")
    op.drop_table("trading_balance_snapshots")

    op.drop_table("trading_orders_current")

    op.drop_index("idx_trading_positions_current_value", table_name="trading_positions_current")
    op.drop_table("trading_positions_current")

    op.drop_table("trading_balances_current")

    op.drop_index("idx_trading_sync_runs_status_started", table_name="trading_sync_runs")
    op.drop_index("idx_trading_sync_runs_user_provider_started", table_name="trading_sync_runs")
    op.drop_table("trading_sync_runs")
