"""Storage layer - Mirror tables, repositories and the mirror store."""

from trading_mirror.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
    session_scope,
)
from trading_mirror.storage.mirror import STALE_RUN_MESSAGE, MirrorState, MirrorStore
from trading_mirror.storage.models import (
    BalanceCurrentModel,
    BalanceSnapshotModel,
    Base,
    OrderCurrentModel,
    PortfolioSnapshotModel,
    PositionCurrentModel,
    PositionSnapshotModel,
    SyncRunModel,
    TradingActionModel,
)
from trading_mirror.storage.repos import (
    BalanceDTO,
    OrderDTO,
    PortfolioSnapshotDTO,
    PositionDTO,
    SyncRunDTO,
    TradingActionDTO,
)

__all__ = [
    "STALE_RUN_MESSAGE",
    "BalanceCurrentModel",
    "BalanceDTO",
    "BalanceSnapshotModel",
    "Base",
    "DatabaseManager",
    "MirrorState",
    "MirrorStore",
    "OrderCurrentModel",
    "OrderDTO",
    "PortfolioSnapshotDTO",
    "PortfolioSnapshotModel",
    "PositionCurrentModel",
    "PositionDTO",
    "PositionSnapshotModel",
    "SyncRunDTO",
    "SyncRunModel",
    "TradingActionDTO",
    "TradingActionModel",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "session_scope",
]
