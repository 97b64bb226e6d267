"""
Package containing the shared data models and error types of the twin-range
keeper.

Runtime services live in the keeper package.
"""

from twinrange.models import (
    Slot,
    StrategyPhase,
    RebalanceDecision,
    BreachDirection,
    ActionType,
    TickRange,
    RangePlan,
    Position,
    WalletBalances,
    PriceData,
    PoolState,
    MintResult,
    CloseResult,
    PositionSnapshot,
    FeeSplit,
    StrategyStats,
    StrategyConfig,
)
from twinrange.errors import (
    KeeperError,
    ConfigurationError,
    DegenerateRangeError,
    InvalidPriceError,
    NotInitializedError,
    LedgerError,
    SlotOccupiedError,
    SlotEmptyError,
    CycleInProgressError,
    SwapError,
    MintError,
    CloseError,
    CriticalUnwindError,
)

__all__ = [
    # Models
    "Slot",
    "StrategyPhase",
    "RebalanceDecision",
    "BreachDirection",
    "ActionType",
    "TickRange",
    "RangePlan",
    "Position",
    "WalletBalances",
    "PriceData",
    "PoolState",
    "MintResult",
    "CloseResult",
    "PositionSnapshot",
    "FeeSplit",
    "StrategyStats",
    "StrategyConfig",
    # Errors
    "KeeperError",
    "ConfigurationError",
    "DegenerateRangeError",
    "InvalidPriceError",
    "NotInitializedError",
    "LedgerError",
    "SlotOccupiedError",
    "SlotEmptyError",
    "CycleInProgressError",
    "SwapError",
    "MintError",
    "CloseError",
    "CriticalUnwindError",
]
