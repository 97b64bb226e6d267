"""
Twin-range keeper.

Async bot that holds two adjacent single-sided concentrated-liquidity
positions around the pool price and rebalances them when the price leaves
the combined range.
"""
from keeper.ledger import PositionLedger, LedgerSnapshot
from keeper.monitor import RebalanceMonitor
from keeper.orchestrator import PositionOrchestrator, OrchestratorState
from keeper.range_planner import plan_ranges
from keeper.services.oracle import PriceOracle
from keeper.utils.math import TickMath, UniswapV3Math

__all__ = [
    "PositionLedger",
    "LedgerSnapshot",
    "RebalanceMonitor",
    "PositionOrchestrator",
    "OrchestratorState",
    "plan_ranges",
    "PriceOracle",
    "TickMath",
    "UniswapV3Math",
]
