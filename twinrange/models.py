"""
Shared data models for the twin-range keeper.

Token amounts are raw integer token units; prices are human-scale floats
(token1 per token0, decimal adjusted).
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Slot(str, Enum):
    """Which of the two strategy positions."""
    UPPER = "upper"
    LOWER = "lower"


class StrategyPhase(str, Enum):
    """Rebalancing state machine phases."""
    NO_POSITIONS = "no_positions"
    BALANCING = "balancing"
    OPENING = "opening"
    HOLDING = "holding"
    CLOSING = "closing"
    HALTED = "halted"


class RebalanceDecision(str, Enum):
    """What the monitor should do for the current tick."""
    HOLD = "hold"
    REBALANCE = "rebalance"
    RESUME = "resume"


class BreachDirection(str, Enum):
    """Side of the combined range the market price has left through."""
    ABOVE_RANGE = "above_range"
    BELOW_RANGE = "below_range"


class ActionType(str, Enum):
    """Action vocabulary persisted by the tracking sink."""
    PRICE_DATA_COLLECTED = "PRICE_DATA_COLLECTED"
    POSITION_CREATED = "POSITION_CREATED"
    POSITION_CLOSED = "POSITION_CLOSED"
    FEES_COLLECTED = "FEES_COLLECTED"
    POSITION_OUT_OF_RANGE = "POSITION_OUT_OF_RANGE"
    POSITION_CREATION_FAILED = "POSITION_CREATION_FAILED"
    POSITION_CLOSE_FAILED = "POSITION_CLOSE_FAILED"
    SWAP_FAILED = "SWAP_FAILED"
    REBALANCE_FAILED = "REBALANCE_FAILED"
    STRAY_POSITION_DETECTED = "STRAY_POSITION_DETECTED"
    STRAY_POSITION_CLOSED = "STRAY_POSITION_CLOSED"
    STRATEGY_ERROR = "STRATEGY_ERROR"


class TickRange(BaseModel):
    """Half-open tick interval of one position."""
    lower: int = Field(..., description="Lower tick bound")
    upper: int = Field(..., description="Upper tick bound")

    @model_validator(mode='after')
    def validate_order(self) -> 'TickRange':
        """Ensure upper > lower."""
        if self.upper <= self.lower:
            raise ValueError("upper tick must be greater than lower tick")
        return self


class RangePlan(BaseModel):
    """Two adjacent tick ranges sharing the transition tick."""
    lower_ticks: TickRange = Field(..., description="Quote-only range below the transition")
    upper_ticks: TickRange = Field(..., description="Base-heavy range above the transition")
    transition_tick: int = Field(..., description="Shared boundary of the two ranges")
    upper_bound_price: float = Field(..., description="Unaligned upper bound price")
    transition_price: float = Field(..., description="Unaligned transition price")
    lower_bound_price: float = Field(..., description="Unaligned lower bound price")
    widened: bool = Field(False, description="A collapsed boundary was pushed out one spacing")

    @model_validator(mode='after')
    def validate_adjacent(self) -> 'RangePlan':
        """Both ranges must meet exactly at the transition tick."""
        if self.lower_ticks.upper != self.transition_tick:
            raise ValueError("lower range must end at the transition tick")
        if self.upper_ticks.lower != self.transition_tick:
            raise ValueError("upper range must start at the transition tick")
        return self

    @property
    def lower_bound_tick(self) -> int:
        return self.lower_ticks.lower

    @property
    def upper_bound_tick(self) -> int:
        return self.upper_ticks.upper


class Position(BaseModel):
    """An open concentrated-liquidity position owned by the strategy."""
    model_config = ConfigDict(frozen=True)

    token_id: int = Field(..., description="Position NFT id")
    tick_lower: int = Field(..., description="Lower tick bound")
    tick_upper: int = Field(..., description="Upper tick bound")
    liquidity: int = Field(0, ge=0, description="Liquidity units")
    principal_amount0: int = Field(0, ge=0, description="token0 deposited at mint")
    principal_amount1: int = Field(0, ge=0, description="token1 deposited at mint")
    price_lower: Optional[float] = Field(None, description="Price at tick_lower")
    price_upper: Optional[float] = Field(None, description="Price at tick_upper")
    is_active: bool = Field(True, description="False once the NFT has been burned")

    @model_validator(mode='after')
    def validate_tick_range(self) -> 'Position':
        """Ensure tick_upper > tick_lower."""
        if self.tick_upper <= self.tick_lower:
            raise ValueError("tick_upper must be greater than tick_lower")
        return self

    @property
    def has_principal(self) -> bool:
        return self.principal_amount0 > 0 or self.principal_amount1 > 0

    def with_principal(self, amount0: int, amount1: int) -> 'Position':
        """Attach the confirmed deposit amounts. Allowed once."""
        if self.has_principal:
            raise ValueError(f"principal already recorded for position {self.token_id}")
        return self.model_copy(
            update={"principal_amount0": amount0, "principal_amount1": amount1}
        )

    def deactivated(self) -> 'Position':
        return self.model_copy(update={"is_active": False})


class WalletBalances(BaseModel):
    """Undeployed token balances tracked locally."""
    token0: int = Field(0, description="token0 held by the wallet")
    token1: int = Field(0, description="token1 held by the wallet")


class PriceData(BaseModel):
    """Oracle reading."""
    price: float = Field(..., description="token1 per token0, decimal adjusted")
    tick: int = Field(..., description="Current pool tick")
    timestamp: int = Field(..., description="Unix seconds of the read")
    sqrt_price_x96: Optional[int] = Field(None, description="Raw slot0 sqrt price")


class PoolState(BaseModel):
    """Raw slot0 read."""
    tick: int
    sqrt_price_x96: int


class MintResult(BaseModel):
    """Confirmed outcome of a mint."""
    token_id: int
    liquidity: int = 0
    amount0_used: int = Field(..., ge=0)
    amount1_used: int = Field(..., ge=0)


class CloseResult(BaseModel):
    """Principal plus fees returned by a close."""
    amount0: int = Field(..., ge=0)
    amount1: int = Field(..., ge=0)


class PositionSnapshot(BaseModel):
    """On-chain view of a position."""
    token_id: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    amount0: int = Field(0, description="token0 represented by the liquidity now")
    amount1: int = Field(0, description="token1 represented by the liquidity now")
    tokens_owed0: int = 0
    tokens_owed1: int = 0


class FeeSplit(BaseModel):
    """Received amounts split into principal and fees."""
    principal0: int
    principal1: int
    fees0: int = Field(..., ge=0)
    fees1: int = Field(..., ge=0)


class StrategyStats(BaseModel):
    """Cumulative counters; authoritative copy lives in memory."""
    initial_token0_amount: int = 0
    initial_token1_amount: int = 0
    current_token0_amount: int = 0
    current_token1_amount: int = 0
    total_fees_collected_token0: int = 0
    total_fees_collected_token1: int = 0
    total_rebalance_count: int = 0
    cycle_count: int = 0
    swap_count: int = 0
    start_timestamp: int = 0
    last_rebalance_timestamp: Optional[int] = None


class StrategyConfig(BaseModel):
    """Strategy parameters consumed at orchestrator construction."""
    check_interval_ms: int = Field(60_000, gt=0, description="Monitor polling interval")
    width_percent: float = Field(..., gt=0, lt=200, description="Total range width in % of price")
    rebalance_tolerance_percent: float = Field(
        10.0, ge=0, description="USD imbalance tolerated before the balancing swap"
    )
    threshold_spacings: int = Field(2, ge=0, description="Buffer beyond the range, in tick spacings")
    mint_slippage_percent: float = Field(2.0, ge=0, lt=100, description="Minimum-amount slack on mint")
    swap_slippage_percent: float = Field(2.5, gt=0, lt=100, description="Max slippage on the balancing swap")
    error_backoff_seconds: float = Field(10.0, ge=0, description="Sleep after a failed cycle")
    token0_is_base: bool = Field(True, description="Price rises with tick (token1 quotes token0)")
    allow_range_widening: bool = Field(
        False, description="Push collapsed boundaries out one spacing instead of failing"
    )

    @property
    def check_interval_seconds(self) -> float:
        return self.check_interval_ms / 1000
