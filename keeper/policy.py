"""
Pure decision functions used by the orchestrator.

Nothing here performs I/O or mutates its arguments.
"""
import logging
from typing import Optional

from pydantic import BaseModel, Field

from twinrange.errors import InvalidPriceError
from twinrange.models import (
    BreachDirection,
    FeeSplit,
    Position,
    RebalanceDecision,
    WalletBalances,
)
from keeper.ledger import LedgerSnapshot

logger = logging.getLogger(__name__)


class Thresholds(BaseModel):
    """Tick levels that trigger a rebalance when crossed."""
    lower: int = Field(..., description="lower.tick_lower minus the buffer")
    upper: int = Field(..., description="upper.tick_upper plus the buffer")


class SwapPlan(BaseModel):
    """Single balancing swap."""
    zero_for_one: bool = Field(..., description="True when token0 is sold for token1")
    amount_in: int = Field(..., gt=0, description="Raw amount of the token sold")
    deviation_percent: float = Field(..., description="Value imbalance before the swap")


def compute_thresholds(
    upper: Position,
    lower: Position,
    tick_spacing: int,
    threshold_spacings: int = 2,
) -> Thresholds:
    buffer = threshold_spacings * tick_spacing
    return Thresholds(
        lower=lower.tick_lower - buffer,
        upper=upper.tick_upper + buffer,
    )


def evaluate_breach(
    current_tick: int,
    thresholds: Thresholds,
    token0_is_base: bool = True,
) -> Optional[BreachDirection]:
    """
    Check `current_tick` against the thresholds. Both comparisons are strict,
    so a tick sitting exactly on a threshold does not trigger.

    Tick grows with the token1/token0 price. When token0 is the quoted base
    asset a tick above the upper threshold means the price left the range
    upwards; with the pair the other way round the labels swap. The trigger
    itself is the same either way.
    """
    if current_tick > thresholds.upper:
        return BreachDirection.ABOVE_RANGE if token0_is_base else BreachDirection.BELOW_RANGE
    if current_tick < thresholds.lower:
        return BreachDirection.BELOW_RANGE if token0_is_base else BreachDirection.ABOVE_RANGE
    return None


def decide(
    snapshot: LedgerSnapshot,
    current_tick: int,
    tick_spacing: int,
    threshold_spacings: int = 2,
) -> RebalanceDecision:
    """
    HOLD while both positions are live and the tick is inside the thresholds,
    REBALANCE once it leaves them, RESUME when the ledger is not in its
    two-position steady state (startup, or a previous cycle that failed half way).
    """
    if not snapshot.is_complete:
        return RebalanceDecision.RESUME

    thresholds = compute_thresholds(snapshot.upper, snapshot.lower, tick_spacing, threshold_spacings)
    if evaluate_breach(current_tick, thresholds) is not None:
        return RebalanceDecision.REBALANCE
    return RebalanceDecision.HOLD


def separate_principal_and_fees(
    received0: int,
    received1: int,
    principal0: int,
    principal1: int,
) -> FeeSplit:
    """
    Split what a close returned into principal and fees. Fees are floored at
    zero: a shortfall against the deposited principal is price movement,
    not a negative fee.
    """
    fees0 = max(0, received0 - principal0)
    fees1 = max(0, received1 - principal1)
    return FeeSplit(
        principal0=received0 - fees0,
        principal1=received1 - fees1,
        fees0=fees0,
        fees1=fees1,
    )


def token0_value_in_token1(amount0: int, price: float, decimals0: int, decimals1: int) -> float:
    """Value of a raw token0 amount in raw token1 units."""
    return amount0 * price * (10 ** (decimals1 - decimals0))


def plan_balancing_swap(
    balances: WalletBalances,
    price: float,
    decimals0: int,
    decimals1: int,
    tolerance_percent: float,
) -> Optional[SwapPlan]:
    """
    Size the swap that brings both tokens to equal value at `price`.

    Returns None when the wallet is empty, the imbalance is within
    `tolerance_percent` of the total value, or the swap would round to zero.
    """
    if price <= 0:
        raise InvalidPriceError(f"Invalid price: {price}")

    value0 = token0_value_in_token1(balances.token0, price, decimals0, decimals1)
    value1 = float(balances.token1)
    total = value0 + value1
    if total <= 0:
        return None

    deviation_percent = abs(value0 - value1) / total * 100
    if deviation_percent <= tolerance_percent:
        logger.info(
            f"Allocation within tolerance ({deviation_percent:.2f}% <= {tolerance_percent}%), "
            f"no swap needed"
        )
        return None

    target = total / 2
    if value0 > value1:
        # Surplus token0, expressed back in raw token0 units
        raw_price = price * (10 ** (decimals1 - decimals0))
        amount_in = min(int((value0 - target) / raw_price), balances.token0)
        zero_for_one = True
    else:
        amount_in = min(int(value1 - target), balances.token1)
        zero_for_one = False

    if amount_in <= 0:
        return None

    return SwapPlan(
        zero_for_one=zero_for_one,
        amount_in=amount_in,
        deviation_percent=deviation_percent,
    )


def minimum_amount(amount: int, slippage_percent: float) -> int:
    """Lower bound accepted for `amount` after `slippage_percent` slack."""
    return amount * int(round((100 - slippage_percent) * 100)) // 10_000
