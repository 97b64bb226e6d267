"""
Two-range planner.

Splits a target price width around the current price into two adjacent
tick ranges that share a transition tick:

    lower  [lower_bound_tick, transition_tick]   quote asset only
    upper  [transition_tick, upper_bound_tick]   base asset only

The transition sits a small overlap below the current price so both
positions start out single-sided even when the current tick is not a
multiple of the tick spacing.
"""
import logging
import math

from twinrange.errors import ConfigurationError, DegenerateRangeError, InvalidPriceError
from twinrange.models import RangePlan, TickRange
from keeper.utils.math import TickMath

logger = logging.getLogger(__name__)

OVERLAP_RATIO = 0.05
MAX_WIDTH_PERCENT = 200


def plan_ranges(
    current_price: float,
    width_percent: float,
    tick_spacing: int,
    decimals0: int = 18,
    decimals1: int = 18,
    allow_widening: bool = False,
) -> RangePlan:
    """
    Compute the lower and upper position ranges for `current_price`.

    Args:
        current_price: Human-scale price (token1 per token0)
        width_percent: Total width of both ranges as % of current_price
        tick_spacing: Pool tick spacing
        decimals0: Decimals of token0
        decimals1: Decimals of token1
        allow_widening: If alignment collapses two boundaries onto the same
            tick, push the outer one out by a single spacing instead of failing

    Returns:
        RangePlan with strictly ordered, spacing-aligned ticks

    Raises:
        InvalidPriceError: current_price is not a positive finite number
        ConfigurationError: width or spacing out of bounds
        DegenerateRangeError: boundaries collapsed and widening is disabled
    """
    if not isinstance(current_price, (int, float)) or not math.isfinite(current_price) or current_price <= 0:
        raise InvalidPriceError(f"Invalid price: {current_price}")
    if not 0 < width_percent < MAX_WIDTH_PERCENT:
        raise ConfigurationError(
            f"width_percent must be in (0, {MAX_WIDTH_PERCENT}), got {width_percent}"
        )
    if tick_spacing <= 0:
        raise ConfigurationError(f"Tick spacing must be positive, got {tick_spacing}")

    price_range = current_price * width_percent / 100
    overlap = price_range * OVERLAP_RATIO

    upper_bound_price = current_price + price_range / 2
    transition_price = current_price - overlap
    lower_bound_price = current_price - price_range / 2

    upper_bound_tick = TickMath.align_tick(
        TickMath.price_to_tick(upper_bound_price, decimals0, decimals1), tick_spacing, round_up=True
    )
    transition_tick = TickMath.align_tick(
        TickMath.price_to_tick(transition_price, decimals0, decimals1), tick_spacing, round_up=False
    )
    lower_bound_tick = TickMath.align_tick(
        TickMath.price_to_tick(lower_bound_price, decimals0, decimals1), tick_spacing, round_up=False
    )

    widened = False
    if lower_bound_tick >= transition_tick:
        if not allow_widening:
            raise DegenerateRangeError(
                f"Lower range collapsed: lower bound tick {lower_bound_tick} >= transition tick "
                f"{transition_tick} (width {width_percent}%, spacing {tick_spacing})"
            )
        logger.warning(
            f"Lower bound tick {lower_bound_tick} collapsed onto transition tick {transition_tick}; "
            f"widening by one spacing"
        )
        lower_bound_tick = transition_tick - tick_spacing
        widened = True

    if upper_bound_tick <= transition_tick:
        if not allow_widening:
            raise DegenerateRangeError(
                f"Upper range collapsed: upper bound tick {upper_bound_tick} <= transition tick "
                f"{transition_tick} (width {width_percent}%, spacing {tick_spacing})"
            )
        logger.warning(
            f"Upper bound tick {upper_bound_tick} collapsed onto transition tick {transition_tick}; "
            f"widening by one spacing"
        )
        upper_bound_tick = transition_tick + tick_spacing
        widened = True

    min_tick, max_tick = TickMath.usable_tick_bounds(tick_spacing)
    if lower_bound_tick < min_tick or upper_bound_tick > max_tick:
        raise ConfigurationError(
            f"Planned range [{lower_bound_tick}, {upper_bound_tick}] exceeds usable ticks "
            f"[{min_tick}, {max_tick}]"
        )

    plan = RangePlan(
        lower_ticks=TickRange(lower=lower_bound_tick, upper=transition_tick),
        upper_ticks=TickRange(lower=transition_tick, upper=upper_bound_tick),
        transition_tick=transition_tick,
        upper_bound_price=upper_bound_price,
        transition_price=transition_price,
        lower_bound_price=lower_bound_price,
        widened=widened,
    )

    logger.info(
        f"Planned ranges at price {current_price:.6f} (width {width_percent}%): "
        f"lower [{lower_bound_tick}, {transition_tick}], "
        f"upper [{transition_tick}, {upper_bound_tick}]"
    )
    return plan
