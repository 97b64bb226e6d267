"""
Tests for data models and validation.
"""
import pytest
from pydantic import ValidationError

from twinrange.models import (
    CloseResult,
    FeeSplit,
    MintResult,
    Position,
    RangePlan,
    StrategyConfig,
    StrategyStats,
    TickRange,
)


def test_position_model_valid():
    """Test Position model with valid data."""
    position = Position(token_id=42, tick_lower=-10000, tick_upper=-9900, liquidity=10**12)

    assert position.tick_lower == -10000
    assert position.tick_upper == -9900
    assert position.is_active
    assert not position.has_principal


def test_position_invalid_tick_range():
    """Test that tick_upper must be greater than tick_lower."""
    with pytest.raises(ValidationError):
        Position(token_id=1, tick_lower=-9900, tick_upper=-10000)
    with pytest.raises(ValidationError):
        Position(token_id=1, tick_lower=60, tick_upper=60)


def test_position_negative_liquidity():
    with pytest.raises(ValidationError):
        Position(token_id=1, tick_lower=0, tick_upper=60, liquidity=-1)


def test_with_principal_only_once():
    """Principal is attached once, after the mint is confirmed."""
    position = Position(token_id=7, tick_lower=0, tick_upper=600)
    funded = position.with_principal(1_000, 250)

    assert funded.principal_amount0 == 1_000
    assert funded.principal_amount1 == 250
    assert position.principal_amount0 == 0

    with pytest.raises(ValueError):
        funded.with_principal(1, 1)


def test_position_is_immutable():
    position = Position(token_id=7, tick_lower=0, tick_upper=600, liquidity=5)
    with pytest.raises(ValidationError):
        position.liquidity = 0
    with pytest.raises(ValidationError):
        position.is_active = False
    assert position.liquidity == 5


def test_deactivated_is_a_copy():
    position = Position(token_id=7, tick_lower=0, tick_upper=600)
    closed = position.deactivated()
    assert not closed.is_active
    assert position.is_active


def test_range_plan_must_be_adjacent():
    """Both ranges share the transition tick."""
    plan = RangePlan(
        lower_ticks=TickRange(lower=-600, upper=0),
        upper_ticks=TickRange(lower=0, upper=540),
        transition_tick=0,
        upper_bound_price=1.05,
        transition_price=1.0,
        lower_bound_price=0.95,
    )
    assert plan.lower_bound_tick == -600
    assert plan.upper_bound_tick == 540
    assert not plan.widened

    with pytest.raises(ValidationError):
        RangePlan(
            lower_ticks=TickRange(lower=-600, upper=-60),
            upper_ticks=TickRange(lower=0, upper=540),
            transition_tick=0,
            upper_bound_price=1.05,
            transition_price=1.0,
            lower_bound_price=0.95,
        )


def test_tick_range_order():
    with pytest.raises(ValidationError):
        TickRange(lower=10, upper=10)


def test_amount_results_reject_negative():
    with pytest.raises(ValidationError):
        CloseResult(amount0=-1, amount1=0)
    with pytest.raises(ValidationError):
        MintResult(token_id=1, amount0_used=0, amount1_used=-5)
    with pytest.raises(ValidationError):
        FeeSplit(principal0=0, principal1=0, fees0=-1, fees1=0)


def test_strategy_config_defaults():
    config = StrategyConfig(width_percent=20)

    assert config.check_interval_ms == 60_000
    assert config.check_interval_seconds == 60.0
    assert config.rebalance_tolerance_percent == 10.0
    assert config.threshold_spacings == 2
    assert config.token0_is_base
    assert not config.allow_range_widening


@pytest.mark.parametrize("width", [0, -5, 200, 250])
def test_strategy_config_width_bounds(width):
    with pytest.raises(ValidationError):
        StrategyConfig(width_percent=width)


def test_strategy_config_rejects_bad_values():
    with pytest.raises(ValidationError):
        StrategyConfig(width_percent=20, check_interval_ms=0)
    with pytest.raises(ValidationError):
        StrategyConfig(width_percent=20, rebalance_tolerance_percent=-1)
    with pytest.raises(ValidationError):
        StrategyConfig(width_percent=20, swap_slippage_percent=0)


def test_strategy_stats_start_at_zero():
    stats = StrategyStats()
    assert stats.total_rebalance_count == 0
    assert stats.total_fees_collected_token0 == 0
    assert stats.last_rebalance_timestamp is None
