import random

import pytest
from pydantic import ValidationError

from keeper.range_planner import plan_ranges
from keeper.utils.math import TickMath
from twinrange.errors import ConfigurationError, DegenerateRangeError, InvalidPriceError
from twinrange.models import RangePlan, TickRange


def test_scenario_2500_width_20():
    plan = plan_ranges(2500.0, 20, 60)

    assert plan.upper_bound_price == pytest.approx(2750.0)
    assert plan.transition_price == pytest.approx(2475.0)
    assert plan.lower_bound_price == pytest.approx(2250.0)

    expected_lower = TickMath.align_tick(TickMath.price_to_tick(2250.0), 60, round_up=False)
    expected_transition = TickMath.align_tick(TickMath.price_to_tick(2475.0), 60, round_up=False)
    expected_upper = TickMath.align_tick(TickMath.price_to_tick(2750.0), 60, round_up=True)

    assert plan.lower_ticks == TickRange(lower=expected_lower, upper=expected_transition)
    assert plan.upper_ticks == TickRange(lower=expected_transition, upper=expected_upper)
    assert plan.transition_tick == expected_transition
    assert plan.lower_bound_tick < plan.transition_tick < plan.upper_bound_tick
    assert not plan.widened


def test_scenario_with_token_decimals():
    plan = plan_ranges(2500.0, 20, 10, decimals0=18, decimals1=6)
    expected_transition = TickMath.align_tick(
        TickMath.price_to_tick(2475.0, 18, 6), 10, round_up=False
    )
    assert plan.transition_tick == expected_transition
    for tick in (plan.lower_bound_tick, plan.transition_tick, plan.upper_bound_tick):
        assert tick % 10 == 0


def test_transition_sits_below_current_price():
    plan = plan_ranges(1.25, 10, 1)
    assert TickMath.tick_to_price(plan.transition_tick) < 1.25


def test_range_ordering_randomized():
    rng = random.Random(42)
    for _ in range(300):
        price = 10 ** rng.uniform(-6, 6)
        width = rng.uniform(0.01, 199.0)
        spacing = rng.choice([1, 10, 60, 200])
        try:
            plan = plan_ranges(price, width, spacing)
        except DegenerateRangeError:
            plan = plan_ranges(price, width, spacing, allow_widening=True)
            assert plan.widened
        assert plan.lower_bound_tick < plan.transition_tick < plan.upper_bound_tick
        for tick in (plan.lower_bound_tick, plan.transition_tick, plan.upper_bound_tick):
            assert tick % spacing == 0


def test_narrow_width_is_widened_when_allowed():
    # 0.1% of price is ~10 ticks; spacing 200 collapses all three points
    plan = plan_ranges(1.0, 0.1, 200, allow_widening=True)
    assert plan.widened
    assert plan.lower_bound_tick < plan.transition_tick < plan.upper_bound_tick
    assert plan.transition_tick - plan.lower_bound_tick == 200


def test_narrow_width_raises_by_default():
    with pytest.raises(DegenerateRangeError):
        plan_ranges(1.0, 0.1, 200)


def test_degenerate_range_is_configuration_error():
    with pytest.raises(ConfigurationError):
        plan_ranges(1.0, 0.1, 200, allow_widening=False)


@pytest.mark.parametrize("price", [0, -10.0, float("nan")])
def test_invalid_price(price):
    with pytest.raises(InvalidPriceError):
        plan_ranges(price, 20, 60)


@pytest.mark.parametrize("width", [0, -5, 200, 250])
def test_invalid_width(width):
    with pytest.raises(ConfigurationError):
        plan_ranges(2500.0, width, 60)


def test_invalid_spacing():
    with pytest.raises(ConfigurationError):
        plan_ranges(2500.0, 20, 0)


def test_range_plan_rejects_gap_between_ranges():
    with pytest.raises(ValidationError):
        RangePlan(
            lower_ticks=TickRange(lower=-120, upper=0),
            upper_ticks=TickRange(lower=60, upper=120),
            transition_tick=0,
            upper_bound_price=1.1,
            transition_price=1.0,
            lower_bound_price=0.9,
        )
