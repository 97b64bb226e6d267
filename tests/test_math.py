import math
import random

import pytest

from keeper.utils.math import TickMath, UniswapV3Math
from twinrange.errors import ConfigurationError, InvalidPriceError


class TestTickMath:
    def test_tick_zero_is_price_one(self):
        assert TickMath.tick_to_price(0) == 1.0
        assert TickMath.price_to_tick(1.0) == 0

    def test_price_to_tick_floors(self):
        # 1.00015 sits between tick 1 (1.0001) and tick 2 (1.00020001)
        assert TickMath.price_to_tick(1.00015) == 1
        assert TickMath.price_to_tick(0.99995) == -1

    def test_exact_tick_prices_do_not_drop_a_tick(self):
        for tick in (-200_000, -60, -1, 1, 60, 12345, 200_000):
            assert TickMath.price_to_tick(TickMath.tick_to_price(tick)) == tick

    def test_decimal_adjustment(self):
        # WETH (18) / USDC (6): price 2500 lives around tick -198080
        tick = TickMath.price_to_tick(2500.0, decimals0=18, decimals1=6)
        assert -198_100 < tick < -198_000
        price = TickMath.tick_to_price(tick, decimals0=18, decimals1=6)
        assert price <= 2500.0
        assert 2500.0 / price < 1.0001

    def test_chunked_exponentiation_matches_direct(self):
        for tick in (50_001, 120_000, -120_000, 400_000, -400_000):
            expected = math.exp(tick * math.log(1.0001))
            assert TickMath.tick_to_price(tick) == pytest.approx(expected, rel=1e-9)

    def test_monotonic(self):
        prices = [0.001, 0.5, 1.0, 3.2, 2500.0, 1e6]
        ticks = [TickMath.price_to_tick(p) for p in prices]
        assert ticks == sorted(ticks)

    def test_round_trip_within_one_spacing(self):
        rng = random.Random(7)
        spacing = 60
        for _ in range(200):
            tick = rng.randint(-600_000, 600_000)
            price = TickMath.tick_to_price(tick)
            back = TickMath.price_to_tick(TickMath.tick_to_price(TickMath.price_to_tick(price)))
            assert abs(back - tick) <= spacing

    @pytest.mark.parametrize("price", [0, -1.5, float("nan"), float("inf")])
    def test_invalid_price(self, price):
        with pytest.raises(InvalidPriceError):
            TickMath.price_to_tick(price)

    def test_invalid_price_is_value_error(self):
        with pytest.raises(ValueError):
            TickMath.price_to_tick(0)

    def test_align_tick_directions(self):
        assert TickMath.align_tick(65, 60, round_up=False) == 60
        assert TickMath.align_tick(65, 60, round_up=True) == 120
        assert TickMath.align_tick(-65, 60, round_up=False) == -120
        assert TickMath.align_tick(-65, 60, round_up=True) == -60

    def test_align_exact_multiple_unchanged(self):
        for tick in (-120, 0, 180):
            assert TickMath.align_tick(tick, 60, round_up=True) == tick
            assert TickMath.align_tick(tick, 60, round_up=False) == tick

    def test_align_idempotent(self):
        rng = random.Random(11)
        for _ in range(200):
            tick = rng.randint(-887_272, 887_272)
            spacing = rng.choice([1, 10, 60, 200])
            for up in (True, False):
                once = TickMath.align_tick(tick, spacing, up)
                assert TickMath.align_tick(once, spacing, up) == once
                assert once % spacing == 0

    @pytest.mark.parametrize("spacing", [0, -10])
    def test_align_invalid_spacing(self, spacing):
        with pytest.raises(ConfigurationError):
            TickMath.align_tick(100, spacing, round_up=True)

    def test_usable_tick_bounds(self):
        low, high = TickMath.usable_tick_bounds(60)
        assert low == -887220
        assert high == 887220


class TestUniswapV3Math:
    def test_get_sqrt_ratio_at_tick_zero(self):
        # Tick 0 should be exactly 2^96
        assert UniswapV3Math.get_sqrt_ratio_at_tick(0) == 1 << 96

    def test_get_sqrt_ratio_at_tick_min(self):
        ratio = UniswapV3Math.get_sqrt_ratio_at_tick(UniswapV3Math.MIN_TICK)
        assert ratio == UniswapV3Math.MIN_SQRT_RATIO

    def test_get_sqrt_ratio_at_tick_max(self):
        ratio = UniswapV3Math.get_sqrt_ratio_at_tick(UniswapV3Math.MAX_TICK)
        assert ratio == UniswapV3Math.MAX_SQRT_RATIO

    def test_get_sqrt_ratio_out_of_range(self):
        with pytest.raises(ValueError):
            UniswapV3Math.get_sqrt_ratio_at_tick(UniswapV3Math.MAX_TICK + 1)

    def test_sqrt_price_to_price_matches_tick_price(self):
        sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(-196_257)
        price = UniswapV3Math.sqrt_price_x96_to_price(sqrt_price, 18, 6)
        assert price == pytest.approx(TickMath.tick_to_price(-196_257, 18, 6), rel=1e-6)

    def test_range_above_price_is_token0_only(self):
        sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(-120)
        amount0, amount1 = UniswapV3Math.position_amounts(0, 600, sqrt_price, 10**18)
        assert amount0 > 0
        assert amount1 == 0

    def test_range_below_price_is_token1_only(self):
        sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(720)
        amount0, amount1 = UniswapV3Math.position_amounts(0, 600, sqrt_price, 10**18)
        assert amount0 == 0
        assert amount1 > 0

    def test_amounts_in_range_use_both(self):
        sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(0)
        amount0, amount1 = UniswapV3Math.position_amounts(-100, 100, sqrt_price, 10**18)
        assert amount0 > 0
        assert amount1 > 0

    def test_zero_liquidity(self):
        sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(0)
        assert UniswapV3Math.position_amounts(-100, 100, sqrt_price, 0) == (0, 0)
