from unittest.mock import AsyncMock, MagicMock

import pytest

from keeper.services.oracle import PriceOracle, tick_spacing_for_fee
from keeper.utils.math import UniswapV3Math
from twinrange.errors import ConfigurationError, NotInitializedError
from twinrange.models import PoolState


def make_token(decimals: int):
    token = MagicMock()
    token.decimals = AsyncMock(return_value=decimals)
    return token


@pytest.fixture
def pool():
    pool = MagicMock()
    pool.fee_tier = AsyncMock(return_value=3000)
    pool.tick_spacing = AsyncMock(return_value=60)
    pool.current_tick_and_price = AsyncMock(
        return_value=PoolState(tick=0, sqrt_price_x96=UniswapV3Math.get_sqrt_ratio_at_tick(0))
    )
    return pool


@pytest.mark.asyncio
async def test_initialize_caches_metadata(pool):
    oracle = PriceOracle(pool)
    await oracle.initialize(make_token(18), make_token(6))

    assert oracle.get_tick_spacing() == 60
    assert oracle.decimals0 == 18
    assert oracle.decimals1 == 6
    assert oracle.fee == 3000


@pytest.mark.asyncio
async def test_tick_spacing_before_initialize():
    oracle = PriceOracle(MagicMock())
    with pytest.raises(NotInitializedError):
        oracle.get_tick_spacing()
    with pytest.raises(NotInitializedError):
        await oracle.get_current_price()


@pytest.mark.asyncio
async def test_tick_spacing_falls_back_to_fee_tier(pool):
    pool.fee_tier.return_value = 500
    pool.tick_spacing.return_value = None
    oracle = PriceOracle(pool)
    await oracle.initialize(make_token(18), make_token(18))
    assert oracle.get_tick_spacing() == 10


@pytest.mark.asyncio
async def test_tick_spacing_error_falls_back_to_fee_tier(pool):
    pool.fee_tier.return_value = 10000
    pool.tick_spacing.side_effect = Exception("execution reverted")
    oracle = PriceOracle(pool)
    await oracle.initialize(make_token(18), make_token(18))
    assert oracle.get_tick_spacing() == 200


@pytest.mark.asyncio
async def test_unknown_fee_tier_without_spacing(pool):
    pool.fee_tier.return_value = 2500
    pool.tick_spacing.return_value = None
    oracle = PriceOracle(pool)
    with pytest.raises(ConfigurationError):
        await oracle.initialize(make_token(18), make_token(18))
    assert not oracle.is_initialized


@pytest.mark.asyncio
async def test_current_price_uses_sqrt_price(pool):
    sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(-198_080)
    pool.current_tick_and_price.return_value = PoolState(tick=-198_080, sqrt_price_x96=sqrt_price)
    oracle = PriceOracle(pool)
    await oracle.initialize(make_token(18), make_token(6))

    price_data = await oracle.get_current_price()

    assert price_data.tick == -198_080
    assert price_data.sqrt_price_x96 == sqrt_price
    assert price_data.price == pytest.approx(2500.0, rel=1e-4)
    assert price_data.timestamp > 0


@pytest.mark.asyncio
async def test_read_failure_propagates(pool):
    oracle = PriceOracle(pool)
    await oracle.initialize(make_token(18), make_token(18))
    pool.current_tick_and_price.side_effect = ConnectionError("rpc down")
    with pytest.raises(ConnectionError):
        await oracle.get_current_price()


@pytest.mark.parametrize("fee,spacing", [(100, 1), (500, 10), (3000, 60), (10000, 200)])
def test_tick_spacing_for_fee(fee, spacing):
    assert tick_spacing_for_fee(fee) == spacing
