"""
Pool price oracle.

Prices are derived from slot0's sqrtPriceX96 (exact), not from the integer
tick, so a read taken just past a tick boundary already reflects the move.
"""
import asyncio
import logging
import time
from typing import Optional

from twinrange.errors import ConfigurationError, InvalidPriceError, NotInitializedError
from twinrange.models import PriceData
from keeper.interfaces import PoolReader, TokenReader
from keeper.utils.math import UniswapV3Math

logger = logging.getLogger(__name__)

# Standard Uniswap V3 fee tier -> tick spacing
FEE_TIER_TICK_SPACING = {
    100: 1,
    500: 10,
    3000: 60,
    10000: 200,
}


def tick_spacing_for_fee(fee: int) -> int:
    if fee not in FEE_TIER_TICK_SPACING:
        raise ConfigurationError(f"Unknown fee tier {fee}; cannot derive tick spacing")
    return FEE_TIER_TICK_SPACING[fee]


class PriceOracle:
    """Reads the current pool price and caches static pool metadata."""

    def __init__(self, pool: PoolReader):
        self.pool = pool
        self._decimals0: Optional[int] = None
        self._decimals1: Optional[int] = None
        self._fee: Optional[int] = None
        self._tick_spacing: Optional[int] = None

    @property
    def is_initialized(self) -> bool:
        return self._tick_spacing is not None

    async def initialize(self, token0: TokenReader, token1: TokenReader) -> None:
        """
        Fetch token decimals, fee tier and tick spacing. Must complete before
        any price read.
        """
        decimals0, decimals1, fee = await asyncio.gather(
            token0.decimals(),
            token1.decimals(),
            self.pool.fee_tier(),
        )

        try:
            tick_spacing = await self.pool.tick_spacing()
        except Exception as e:
            logger.warning(f"Pool tick spacing unavailable ({e}); deriving from fee tier {fee}")
            tick_spacing = None
        if tick_spacing is None:
            tick_spacing = tick_spacing_for_fee(fee)
        if tick_spacing <= 0:
            raise ConfigurationError(f"Pool reported invalid tick spacing {tick_spacing}")

        self._decimals0 = decimals0
        self._decimals1 = decimals1
        self._fee = fee
        self._tick_spacing = tick_spacing

        logger.info(
            f"Oracle initialized: decimals0={decimals0}, decimals1={decimals1}, "
            f"fee={fee}, tick_spacing={tick_spacing}"
        )

    def _require_initialized(self) -> None:
        if not self.is_initialized:
            raise NotInitializedError("PriceOracle.initialize() has not completed")

    def get_tick_spacing(self) -> int:
        self._require_initialized()
        return self._tick_spacing

    @property
    def decimals0(self) -> int:
        self._require_initialized()
        return self._decimals0

    @property
    def decimals1(self) -> int:
        self._require_initialized()
        return self._decimals1

    @property
    def fee(self) -> int:
        self._require_initialized()
        return self._fee

    async def get_current_price(self) -> PriceData:
        """
        Read slot0 and convert to a human-scale price.

        Read failures propagate unchanged; retrying is the caller's call.
        """
        self._require_initialized()
        state = await self.pool.current_tick_and_price()

        price = UniswapV3Math.sqrt_price_x96_to_price(
            state.sqrt_price_x96, self._decimals0, self._decimals1
        )
        if price <= 0:
            raise InvalidPriceError(f"Pool returned non-positive price (sqrtPriceX96={state.sqrt_price_x96})")

        return PriceData(
            price=price,
            tick=state.tick,
            timestamp=int(time.time()),
            sqrt_price_x96=state.sqrt_price_x96,
        )
