import math
from typing import Tuple

from twinrange.errors import ConfigurationError, InvalidPriceError


class TickMath:
    """
    Price <-> tick conversion and tick-spacing alignment.

    Prices are token1 per token0 in human units, so the token decimal
    difference is folded into every conversion:

        price = 1.0001^tick * 10^(decimals0 - decimals1)
    """

    TICK_BASE = 1.0001
    LOG_TICK_BASE = math.log(1.0001)
    LOG_TEN = math.log(10)

    MIN_TICK = -887272
    MAX_TICK = 887272

    # 1.0001^50000 stays well inside float range; larger exponents are
    # accumulated one chunk at a time.
    CHUNK = 50_000

    # Absorbs float noise when the exact tick price is fed back in
    # (e.g. log(1.0001^t) / log(1.0001) == t - 1e-12).
    _FLOOR_EPSILON = 1e-9

    @staticmethod
    def price_to_tick(price: float, decimals0: int = 18, decimals1: int = 18) -> int:
        """
        Largest tick whose price does not exceed `price`.

        Raises:
            InvalidPriceError: price is zero, negative, NaN or infinite
        """
        if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            raise InvalidPriceError(f"Invalid price: {price}")

        raw = (
            math.log(price) - (decimals0 - decimals1) * TickMath.LOG_TEN
        ) / TickMath.LOG_TICK_BASE
        return math.floor(raw + TickMath._FLOOR_EPSILON)

    @staticmethod
    def tick_to_price(tick: int, decimals0: int = 18, decimals1: int = 18) -> float:
        """Human-scale price at `tick`."""
        remaining = abs(tick)
        if remaining > TickMath.CHUNK:
            step = TickMath.TICK_BASE ** TickMath.CHUNK
            if tick < 0:
                step = 1 / step
            ratio = 1.0
            while remaining > TickMath.CHUNK:
                ratio *= step
                remaining -= TickMath.CHUNK
            tail = remaining if tick > 0 else -remaining
            ratio *= TickMath.TICK_BASE ** tail
        else:
            ratio = TickMath.TICK_BASE ** tick

        return ratio * (10 ** (decimals0 - decimals1))

    @staticmethod
    def align_tick(tick: int, spacing: int, round_up: bool) -> int:
        """
        Nearest multiple of `spacing` at or beyond `tick` in the requested
        direction. Exact multiples come back unchanged.

        Integer floor division, so negative ticks round toward -inf / +inf
        rather than toward zero.
        """
        if spacing <= 0:
            raise ConfigurationError(f"Tick spacing must be positive, got {spacing}")
        if round_up:
            return -((-tick) // spacing) * spacing
        return (tick // spacing) * spacing

    @staticmethod
    def usable_tick_bounds(spacing: int) -> Tuple[int, int]:
        """Lowest and highest ticks a position may use for this spacing."""
        if spacing <= 0:
            raise ConfigurationError(f"Tick spacing must be positive, got {spacing}")
        return (
            TickMath.align_tick(TickMath.MIN_TICK, spacing, round_up=True),
            TickMath.align_tick(TickMath.MAX_TICK, spacing, round_up=False),
        )


class UniswapV3Math:
    """
    Int-only Uniswap V3 math helpers (Q96 fixed point).
    """

    Q96 = 1 << 96
    MIN_TICK = TickMath.MIN_TICK
    MAX_TICK = TickMath.MAX_TICK

    MIN_SQRT_RATIO = 4295128739
    MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

    # (bit, multiplier) pairs from TickMath.sol
    _RATIO_STEPS = (
        (0x2, 0xFFF97272373D413259A46990580E213A),
        (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
        (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
        (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
        (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
        (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
        (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
        (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
        (0x200, 0xF987A7253AC413176F2B074CF7815E54),
        (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
        (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
        (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
        (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
        (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
        (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
        (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
        (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
        (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
        (0x80000, 0x48A170391F7DC42444E8FA2),
    )

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int = 18, decimals1: int = 18) -> float:
        """
        Convert sqrtPriceX96 to human-readable price (token1/token0).

        Args:
            sqrt_price_x96: The sqrtPriceX96 value from slot0
            decimals0: Decimals of token0
            decimals1: Decimals of token1

        Returns:
            Price as float (token1 per token0)
        """
        # Square in integers first; only the final division goes through float.
        numerator = sqrt_price_x96 * sqrt_price_x96
        price = numerator / (1 << 192)
        return price * (10 ** (decimals0 - decimals1))

    @staticmethod
    def get_sqrt_ratio_at_tick(tick: int) -> int:
        if tick < UniswapV3Math.MIN_TICK or tick > UniswapV3Math.MAX_TICK:
            raise ValueError(f"Tick {tick} outside [{UniswapV3Math.MIN_TICK}, {UniswapV3Math.MAX_TICK}]")

        abs_tick = -tick if tick < 0 else tick

        ratio = (
            0xFFFCB933BD6FAD37AA2D162D1A594001
            if abs_tick & 0x1 != 0
            else 0x100000000000000000000000000000000
        )
        for bit, multiplier in UniswapV3Math._RATIO_STEPS:
            if abs_tick & bit:
                ratio = (ratio * multiplier) >> 128

        if tick > 0:
            ratio = ((1 << 256) - 1) // ratio

        # round up to match Solidity
        return (ratio >> 32) + (1 if ratio & ((1 << 32) - 1) != 0 else 0)

    @staticmethod
    def get_amounts_for_liquidity(
        sqrt_price_x96: int,
        sqrt_price_a: int,
        sqrt_price_b: int,
        liquidity: int,
    ) -> Tuple[int, int]:
        """
        Token amounts represented by `liquidity` between two sqrt prices.
        Returns (amount0, amount1)
        """
        if sqrt_price_a > sqrt_price_b:
            sqrt_price_a, sqrt_price_b = sqrt_price_b, sqrt_price_a

        if liquidity <= 0:
            return 0, 0

        q96 = UniswapV3Math.Q96
        if sqrt_price_x96 <= sqrt_price_a:
            amount0 = (liquidity * (sqrt_price_b - sqrt_price_a) * q96) // (sqrt_price_a * sqrt_price_b)
            return amount0, 0

        if sqrt_price_x96 < sqrt_price_b:
            amount0 = (liquidity * (sqrt_price_b - sqrt_price_x96) * q96) // (sqrt_price_x96 * sqrt_price_b)
            amount1 = (liquidity * (sqrt_price_x96 - sqrt_price_a)) // q96
            return amount0, amount1

        amount1 = (liquidity * (sqrt_price_b - sqrt_price_a)) // q96
        return 0, amount1

    @staticmethod
    def position_amounts(
        tick_lower: int,
        tick_upper: int,
        sqrt_price_x96: int,
        liquidity: int,
    ) -> Tuple[int, int]:
        """Current (amount0, amount1) value of a position's liquidity."""
        return UniswapV3Math.get_amounts_for_liquidity(
            sqrt_price_x96,
            UniswapV3Math.get_sqrt_ratio_at_tick(tick_lower),
            UniswapV3Math.get_sqrt_ratio_at_tick(tick_upper),
            liquidity,
        )
