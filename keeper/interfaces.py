"""
Abstract collaborators consumed by the oracle and the orchestrator.

Concrete web3 / HTTP / ORM implementations live in keeper.services; tests
substitute mocks.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from twinrange.models import (
    ActionType,
    CloseResult,
    MintResult,
    PoolState,
    Position,
    PositionSnapshot,
    PriceData,
    Slot,
    StrategyStats,
    WalletBalances,
)


class LiquidityManager(ABC):
    """Mints, closes and inspects concentrated-liquidity positions."""

    @abstractmethod
    async def mint(
        self,
        tick_lower: int,
        tick_upper: int,
        amount0_desired: int,
        amount1_desired: int,
        amount0_min: int,
        amount1_min: int,
    ) -> MintResult:
        """Open a position and wait for confirmation."""
        pass

    @abstractmethod
    async def close(self, token_id: int) -> CloseResult:
        """Withdraw all liquidity, collect principal plus fees, burn the NFT."""
        pass

    @abstractmethod
    async def get_position(self, token_id: int) -> PositionSnapshot:
        pass

    @abstractmethod
    async def list_positions(self, owner: str) -> List[PositionSnapshot]:
        """Positions in this pool owned by `owner`."""
        pass


class SwapExecutor(ABC):
    @abstractmethod
    async def swap(
        self,
        token_in: str,
        token_out: str,
        amount: int,
        max_slippage_percent: float,
    ) -> int:
        """
        Swap `amount` of token_in and wait for confirmation. Handles
        allowance itself.

        Returns:
            Raw amount of token_out received
        """
        pass


class PoolReader(ABC):
    @abstractmethod
    async def current_tick_and_price(self) -> PoolState:
        pass

    @abstractmethod
    async def fee_tier(self) -> int:
        pass

    @abstractmethod
    async def tick_spacing(self) -> Optional[int]:
        """Pool tick spacing, or None when the pool does not expose it."""
        pass

    @abstractmethod
    async def token_order(self) -> Tuple[str, str]:
        pass


class TokenReader(ABC):
    """Read-only handle on one ERC-20 token."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    async def decimals(self) -> int:
        pass


class WalletReader(ABC):
    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    async def balances(self) -> WalletBalances:
        """Current on-chain token0/token1 balances of the wallet."""
        pass


class PersistenceSink(ABC):
    """
    Fire-and-forget observability records. Implementations may fail; the
    orchestrator never lets a sink failure reach a rebalance cycle.
    """

    @abstractmethod
    async def record_price(self, price: PriceData) -> None:
        pass

    @abstractmethod
    async def record_position_opened(self, slot: Slot, position: Position) -> None:
        pass

    @abstractmethod
    async def record_position_closed(
        self,
        slot: Slot,
        position: Position,
        received: CloseResult,
        fees0: int,
        fees1: int,
    ) -> None:
        pass

    @abstractmethod
    async def record_action(
        self,
        action: ActionType,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    @abstractmethod
    async def record_stats(self, stats: StrategyStats) -> None:
        pass
