"""
NonfungiblePositionManager-backed liquidity manager.

Mint, close (decrease + collect + burn) and read positions for one pool.
"""
import asyncio
import logging
import time
from typing import List

from web3 import Web3
from web3.contract import AsyncContract

from twinrange.models import CloseResult, MintResult, PositionSnapshot
from keeper.interfaces import LiquidityManager
from keeper.services.pool import Erc20Token
from keeper.utils.math import UniswapV3Math
from keeper.utils.retry import retry_on_rpc_error
from keeper.utils.web3 import AsyncWeb3Helper, MAX_UINT128

logger = logging.getLogger(__name__)

DEADLINE_SECONDS = 600


class UniswapV3LiquidityManager(LiquidityManager):
    """Liquidity manager for a single pool (token0, token1, fee)."""

    def __init__(
        self,
        helper: AsyncWeb3Helper,
        position_manager_address: str,
        pool_address: str,
        token0: Erc20Token,
        token1: Erc20Token,
        fee: int,
    ):
        self.helper = helper
        self.position_manager: AsyncContract = helper.make_contract_by_name(
            name="NonfungiblePositionManager",
            addr=position_manager_address,
        )
        self.pool: AsyncContract = helper.make_contract_by_name(
            name="UniswapV3Pool",
            addr=pool_address,
        )
        self.token0 = token0
        self.token1 = token1
        self.fee = fee

    @staticmethod
    def _deadline() -> int:
        return int(time.time()) + DEADLINE_SECONDS

    async def mint(
        self,
        tick_lower: int,
        tick_upper: int,
        amount0_desired: int,
        amount1_desired: int,
        amount0_min: int,
        amount1_min: int,
    ) -> MintResult:
        await asyncio.gather(
            self.token0.ensure_allowance(self.position_manager.address, amount0_desired),
            self.token1.ensure_allowance(self.position_manager.address, amount1_desired),
        )

        params = (
            Web3.to_checksum_address(self.token0.address),
            Web3.to_checksum_address(self.token1.address),
            self.fee,
            tick_lower,
            tick_upper,
            amount0_desired,
            amount1_desired,
            amount0_min,
            amount1_min,
            self.helper.address,
            self._deadline(),
        )
        receipt = await self.helper.send_contract_transaction(
            self.position_manager.functions.mint(params)
        )

        events = self.position_manager.events.IncreaseLiquidity().process_receipt(receipt)
        if not events:
            raise ValueError(f"No IncreaseLiquidity event in mint receipt {receipt['transactionHash'].hex()}")
        args = events[0]["args"]

        result = MintResult(
            token_id=args["tokenId"],
            liquidity=args["liquidity"],
            amount0_used=args["amount0"],
            amount1_used=args["amount1"],
        )
        logger.info(
            f"Minted position {result.token_id} [{tick_lower}, {tick_upper}]: "
            f"liquidity={result.liquidity}, amount0={result.amount0_used}, amount1={result.amount1_used}"
        )
        return result

    async def close(self, token_id: int) -> CloseResult:
        """
        Remove all liquidity, collect principal plus fees and burn the NFT.

        Returns:
            Total amounts collected
        """
        position = await self.get_position(token_id)

        if position.liquidity > 0:
            await self.helper.send_contract_transaction(
                self.position_manager.functions.decreaseLiquidity(
                    (token_id, position.liquidity, 0, 0, self._deadline())
                )
            )

        receipt = await self.helper.send_contract_transaction(
            self.position_manager.functions.collect(
                (token_id, self.helper.address, MAX_UINT128, MAX_UINT128)
            )
        )
        events = self.position_manager.events.Collect().process_receipt(receipt)
        amount0 = sum(event["args"]["amount0"] for event in events)
        amount1 = sum(event["args"]["amount1"] for event in events)

        await self.helper.send_contract_transaction(
            self.position_manager.functions.burn(token_id)
        )

        logger.info(f"Closed position {token_id}: collected amount0={amount0}, amount1={amount1}")
        return CloseResult(amount0=amount0, amount1=amount1)

    @retry_on_rpc_error
    async def _current_sqrt_price(self) -> int:
        slot0 = await self.pool.functions.slot0().call()
        return slot0[0]

    @retry_on_rpc_error
    async def _read_position(self, token_id: int):
        return await self.position_manager.functions.positions(token_id).call()

    async def get_position(self, token_id: int) -> PositionSnapshot:
        position_info, sqrt_price_x96 = await asyncio.gather(
            self._read_position(token_id),
            self._current_sqrt_price(),
        )
        # Position info: (nonce, operator, token0, token1, fee, tickLower,
        #                 tickUpper, liquidity, feeGrowth0, feeGrowth1,
        #                 tokensOwed0, tokensOwed1)
        tick_lower = position_info[5]
        tick_upper = position_info[6]
        liquidity = position_info[7]

        amount0, amount1 = UniswapV3Math.position_amounts(
            tick_lower, tick_upper, sqrt_price_x96, liquidity
        )
        return PositionSnapshot(
            token_id=token_id,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=liquidity,
            amount0=amount0,
            amount1=amount1,
            tokens_owed0=position_info[10],
            tokens_owed1=position_info[11],
        )

    def _belongs_to_pool(self, position_info) -> bool:
        return (
            position_info[2].lower() == self.token0.address.lower()
            and position_info[3].lower() == self.token1.address.lower()
            and position_info[4] == self.fee
        )

    async def list_positions(self, owner: str) -> List[PositionSnapshot]:
        """
        Open positions in this pool owned by `owner`. Fully drained positions
        (no liquidity, nothing owed) are skipped.
        """
        owner = Web3.to_checksum_address(owner)
        count = await self.position_manager.functions.balanceOf(owner).call()
        logger.debug(f"{owner} owns {count} position NFTs")

        snapshots = []
        for index in range(count):
            token_id = await self.position_manager.functions.tokenOfOwnerByIndex(owner, index).call()
            try:
                position_info = await self._read_position(token_id)
            except Exception as e:
                logger.warning(f"Failed to read position {token_id}: {e}")
                continue
            if not self._belongs_to_pool(position_info):
                continue

            snapshot = await self.get_position(token_id)
            if snapshot.liquidity == 0 and snapshot.tokens_owed0 == 0 and snapshot.tokens_owed1 == 0:
                continue
            snapshots.append(snapshot)

        logger.info(f"Found {len(snapshots)} open positions in pool {self.pool.address}")
        return snapshots
