"""
web3-backed pool, token and wallet readers.
"""
import asyncio
import logging
from typing import Optional, Tuple

from web3 import Web3
from web3.contract import AsyncContract

from twinrange.models import PoolState, WalletBalances
from keeper.interfaces import PoolReader, TokenReader, WalletReader
from keeper.utils.retry import retry_on_rpc_error
from keeper.utils.web3 import AsyncWeb3Helper, MAX_UINT256

logger = logging.getLogger(__name__)


class Web3PoolReader(PoolReader):
    """Reads slot0 and static metadata from a Uniswap V3 style pool."""

    def __init__(self, helper: AsyncWeb3Helper, pool_address: str):
        self.pool: AsyncContract = helper.make_contract_by_name(
            name="UniswapV3Pool",
            addr=pool_address,
        )

    @retry_on_rpc_error
    async def current_tick_and_price(self) -> PoolState:
        slot0 = await self.pool.functions.slot0().call()
        return PoolState(sqrt_price_x96=slot0[0], tick=slot0[1])

    @retry_on_rpc_error
    async def fee_tier(self) -> int:
        return await self.pool.functions.fee().call()

    async def tick_spacing(self) -> Optional[int]:
        try:
            return await self.pool.functions.tickSpacing().call()
        except Exception as e:
            logger.warning(f"Pool {self.pool.address} does not expose tickSpacing: {e}")
            return None

    @retry_on_rpc_error
    async def token_order(self) -> Tuple[str, str]:
        token0, token1 = await asyncio.gather(
            self.pool.functions.token0().call(),
            self.pool.functions.token1().call(),
        )
        logger.info(f"Pool {self.pool.address}: token0={token0}, token1={token1}")
        return token0, token1


class Erc20Token(TokenReader):
    def __init__(self, helper: AsyncWeb3Helper, token_address: str):
        self.helper = helper
        self.contract: AsyncContract = helper.make_contract_by_name(
            name="ERC20",
            addr=token_address,
        )

    @property
    def address(self) -> str:
        return self.contract.address

    @retry_on_rpc_error
    async def decimals(self) -> int:
        return await self.contract.functions.decimals().call()

    @retry_on_rpc_error
    async def balance_of(self, owner: str) -> int:
        return await self.contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()

    @retry_on_rpc_error
    async def allowance(self, owner: str, spender: str) -> int:
        return await self.contract.functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()

    async def ensure_allowance(self, spender: str, amount: int) -> None:
        """Approve `spender` for MAX_UINT256 when its allowance is below `amount`."""
        if amount <= 0:
            return
        current = await self.allowance(self.helper.address, spender)
        if current >= amount:
            return
        logger.info(f"Approving {spender} to spend {self.address} (allowance {current} < {amount})")
        await self.helper.send_contract_transaction(
            self.contract.functions.approve(Web3.to_checksum_address(spender), MAX_UINT256)
        )


class Web3WalletReader(WalletReader):
    def __init__(self, owner: str, token0: Erc20Token, token1: Erc20Token):
        self._owner = Web3.to_checksum_address(owner)
        self.token0 = token0
        self.token1 = token1

    @property
    def address(self) -> str:
        return self._owner

    async def balances(self) -> WalletBalances:
        amount0, amount1 = await asyncio.gather(
            self.token0.balance_of(self._owner),
            self.token1.balance_of(self._owner),
        )
        return WalletBalances(token0=amount0, token1=amount1)
