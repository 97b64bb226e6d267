import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.exceptions import TimeExhausted

from keeper.utils.env import RPC_URL, TX_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

MAX_UINT128 = (1 << 128) - 1
MAX_UINT256 = (1 << 256) - 1
DEFAULT_ABI_PATH = Path(__file__).parent / "abis"


class TransactionFailedError(RuntimeError):
    """A transaction reverted or was not confirmed in time."""


class AsyncWeb3Helper:
    """Class acting as web3 base class"""

    def __init__(self, account=None, tx_timeout: int = TX_TIMEOUT_SECONDS) -> None:
        """Initialize web3 helper"""
        self.web3: Optional[AsyncWeb3] = None
        self.account = account
        self.tx_timeout = tx_timeout

    @classmethod
    def make_web3(
        cls,
        rpc_url: str = RPC_URL,
        private_key: Optional[str] = None,
        tx_timeout: int = TX_TIMEOUT_SECONDS,
    ) -> "AsyncWeb3Helper":
        if not rpc_url:
            raise ValueError("RPC url is not configured")
        instance = AsyncWeb3Helper(tx_timeout=tx_timeout)
        instance.web3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        if private_key:
            instance.account = instance.web3.eth.account.from_key(private_key)
        return instance

    @property
    def address(self) -> str:
        if self.account is None:
            raise ValueError("No signing account configured")
        return self.account.address

    def load_abi(self, path: Path) -> Dict[str, Any]:
        """Load an ABI file"""
        if not path.is_file():
            raise ValueError(f"Invalid ABI file path {path}")

        with open(path, "r") as f:
            abi_data = json.load(f)
            if isinstance(abi_data, dict):
                return abi_data.get("abi", abi_data)
            return abi_data

    def make_contract(self, abi_path: Path, addr: str) -> AsyncContract:
        """Make a contract object"""
        if self.web3 is None:
            raise ValueError("Web3 not initialized")
        abi = self.load_abi(abi_path)
        contract = self.web3.eth.contract(address=Web3.to_checksum_address(addr), abi=abi)
        return contract

    def make_contract_by_name(self, name: str, addr: str) -> AsyncContract:
        """Make a contract object"""
        abi_path = DEFAULT_ABI_PATH / f"{name}.json"
        contract = self.make_contract(abi_path, addr)
        return contract

    async def send_contract_transaction(self, fn, value: int = 0) -> Dict[str, Any]:
        """Build, sign and send a contract function call; wait for the receipt."""
        tx = await fn.build_transaction(
            {
                "from": self.address,
                "nonce": await self.web3.eth.get_transaction_count(self.address, "pending"),
                "value": value,
            }
        )
        return await self.send_transaction(tx)

    async def _fill_fee_fields(self, tx: Dict[str, Any]) -> None:
        """EIP-1559 fees when the chain reports a base fee, legacy gasPrice otherwise."""
        block = await self.web3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            tx["gasPrice"] = await self.web3.eth.gas_price
            return
        priority_fee = await self.web3.eth.max_priority_fee
        tx["maxPriorityFeePerGas"] = priority_fee
        tx["maxFeePerGas"] = 2 * base_fee + priority_fee

    async def send_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sign and send a prepared transaction dict, then wait for confirmation.

        Raises:
            TransactionFailedError: on revert or when the receipt does not
                arrive within `tx_timeout` seconds
        """
        if "nonce" not in tx:
            tx["nonce"] = await self.web3.eth.get_transaction_count(self.address, "pending")
        if "chainId" not in tx:
            tx["chainId"] = await self.web3.eth.chain_id
        if "gas" not in tx:
            tx["gas"] = await self.web3.eth.estimate_gas(tx)
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            await self._fill_fee_fields(tx)

        signed = self.account.sign_transaction(tx)
        tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug(f"Sent transaction {tx_hash.hex()}")

        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except TimeExhausted as e:
            raise TransactionFailedError(
                f"Transaction {tx_hash.hex()} not confirmed within {self.tx_timeout}s"
            ) from e

        if receipt["status"] != 1:
            raise TransactionFailedError(f"Transaction {tx_hash.hex()} reverted")
        return receipt
