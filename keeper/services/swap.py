"""
Swap executor backed by a 1inch-compatible aggregation API.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

import requests
from web3 import Web3

from keeper.interfaces import SwapExecutor
from keeper.services.pool import Erc20Token
from keeper.utils.web3 import AsyncWeb3Helper

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_INTERVAL_SECONDS = 1.1


class AggregatorSwapExecutor(SwapExecutor):
    """
    Quotes and executes swaps through the aggregator's router.

    Requests are rate limited to one per MIN_REQUEST_INTERVAL_SECONDS and run
    in a worker thread so the event loop is never blocked.
    """

    def __init__(
        self,
        helper: AsyncWeb3Helper,
        api_url: str,
        chain_id: int,
        tokens: Dict[str, Erc20Token],
        api_key: Optional[str] = None,
        min_request_interval: float = MIN_REQUEST_INTERVAL_SECONDS,
    ):
        self.helper = helper
        self.api_url = api_url.rstrip("/")
        self.chain_id = chain_id
        self.tokens = {Web3.to_checksum_address(addr): token for addr, token in tokens.items()}
        self.api_key = api_key
        self.min_request_interval = min_request_interval
        self._last_request_at = 0.0
        self._rate_lock = asyncio.Lock()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with self._rate_lock:
            wait = self.min_request_interval - (time.monotonic() - self._last_request_at)
            if wait > 0:
                await asyncio.sleep(wait)
            url = f"{self.api_url}/{self.chain_id}{path}"
            try:
                response = await asyncio.to_thread(
                    requests.get,
                    url,
                    params=params,
                    headers=self._headers(),
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            finally:
                self._last_request_at = time.monotonic()

        response.raise_for_status()
        return response.json()

    def _token(self, address: str) -> Erc20Token:
        checksum = Web3.to_checksum_address(address)
        if checksum not in self.tokens:
            raise ValueError(f"Unknown token {address}")
        return self.tokens[checksum]

    async def swap(
        self,
        token_in: str,
        token_out: str,
        amount: int,
        max_slippage_percent: float,
    ) -> int:
        if amount <= 0:
            raise ValueError(f"Swap amount must be positive, got {amount}")
        source = self._token(token_in)
        destination = self._token(token_out)

        spender = (await self._get("/approve/spender"))["address"]
        await source.ensure_allowance(spender, amount)

        balance_before = await destination.balance_of(self.helper.address)

        quote = await self._get(
            "/swap",
            params={
                "src": source.address,
                "dst": destination.address,
                "amount": str(amount),
                "from": self.helper.address,
                "origin": self.helper.address,
                "slippage": max_slippage_percent,
                "disableEstimate": "true",
            },
        )
        quoted_tx = quote["tx"]
        tx = {
            "from": self.helper.address,
            "to": Web3.to_checksum_address(quoted_tx["to"]),
            "data": quoted_tx["data"],
            "value": int(quoted_tx.get("value", 0)),
        }
        if quoted_tx.get("gas"):
            tx["gas"] = int(quoted_tx["gas"])

        logger.info(
            f"Swapping {amount} {source.address} -> {destination.address} "
            f"(quoted out {quote.get('dstAmount')}, slippage {max_slippage_percent}%)"
        )
        await self.helper.send_transaction(tx)

        balance_after = await destination.balance_of(self.helper.address)
        amount_out = balance_after - balance_before
        if amount_out <= 0:
            raise ValueError(f"Swap confirmed but {destination.address} balance did not increase")

        logger.info(f"Swap received {amount_out} of {destination.address}")
        return amount_out
