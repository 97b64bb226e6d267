#!/usr/bin/env python3
"""
Close every position the keeper wallet holds in the configured pool.

Usage:
    python scripts/close_positions.py [--pool 0x...] [--dry-run]
"""
import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from keeper.main import build_keeper, configure_logging
from keeper.utils import env

logger = logging.getLogger("close_positions")


async def close_all(config, dry_run: bool = False) -> int:
    """
    Returns:
        Number of positions that could not be closed
    """
    _, _, orchestrator = await build_keeper(config)
    manager = orchestrator.liquidity_manager
    owner = orchestrator.wallet.address

    positions = await manager.list_positions(owner)
    logger.info(f"Found {len(positions)} positions for {owner}")

    failures = 0
    total0 = total1 = 0
    for position in positions:
        logger.info(
            f"Position {position.token_id} [{position.tick_lower}, {position.tick_upper}]: "
            f"liquidity={position.liquidity}, amount0={position.amount0}, amount1={position.amount1}"
        )
        if dry_run:
            continue
        try:
            result = await manager.close(position.token_id)
        except Exception as e:
            failures += 1
            logger.error(f"Failed to close position {position.token_id}: {e}")
            continue
        total0 += result.amount0
        total1 += result.amount1
        logger.info(f"Closed {position.token_id}: amount0={result.amount0}, amount1={result.amount1}")

    logger.info(f"Returned to wallet: token0={total0}, token1={total1}; failures={failures}")
    return failures


def main():
    configure_logging(log_file="close_positions.log")
    load_dotenv()

    parser = argparse.ArgumentParser(description="Close all keeper positions")
    parser.add_argument("--pool", type=str, default=env.POOL_ADDRESS, help="Pool address")
    parser.add_argument("--dry-run", action="store_true", help="List positions without closing")
    args = parser.parse_args()

    config = {
        'pool_address': args.pool,
        'position_manager_address': env.POSITION_MANAGER_ADDRESS,
        'rpc_url': env.RPC_URL,
        'chain_id': env.CHAIN_ID,
        'private_key': os.getenv('PRIVATE_KEY'),
        'swap_api_url': env.SWAP_API_URL,
        'swap_api_key': env.SWAP_API_KEY,
        'tx_timeout': env.TX_TIMEOUT_SECONDS,
        'db_url': None,
        'strategy': {'width_percent': env.WIDTH_PERCENT},
    }

    failures = asyncio.run(close_all(config, dry_run=args.dry_run))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
