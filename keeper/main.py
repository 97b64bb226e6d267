"""
Main entry point for the twin-range keeper.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Any, Dict

from pydantic import ValidationError
from dotenv import load_dotenv

from twinrange.errors import ConfigurationError, CriticalUnwindError
from twinrange.models import StrategyConfig
from keeper.models.events import close_db, init_db
from keeper.monitor import RebalanceMonitor
from keeper.orchestrator import PositionOrchestrator
from keeper.services.liqmanager import UniswapV3LiquidityManager
from keeper.services.oracle import PriceOracle
from keeper.services.pool import Erc20Token, Web3PoolReader, Web3WalletReader
from keeper.services.swap import AggregatorSwapExecutor
from keeper.services.tracking import TrackingService
from keeper.utils import env
from keeper.utils.web3 import AsyncWeb3Helper

logger = logging.getLogger(__name__)


def configure_logging(log_file: str = "keeper.log") -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


def get_config(argv=None) -> Dict[str, Any]:
    """Load configuration from environment and arguments."""
    load_dotenv()

    parser = argparse.ArgumentParser(description='Twin-range concentrated liquidity keeper')
    parser.add_argument('--pool', type=str, default=env.POOL_ADDRESS, help='Pool address')
    parser.add_argument('--position-manager', type=str, default=env.POSITION_MANAGER_ADDRESS,
                        help='NonfungiblePositionManager address')
    parser.add_argument('--rpc-url', type=str, default=env.RPC_URL, help='JSON-RPC endpoint')
    parser.add_argument('--chain-id', type=int, default=env.CHAIN_ID, help='Chain id')
    parser.add_argument('--width', type=float, default=env.WIDTH_PERCENT,
                        help='Total range width in percent of the current price')
    parser.add_argument('--interval-ms', type=int, default=env.CHECK_INTERVAL_MS,
                        help='Price check interval in milliseconds')
    parser.add_argument('--tolerance', type=float, default=env.REBALANCE_TOLERANCE_PERCENT,
                        help='Value imbalance (%%) tolerated before the balancing swap')
    parser.add_argument('--db-url', type=str, default=env.KEEPER_DB_URL, help='Event store URL')
    parser.add_argument('--no-db', action='store_true', help='Run without the event store')

    args = parser.parse_args(argv)

    return {
        'pool_address': args.pool,
        'position_manager_address': args.position_manager,
        'rpc_url': args.rpc_url,
        'chain_id': args.chain_id,
        'private_key': os.getenv('PRIVATE_KEY'),
        'swap_api_url': env.SWAP_API_URL,
        'swap_api_key': env.SWAP_API_KEY,
        'tx_timeout': env.TX_TIMEOUT_SECONDS,
        'db_url': None if args.no_db else args.db_url,
        'strategy': {
            'check_interval_ms': args.interval_ms,
            'width_percent': args.width,
            'rebalance_tolerance_percent': args.tolerance,
            'token0_is_base': env.TOKEN0_IS_BASE,
        },
    }


def build_strategy_config(config: Dict[str, Any]) -> StrategyConfig:
    try:
        return StrategyConfig(**config['strategy'])
    except ValidationError as e:
        raise ConfigurationError(f"Invalid strategy configuration: {e}") from e


async def build_keeper(config: Dict[str, Any]):
    """
    Wire the web3 collaborators, oracle and orchestrator.

    Returns:
        (helper, oracle, orchestrator)
    """
    if not config.get('pool_address'):
        raise ConfigurationError("POOL_ADDRESS (or --pool) is required")
    if not config.get('private_key'):
        raise ConfigurationError("PRIVATE_KEY is required")

    strategy = build_strategy_config(config)
    helper = AsyncWeb3Helper.make_web3(
        rpc_url=config['rpc_url'],
        private_key=config['private_key'],
        tx_timeout=config['tx_timeout'],
    )

    pool_reader = Web3PoolReader(helper, config['pool_address'])
    token0_address, token1_address = await pool_reader.token_order()
    token0 = Erc20Token(helper, token0_address)
    token1 = Erc20Token(helper, token1_address)

    oracle = PriceOracle(pool_reader)
    await oracle.initialize(token0, token1)

    liquidity_manager = UniswapV3LiquidityManager(
        helper,
        position_manager_address=config['position_manager_address'],
        pool_address=config['pool_address'],
        token0=token0,
        token1=token1,
        fee=oracle.fee,
    )
    swap_executor = AggregatorSwapExecutor(
        helper,
        api_url=config['swap_api_url'],
        chain_id=config['chain_id'],
        tokens={token0_address: token0, token1_address: token1},
        api_key=config['swap_api_key'],
    )
    wallet = Web3WalletReader(helper.address, token0, token1)
    sink = TrackingService() if config.get('db_url') else None

    orchestrator = PositionOrchestrator(
        config=strategy,
        oracle=oracle,
        liquidity_manager=liquidity_manager,
        swap_executor=swap_executor,
        wallet=wallet,
        token0=token0_address,
        token1=token1_address,
        sink=sink,
    )
    return helper, oracle, orchestrator


async def run(config: Dict[str, Any]) -> None:
    if config.get('db_url'):
        await init_db(config['db_url'])
        logger.info("Event store initialized")

    try:
        _, oracle, orchestrator = await build_keeper(config)
        await orchestrator.initialize()
        await orchestrator.recover_existing_positions()

        monitor = RebalanceMonitor(oracle, orchestrator)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, monitor.stop)

        try:
            await monitor.run()
        finally:
            await orchestrator.drain_events()
            logger.info(f"Final status: {orchestrator.status()}")
    finally:
        if config.get('db_url'):
            await close_db()


def main():
    """Main keeper loop."""
    configure_logging()
    logger.info("Starting twin-range keeper")

    config = get_config()
    try:
        asyncio.run(run(config))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except CriticalUnwindError as e:
        logger.critical(f"Keeper halted: {e}")
        sys.exit(1)

    logger.info("Keeper finished")


if __name__ == '__main__':
    main()
