"""
Polling loop that watches the pool tick and triggers rebalance cycles.
"""
import asyncio
import logging
from typing import Optional

from twinrange.errors import ConfigurationError, CriticalUnwindError
from twinrange.models import ActionType, RebalanceDecision
from keeper.orchestrator import PositionOrchestrator
from keeper.services.oracle import PriceOracle

logger = logging.getLogger(__name__)


class RebalanceMonitor:
    """
    Sequential monitor: one check (and at most one cycle) per iteration.

    A failed iteration is logged and retried after `error_backoff_seconds`.
    A critical unwind failure or a configuration error stops the loop and
    propagates.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        orchestrator: PositionOrchestrator,
        interval_seconds: Optional[float] = None,
        error_backoff_seconds: Optional[float] = None,
    ):
        self.oracle = oracle
        self.orchestrator = orchestrator
        config = orchestrator.config
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else config.check_interval_seconds
        )
        self.error_backoff_seconds = (
            error_backoff_seconds if error_backoff_seconds is not None else config.error_backoff_seconds
        )
        self._stop_event = asyncio.Event()

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request a stop. Takes effect between iterations."""
        logger.info("Monitor stop requested")
        self._stop_event.set()

    async def check_once(self) -> RebalanceDecision:
        price_data = await self.oracle.get_current_price()
        self.orchestrator.observe(price_data)

        decision = self.orchestrator.decide(price_data.tick)
        if decision == RebalanceDecision.HOLD:
            logger.debug(f"Tick {price_data.tick} within thresholds; holding")
            return decision

        if decision == RebalanceDecision.REBALANCE:
            direction = self.orchestrator.breach_direction(price_data.tick)
            logger.info(
                f"Tick {price_data.tick} breached thresholds "
                f"({direction.value if direction else 'unknown'}); rebalancing"
            )
            self.orchestrator.record_action(ActionType.POSITION_OUT_OF_RANGE, {
                "tick": price_data.tick,
                "price": price_data.price,
                "direction": direction.value if direction else None,
            })
        else:
            logger.info("Ledger not in steady state; resuming rebalance cycle")

        if self.orchestrator.cycle_in_progress:
            logger.info("Rebalance cycle already running; skipping this check")
            return decision

        await self.orchestrator.run_cycle(price_data)
        await self.orchestrator.reconcile_balances()
        return decision

    async def run(self, iterations: Optional[int] = None) -> None:
        """
        Loop until stop() is called, a critical error occurs, or
        `iterations` checks have run.
        """
        logger.info(
            f"Monitor started (interval {self.interval_seconds}s, "
            f"backoff {self.error_backoff_seconds}s)"
        )
        completed = 0
        while not self.is_stopped:
            if iterations is not None and completed >= iterations:
                break
            completed += 1

            try:
                await self.check_once()
            except CriticalUnwindError as e:
                logger.critical(f"Halting monitor: {e}")
                raise
            except ConfigurationError as e:
                logger.critical(f"Halting monitor on configuration error: {e}")
                raise
            except Exception as e:
                logger.error(f"Monitor iteration failed: {e}", exc_info=True)
                self.orchestrator.record_action(ActionType.STRATEGY_ERROR, {"error": str(e)})
                await self._sleep(self.error_backoff_seconds)
                continue

            await self._sleep(self.interval_seconds)

        logger.info(f"Monitor stopped after {completed} checks")

    async def _sleep(self, seconds: float) -> None:
        if self.is_stopped:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
