"""
Rebalancing state machine for the two-position strategy.

    NO_POSITIONS -> BALANCING -> OPENING -> HOLDING -> CLOSING -> BALANCING -> ...

HOLDING is the only steady state. A cycle either completes or fails with
the ledger in a state the next cycle can resume from: both slots populated,
both empty, or (after a failed close) the slot that could not be closed.
The one exception is a failed unwind, which halts the strategy.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from twinrange.errors import (
    CloseError,
    CriticalUnwindError,
    CycleInProgressError,
    KeeperError,
    MintError,
    SwapError,
)
from twinrange.models import (
    ActionType,
    BreachDirection,
    CloseResult,
    Position,
    PositionSnapshot,
    PriceData,
    RangePlan,
    RebalanceDecision,
    Slot,
    StrategyConfig,
    StrategyPhase,
    StrategyStats,
    WalletBalances,
)
from keeper import policy
from keeper.interfaces import LiquidityManager, PersistenceSink, SwapExecutor, WalletReader
from keeper.ledger import PositionLedger
from keeper.range_planner import plan_ranges
from keeper.services.oracle import PriceOracle
from keeper.utils.math import TickMath

logger = logging.getLogger(__name__)


class OrchestratorState(BaseModel):
    """Mutable strategy state. Only the orchestrator task writes to it."""
    phase: StrategyPhase = StrategyPhase.NO_POSITIONS
    stats: StrategyStats = Field(default_factory=StrategyStats)
    tick_spacing: Optional[int] = None
    last_plan: Optional[RangePlan] = None
    last_rebalance_price: Optional[float] = None
    last_rebalance_sqrt_price_x96: Optional[int] = None


class PositionOrchestrator:
    """
    Drives close -> balance -> open cycles through the external collaborators
    and keeps the ledger and stats in step with every confirmed transaction.
    """

    def __init__(
        self,
        config: StrategyConfig,
        oracle: PriceOracle,
        liquidity_manager: LiquidityManager,
        swap_executor: SwapExecutor,
        wallet: WalletReader,
        token0: str,
        token1: str,
        sink: Optional[PersistenceSink] = None,
        ledger: Optional[PositionLedger] = None,
    ):
        self.config = config
        self.oracle = oracle
        self.liquidity_manager = liquidity_manager
        self.swap_executor = swap_executor
        self.wallet = wallet
        self.token0 = token0
        self.token1 = token1
        self.sink = sink
        self.ledger = ledger or PositionLedger()
        self.state = OrchestratorState()

        self._cycle_lock = asyncio.Lock()
        self._pending_events: Set[asyncio.Task] = set()
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Load tick spacing and the starting wallet balances, and check that
        the configured width yields two non-empty ranges at this spacing.

        Raises:
            ConfigurationError: the width collapses after tick alignment
        """
        self.state.tick_spacing = self.oracle.get_tick_spacing()

        price_data = await self.oracle.get_current_price()
        plan = plan_ranges(
            price_data.price,
            self.config.width_percent,
            self.state.tick_spacing,
            self.oracle.decimals0,
            self.oracle.decimals1,
            allow_widening=self.config.allow_range_widening,
        )
        if plan.widened:
            logger.warning(
                f"Width {self.config.width_percent}% is narrower than the tick spacing "
                f"{self.state.tick_spacing} allows; ranges will be widened by one spacing"
            )

        balances = await self.wallet.balances()
        self.ledger.set_balances(balances)

        stats = self.state.stats
        stats.initial_token0_amount = balances.token0
        stats.initial_token1_amount = balances.token1
        stats.current_token0_amount = balances.token0
        stats.current_token1_amount = balances.token1
        stats.start_timestamp = int(time.time())

        self._initialized = True
        logger.info(
            f"Orchestrator initialized for {self.wallet.address}: "
            f"token0={balances.token0}, token1={balances.token1}, "
            f"tick_spacing={self.state.tick_spacing}"
        )

    async def recover_existing_positions(self) -> None:
        """
        Adopt an existing pair of positions, or close whatever else the
        wallet holds so the strategy starts from a clean slate.
        """
        self._require_initialized()
        snapshots = await self.liquidity_manager.list_positions(self.wallet.address)
        if not snapshots:
            logger.info("No existing positions found")
            return

        if len(snapshots) == 2:
            self._adopt_positions(snapshots)
            return

        logger.warning(f"Found {len(snapshots)} existing positions; closing all as strays")
        for snapshot in snapshots:
            await self._close_stray(snapshot)
        self._refresh_current_stats()

    def _adopt_positions(self, snapshots: List[PositionSnapshot]) -> None:
        lower, upper = sorted(snapshots, key=lambda s: s.tick_lower)
        for slot, snapshot in ((Slot.LOWER, lower), (Slot.UPPER, upper)):
            position = self._position_from_snapshot(snapshot)
            self.ledger.record_mint(slot, position)
            logger.info(
                f"Adopted existing {slot.value} position {position.token_id} "
                f"[{position.tick_lower}, {position.tick_upper}]"
            )
        self.state.phase = StrategyPhase.HOLDING

    def _position_from_snapshot(self, snapshot: PositionSnapshot) -> Position:
        position = Position(
            token_id=snapshot.token_id,
            tick_lower=snapshot.tick_lower,
            tick_upper=snapshot.tick_upper,
            liquidity=snapshot.liquidity,
            price_lower=self._tick_price(snapshot.tick_lower),
            price_upper=self._tick_price(snapshot.tick_upper),
        )
        # On-chain value at adoption time is the best available fee baseline
        return position.with_principal(snapshot.amount0, snapshot.amount1)

    async def _close_stray(self, snapshot: PositionSnapshot) -> None:
        self._emit("record_action", ActionType.STRAY_POSITION_DETECTED, {
            "token_id": snapshot.token_id,
            "tick_lower": snapshot.tick_lower,
            "tick_upper": snapshot.tick_upper,
            "liquidity": str(snapshot.liquidity),
        })
        try:
            result = await self.liquidity_manager.close(snapshot.token_id)
        except Exception as e:
            logger.error(f"Failed to close stray position {snapshot.token_id}: {e}")
            self._emit("record_action", ActionType.POSITION_CLOSE_FAILED, {
                "token_id": snapshot.token_id,
                "error": str(e),
            })
            return

        self.ledger.adjust_balances(result.amount0, result.amount1)
        logger.info(
            f"Closed stray position {snapshot.token_id}: "
            f"received token0={result.amount0}, token1={result.amount1}"
        )
        self._emit("record_action", ActionType.STRAY_POSITION_CLOSED, {
            "token_id": snapshot.token_id,
            "amount0": str(result.amount0),
            "amount1": str(result.amount1),
        })

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    @property
    def is_halted(self) -> bool:
        return self.state.phase == StrategyPhase.HALTED

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def decide(self, current_tick: int) -> RebalanceDecision:
        if self.is_halted:
            return RebalanceDecision.HOLD
        self._require_initialized()
        return policy.decide(
            self.ledger.snapshot(),
            current_tick,
            self.state.tick_spacing,
            self.config.threshold_spacings,
        )

    def breach_direction(self, current_tick: int) -> Optional[BreachDirection]:
        """Which side of the range `current_tick` has left through, if any."""
        snapshot = self.ledger.snapshot()
        if not snapshot.is_complete:
            return None
        thresholds = policy.compute_thresholds(
            snapshot.upper, snapshot.lower, self.state.tick_spacing, self.config.threshold_spacings
        )
        return policy.evaluate_breach(current_tick, thresholds, self.config.token0_is_base)

    def observe(self, price_data: PriceData) -> None:
        """Count a monitor check and record the price sample."""
        self.state.stats.cycle_count += 1
        self._emit("record_price", price_data)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, price_data: Optional[PriceData] = None) -> None:
        """
        Close whatever is open, rebalance the wallet to 50/50 and open a
        fresh pair of positions.

        Raises:
            CycleInProgressError: another cycle holds the lock
            CloseError, SwapError, MintError: cycle failed; safe to retry
            CriticalUnwindError: a lone position could not be unwound
        """
        if self._cycle_lock.locked():
            raise CycleInProgressError("A rebalance cycle is already running")
        if self.is_halted:
            raise KeeperError("Strategy is halted after a failed unwind; operator action required")
        self._require_initialized()

        async with self._cycle_lock:
            try:
                if self.ledger.occupied_slots():
                    await self.close_positions()

                if price_data is None:
                    price_data = await self.oracle.get_current_price()
                await self.ensure_balanced(price_data)

                # Balancing may have moved the price; plan against a fresh read
                price_data = await self.oracle.get_current_price()
                await self.open_positions(price_data)
                await self.update_rebalance_baseline()
            except CriticalUnwindError:
                raise
            except Exception as e:
                self._emit("record_action", ActionType.REBALANCE_FAILED, {"error": str(e)})
                raise
            finally:
                self._refresh_current_stats()
                self._emit("record_stats", self.state.stats.model_copy())

    async def close_positions(self) -> None:
        """
        Close every occupied slot, lower first. A slot whose close fails
        stays in the ledger; the first failure is raised after the other
        slot has been attempted.
        """
        self.state.phase = StrategyPhase.CLOSING
        first_error: Optional[CloseError] = None

        for slot in (Slot.LOWER, Slot.UPPER):
            if self.ledger.get(slot) is None:
                continue
            try:
                await self._close_slot(slot)
            except CloseError as e:
                logger.error(str(e))
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
        self.state.phase = StrategyPhase.NO_POSITIONS

    async def _close_slot(self, slot: Slot) -> CloseResult:
        position = self.ledger.get(slot)
        try:
            result = await self.liquidity_manager.close(position.token_id)
        except Exception as e:
            self._emit("record_action", ActionType.POSITION_CLOSE_FAILED, {
                "slot": slot.value,
                "token_id": position.token_id,
                "error": str(e),
            })
            raise CloseError(slot.value, position.token_id, str(e)) from e

        closed = self.ledger.record_close(slot)
        split = policy.separate_principal_and_fees(
            result.amount0,
            result.amount1,
            closed.principal_amount0,
            closed.principal_amount1,
        )
        if result.amount0 < closed.principal_amount0 or result.amount1 < closed.principal_amount1:
            logger.info(
                f"Position {closed.token_id} returned less than principal on one side "
                f"(received {result.amount0}/{result.amount1}, principal "
                f"{closed.principal_amount0}/{closed.principal_amount1}); fee floored at 0"
            )

        stats = self.state.stats
        stats.total_fees_collected_token0 += split.fees0
        stats.total_fees_collected_token1 += split.fees1
        self.ledger.adjust_balances(result.amount0, result.amount1)

        logger.info(
            f"Closed {slot.value} position {closed.token_id}: received "
            f"token0={result.amount0}, token1={result.amount1} "
            f"(fees token0={split.fees0}, token1={split.fees1})"
        )
        self._emit("record_position_closed", slot, closed, result, split.fees0, split.fees1)
        if split.fees0 > 0 or split.fees1 > 0:
            self._emit("record_action", ActionType.FEES_COLLECTED, {
                "token_id": closed.token_id,
                "fees0": str(split.fees0),
                "fees1": str(split.fees1),
            })
        return result

    async def ensure_balanced(self, price_data: PriceData) -> None:
        """
        Swap the larger-value token into the smaller one when the value
        imbalance exceeds the configured tolerance.

        Raises:
            SwapError: the swap failed; the cycle must not continue
        """
        self.state.phase = StrategyPhase.BALANCING
        balances = self.ledger.balances
        plan = policy.plan_balancing_swap(
            balances,
            price_data.price,
            self.oracle.decimals0,
            self.oracle.decimals1,
            self.config.rebalance_tolerance_percent,
        )
        if plan is None:
            return

        token_in, token_out = (self.token0, self.token1) if plan.zero_for_one else (self.token1, self.token0)
        logger.info(
            f"Imbalance {plan.deviation_percent:.2f}% > {self.config.rebalance_tolerance_percent}%: "
            f"swapping {plan.amount_in} of {token_in} for {token_out}"
        )
        try:
            amount_out = await self.swap_executor.swap(
                token_in,
                token_out,
                plan.amount_in,
                self.config.swap_slippage_percent,
            )
        except Exception as e:
            self._emit("record_action", ActionType.SWAP_FAILED, {
                "token_in": token_in,
                "token_out": token_out,
                "amount_in": str(plan.amount_in),
                "error": str(e),
            })
            raise SwapError(f"Balancing swap of {plan.amount_in} {token_in} failed: {e}") from e

        if plan.zero_for_one:
            self.ledger.adjust_balances(-plan.amount_in, amount_out)
        else:
            self.ledger.adjust_balances(amount_out, -plan.amount_in)
        self.state.stats.swap_count += 1
        logger.info(f"Swap confirmed: received {amount_out} of {token_out}")

    async def open_positions(self, price_data: PriceData) -> None:
        """
        Mint the upper position with the whole wallet, then the lower one
        with the token1 the upper mint left over. A failed lower mint
        closes the upper position again before the failure propagates.
        """
        self.state.phase = StrategyPhase.OPENING
        plan = plan_ranges(
            price_data.price,
            self.config.width_percent,
            self.state.tick_spacing,
            self.oracle.decimals0,
            self.oracle.decimals1,
            allow_widening=self.config.allow_range_widening,
        )
        self.state.last_plan = plan

        balances = self.ledger.balances
        try:
            await self._mint_slot(
                Slot.UPPER,
                plan.upper_ticks.lower,
                plan.upper_ticks.upper,
                amount0=balances.token0,
                amount1=balances.token1,
                amount0_min=policy.minimum_amount(balances.token0, self.config.mint_slippage_percent),
                amount1_min=0,
            )
        except MintError:
            self.state.phase = StrategyPhase.NO_POSITIONS
            raise

        remaining1 = self.ledger.balances.token1
        try:
            await self._mint_slot(
                Slot.LOWER,
                plan.lower_ticks.lower,
                plan.lower_ticks.upper,
                amount0=0,
                amount1=remaining1,
                amount0_min=0,
                amount1_min=policy.minimum_amount(remaining1, self.config.mint_slippage_percent),
            )
        except MintError as e:
            await self._unwind_upper(e)
            raise

        self.state.phase = StrategyPhase.HOLDING
        stats = self.state.stats
        stats.total_rebalance_count += 1
        stats.last_rebalance_timestamp = int(time.time())

    async def _mint_slot(
        self,
        slot: Slot,
        tick_lower: int,
        tick_upper: int,
        amount0: int,
        amount1: int,
        amount0_min: int,
        amount1_min: int,
    ) -> Position:
        logger.info(
            f"Minting {slot.value} position [{tick_lower}, {tick_upper}] with "
            f"token0={amount0}, token1={amount1} (min {amount0_min}/{amount1_min})"
        )
        try:
            result = await self.liquidity_manager.mint(
                tick_lower,
                tick_upper,
                amount0,
                amount1,
                amount0_min,
                amount1_min,
            )
        except Exception as e:
            self._emit("record_action", ActionType.POSITION_CREATION_FAILED, {
                "slot": slot.value,
                "tick_lower": tick_lower,
                "tick_upper": tick_upper,
                "error": str(e),
            })
            raise MintError(slot.value, str(e)) from e

        position = Position(
            token_id=result.token_id,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=result.liquidity,
            price_lower=self._tick_price(tick_lower),
            price_upper=self._tick_price(tick_upper),
        ).with_principal(result.amount0_used, result.amount1_used)

        self.ledger.record_mint(slot, position)
        self.ledger.adjust_balances(-result.amount0_used, -result.amount1_used)

        logger.info(
            f"Minted {slot.value} position {position.token_id}: used "
            f"token0={result.amount0_used}, token1={result.amount1_used}"
        )
        self._emit("record_position_opened", slot, position)
        return position

    async def _unwind_upper(self, cause: MintError) -> None:
        upper = self.ledger.get(Slot.UPPER)
        logger.warning(
            f"Lower mint failed ({cause}); closing upper position {upper.token_id} "
            f"so no lone position stays open"
        )
        try:
            await self._close_slot(Slot.UPPER)
        except CloseError as e:
            self.state.phase = StrategyPhase.HALTED
            logger.critical(
                f"Unwind failed: upper position {upper.token_id} "
                f"[{upper.tick_lower}, {upper.tick_upper}] is still open. "
                f"Operator intervention required."
            )
            self._emit("record_action", ActionType.STRATEGY_ERROR, {
                "token_id": upper.token_id,
                "error": str(e),
                "critical": True,
            })
            raise CriticalUnwindError(upper, e) from e
        self.state.phase = StrategyPhase.NO_POSITIONS

    async def update_rebalance_baseline(self) -> None:
        price_data = await self.oracle.get_current_price()
        self.state.last_rebalance_price = price_data.price
        self.state.last_rebalance_sqrt_price_x96 = price_data.sqrt_price_x96
        logger.info(f"Rebalance baseline set at price {price_data.price:.6f} (tick {price_data.tick})")

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def reconcile_balances(self) -> WalletBalances:
        """
        Compare tracked balances with the wallet and adopt the wallet's
        values on divergence.
        """
        observed = await self.wallet.balances()
        tracked = self.ledger.balances
        if observed != tracked:
            logger.warning(
                f"Balance divergence: tracked token0={tracked.token0}, token1={tracked.token1}; "
                f"wallet token0={observed.token0}, token1={observed.token1}. Adopting wallet values."
            )
            self.ledger.set_balances(observed)
            self._refresh_current_stats()
        return observed

    def _refresh_current_stats(self) -> None:
        balances = self.ledger.balances
        self.state.stats.current_token0_amount = balances.token0
        self.state.stats.current_token1_amount = balances.token1

    def _tick_price(self, tick: int) -> float:
        return TickMath.tick_to_price(tick, self.oracle.decimals0, self.oracle.decimals1)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise KeeperError("PositionOrchestrator.initialize() has not completed")

    # ------------------------------------------------------------------
    # Persistence side channel
    # ------------------------------------------------------------------

    def record_action(self, action: ActionType, details: Optional[Dict[str, Any]] = None) -> None:
        self._emit("record_action", action, details)

    def _emit(self, method: str, *args: Any) -> None:
        if self.sink is None:
            return
        task = asyncio.create_task(self._deliver(method, *args))
        self._pending_events.add(task)
        task.add_done_callback(self._pending_events.discard)

    async def _deliver(self, method: str, *args: Any) -> None:
        try:
            await getattr(self.sink, method)(*args)
        except Exception as e:
            logger.warning(f"Persistence sink {method} failed: {e}")

    async def drain_events(self) -> None:
        """Wait for outstanding persistence writes."""
        if self._pending_events:
            await asyncio.gather(*list(self._pending_events), return_exceptions=True)

    def status(self) -> Dict[str, Any]:
        snapshot = self.ledger.snapshot()
        return {
            "phase": self.state.phase.value,
            "upper": snapshot.upper.token_id if snapshot.upper else None,
            "lower": snapshot.lower.token_id if snapshot.lower else None,
            "balances": snapshot.balances.model_dump(),
            "stats": self.state.stats.model_dump(),
        }
