"""
Async event repository using Tortoise ORM.

Includes retry logic for transient database failures.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tortoise.exceptions import DBConnectionError, OperationalError

from twinrange.models import ActionType, CloseResult, Position, PriceData, Slot, StrategyStats
from keeper.models.events import ActionEvent, PositionRecord, PriceSample, StatsSnapshot
from keeper.utils.retry import retry_on_error

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    DBConnectionError,
    OperationalError,
    ConnectionError,
    TimeoutError,
)

retry_on_db_error = retry_on_error(RETRYABLE_ERRORS, label="Database operation")


def _from_timestamp(timestamp: Optional[int]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class EventRepository:
    """Writes and reads keeper events."""

    @retry_on_db_error
    async def save_price(self, price: PriceData) -> PriceSample:
        return await PriceSample.create(
            price=price.price,
            tick=price.tick,
            sqrt_price_x96=str(price.sqrt_price_x96) if price.sqrt_price_x96 is not None else None,
            observed_at=_from_timestamp(price.timestamp),
        )

    @retry_on_db_error
    async def save_position_opened(self, slot: Slot, position: Position) -> PositionRecord:
        record = await PositionRecord.create(
            token_id=position.token_id,
            slot=slot,
            tick_lower=position.tick_lower,
            tick_upper=position.tick_upper,
            liquidity=str(position.liquidity),
            principal_amount0=str(position.principal_amount0),
            principal_amount1=str(position.principal_amount1),
            price_lower=position.price_lower,
            price_upper=position.price_upper,
        )
        logger.debug(f"Saved opened {slot.value} position {position.token_id}")
        return record

    @retry_on_db_error
    async def save_position_closed(
        self,
        position: Position,
        received: CloseResult,
        fees0: int,
        fees1: int,
    ) -> int:
        """
        Mark a position record closed.

        Returns:
            Number of rows updated (0 if the position was never recorded,
            e.g. it was adopted at startup)
        """
        updated = await PositionRecord.filter(token_id=position.token_id).update(
            is_active=False,
            received_amount0=str(received.amount0),
            received_amount1=str(received.amount1),
            fees0=str(fees0),
            fees1=str(fees1),
            closed_at=datetime.now(timezone.utc),
        )
        if not updated:
            logger.info(f"No open record for position {position.token_id}; nothing to close")
        return updated

    @retry_on_db_error
    async def save_action(self, action: ActionType, details: Optional[Dict[str, Any]] = None) -> ActionEvent:
        return await ActionEvent.create(action=action, details=details)

    @retry_on_db_error
    async def save_stats(self, stats: StrategyStats) -> StatsSnapshot:
        return await StatsSnapshot.create(
            initial_token0_amount=str(stats.initial_token0_amount),
            initial_token1_amount=str(stats.initial_token1_amount),
            current_token0_amount=str(stats.current_token0_amount),
            current_token1_amount=str(stats.current_token1_amount),
            total_fees_collected_token0=str(stats.total_fees_collected_token0),
            total_fees_collected_token1=str(stats.total_fees_collected_token1),
            total_rebalance_count=stats.total_rebalance_count,
            cycle_count=stats.cycle_count,
            swap_count=stats.swap_count,
            last_rebalance_at=_from_timestamp(stats.last_rebalance_timestamp),
        )

    async def get_recent_actions(self, limit: int = 50) -> List[ActionEvent]:
        return await ActionEvent.all().order_by("-created_at").limit(limit)

    async def get_active_positions(self) -> List[PositionRecord]:
        return await PositionRecord.filter(is_active=True).order_by("tick_lower")
