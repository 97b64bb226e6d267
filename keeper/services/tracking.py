"""
PersistenceSink backed by the event repository.

Every write failure is logged and dropped; tracking must never affect a
rebalance cycle.
"""
import logging
from typing import Any, Dict, Optional

from twinrange.models import ActionType, CloseResult, Position, PriceData, Slot, StrategyStats
from keeper.interfaces import PersistenceSink
from keeper.repositories.events import EventRepository

logger = logging.getLogger(__name__)


class TrackingService(PersistenceSink):
    def __init__(self, repository: Optional[EventRepository] = None):
        self.repository = repository or EventRepository()

    async def record_price(self, price: PriceData) -> None:
        try:
            await self.repository.save_price(price)
        except Exception as e:
            logger.warning(f"Failed to record price sample: {e}")

    async def record_position_opened(self, slot: Slot, position: Position) -> None:
        try:
            await self.repository.save_position_opened(slot, position)
            await self.repository.save_action(ActionType.POSITION_CREATED, {
                "slot": slot.value,
                "token_id": position.token_id,
                "tick_lower": position.tick_lower,
                "tick_upper": position.tick_upper,
                "amount0": str(position.principal_amount0),
                "amount1": str(position.principal_amount1),
            })
        except Exception as e:
            logger.warning(f"Failed to record opened position {position.token_id}: {e}")

    async def record_position_closed(
        self,
        slot: Slot,
        position: Position,
        received: CloseResult,
        fees0: int,
        fees1: int,
    ) -> None:
        try:
            await self.repository.save_position_closed(position, received, fees0, fees1)
            await self.repository.save_action(ActionType.POSITION_CLOSED, {
                "slot": slot.value,
                "token_id": position.token_id,
                "amount0": str(received.amount0),
                "amount1": str(received.amount1),
            })
        except Exception as e:
            logger.warning(f"Failed to record closed position {position.token_id}: {e}")

    async def record_action(self, action: ActionType, details: Optional[Dict[str, Any]] = None) -> None:
        try:
            await self.repository.save_action(action, details)
        except Exception as e:
            logger.warning(f"Failed to record action {action.value}: {e}")

    async def record_stats(self, stats: StrategyStats) -> None:
        try:
            await self.repository.save_stats(stats)
        except Exception as e:
            logger.warning(f"Failed to record stats snapshot: {e}")
