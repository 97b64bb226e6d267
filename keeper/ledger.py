"""
In-memory record of the strategy's two positions and undeployed balances.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from twinrange.errors import LedgerError, SlotEmptyError, SlotOccupiedError
from twinrange.models import Position, Slot, WalletBalances

logger = logging.getLogger(__name__)


class LedgerSnapshot(BaseModel):
    """Read-only copy of the ledger."""
    upper: Optional[Position] = Field(None, description="Position in the upper slot")
    lower: Optional[Position] = Field(None, description="Position in the lower slot")
    balances: WalletBalances = Field(default_factory=WalletBalances)

    @property
    def occupied(self) -> int:
        return int(self.upper is not None) + int(self.lower is not None)

    @property
    def is_empty(self) -> bool:
        return self.occupied == 0

    @property
    def is_complete(self) -> bool:
        return self.occupied == 2


class PositionLedger:
    """
    Holds at most one position per slot plus the wallet balance cache.

    Balances are adjusted by signed deltas after every mint, close and swap;
    the ledger never queries the chain itself.
    """

    def __init__(self, balances: Optional[WalletBalances] = None):
        self._slots: Dict[Slot, Optional[Position]] = {Slot.UPPER: None, Slot.LOWER: None}
        self._balances = balances.model_copy() if balances else WalletBalances()

    def record_mint(self, slot: Slot, position: Position) -> None:
        current = self._slots[slot]
        if current is not None:
            raise SlotOccupiedError(slot.value, current.token_id)
        for other in self._slots.values():
            if other is not None and other.token_id == position.token_id:
                raise LedgerError(f"Position {position.token_id} is already tracked")
        if not position.is_active:
            raise LedgerError(f"Cannot record inactive position {position.token_id}")

        self._slots[slot] = position
        logger.debug(
            f"Recorded {slot.value} position {position.token_id} "
            f"[{position.tick_lower}, {position.tick_upper}]"
        )

    def record_close(self, slot: Slot) -> Position:
        """
        Clear `slot` and return its position, marked inactive.

        Raises:
            SlotEmptyError: nothing is recorded in the slot
        """
        position = self._slots[slot]
        if position is None:
            raise SlotEmptyError(slot.value)
        self._slots[slot] = None
        logger.debug(f"Cleared {slot.value} position {position.token_id}")
        return position.deactivated()

    def adjust_balances(self, delta0: int, delta1: int) -> WalletBalances:
        """Apply signed deltas to the tracked balances."""
        self._balances = WalletBalances(
            token0=self._balances.token0 + delta0,
            token1=self._balances.token1 + delta1,
        )
        if self._balances.token0 < 0 or self._balances.token1 < 0:
            logger.warning(
                f"Tracked balances went negative: token0={self._balances.token0}, "
                f"token1={self._balances.token1}"
            )
        return self._balances.model_copy()

    def set_balances(self, balances: WalletBalances) -> None:
        """Replace the tracked balances with externally observed values."""
        self._balances = balances.model_copy()

    def get(self, slot: Slot) -> Optional[Position]:
        return self._slots[slot]

    def occupied_slots(self) -> List[Slot]:
        return [slot for slot, position in self._slots.items() if position is not None]

    @property
    def balances(self) -> WalletBalances:
        return self._balances.model_copy()

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            upper=self._slots[Slot.UPPER],
            lower=self._slots[Slot.LOWER],
            balances=self._balances.model_copy(),
        )
