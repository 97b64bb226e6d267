"""
Exception taxonomy for the twin-range keeper.

Configuration errors are fatal at startup. Mint/close/swap errors fail the
current cycle and are retried by the monitor. CriticalUnwindError means funds
are sitting in an unintended single-sided position and needs an operator.
"""
from typing import Optional


class KeeperError(Exception):
    """Base class for every error raised by the keeper."""


class ConfigurationError(KeeperError):
    """Invalid static configuration (tick spacing, width, fee tier...)."""


class DegenerateRangeError(ConfigurationError):
    """Width too small for the tick spacing: two range boundaries collapsed."""


class InvalidPriceError(KeeperError, ValueError):
    """Zero, negative or non-finite price."""


class NotInitializedError(KeeperError):
    """A component was used before its initialize() completed."""


class LedgerError(KeeperError):
    """Illegal ledger operation."""


class SlotOccupiedError(LedgerError):
    def __init__(self, slot, token_id: int):
        super().__init__(f"Slot {slot} already holds position {token_id}")
        self.slot = slot
        self.token_id = token_id


class SlotEmptyError(LedgerError):
    def __init__(self, slot):
        super().__init__(f"Slot {slot} is empty")
        self.slot = slot


class CycleInProgressError(KeeperError):
    """A rebalance cycle was requested while another one is running."""


class SwapError(KeeperError):
    """The 50/50 balancing swap failed."""


class MintError(KeeperError):
    def __init__(self, slot, message: str):
        super().__init__(f"Failed to mint {slot} position: {message}")
        self.slot = slot


class CloseError(KeeperError):
    def __init__(self, slot, token_id: int, message: str):
        super().__init__(f"Failed to close {slot} position {token_id}: {message}")
        self.slot = slot
        self.token_id = token_id


class CriticalUnwindError(KeeperError):
    """
    Closing the surviving upper position after a failed lower mint failed too.

    The position is still open on-chain and still tracked in the ledger.
    """

    def __init__(self, position, cause: Optional[BaseException] = None):
        super().__init__(
            f"Could not unwind lone position {position.token_id} "
            f"[{position.tick_lower}, {position.tick_upper}]: {cause}"
        )
        self.position = position
