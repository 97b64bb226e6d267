import os
from typing import TypeVar, Type, Optional

from dotenv import load_dotenv

load_dotenv()

T = TypeVar("T")


def get_env_variable(name: str, type_: Type[T], default: Optional[T]) -> T:
    """Type-safe wrapper for `os.getenv`.

    Args:
        name (str): Name of the environment variable.
        type_ (Type[T]): Type of the environment variable.
        default (T): Default value if the environment variable is not set.

    Returns:
        T: Value of the environment variable, or None when it is unset and
        the default is None.

    Usage:
        ```python
        from keeper.utils.env import get_env_variable

        WIDTH_PERCENT = get_env_variable("WIDTH_PERCENT", float, 20.0)
        ```
    """
    value = os.getenv(name)
    if value is None:
        return default
    try:
        if type_ is bool:
            return value.strip().lower() in ("1", "true", "yes", "on")
        return type_(value)
    except ValueError:
        raise ValueError(
            f"Environment variable '{name}' is not of type '{type_.__name__}'."
        )


# Chain access
RPC_URL = get_env_variable(
    name="RPC_URL",
    type_=str,
    default="https://base.llamarpc.com",
)
CHAIN_ID = get_env_variable(
    name="CHAIN_ID",
    type_=int,
    default=8453,
)
POOL_ADDRESS = get_env_variable(
    name="POOL_ADDRESS",
    type_=str,
    default=None,
)
POSITION_MANAGER_ADDRESS = get_env_variable(
    name="POSITION_MANAGER_ADDRESS",
    type_=str,
    default="0x03a520b32C04BF3bEEf7BEb72E919cf822Ed34f1",
)
TX_TIMEOUT_SECONDS = get_env_variable(
    name="TX_TIMEOUT_SECONDS",
    type_=int,
    default=180,
)

# Swap aggregator
SWAP_API_URL = get_env_variable(
    name="SWAP_API_URL",
    type_=str,
    default="https://api.1inch.dev/swap/v6.0",
)
SWAP_API_KEY = get_env_variable(
    name="SWAP_API_KEY",
    type_=str,
    default=None,
)

# Strategy
CHECK_INTERVAL_MS = get_env_variable(
    name="CHECK_INTERVAL_MS",
    type_=int,
    default=60_000,
)
WIDTH_PERCENT = get_env_variable(
    name="WIDTH_PERCENT",
    type_=float,
    default=20.0,
)
REBALANCE_TOLERANCE_PERCENT = get_env_variable(
    name="REBALANCE_TOLERANCE_PERCENT",
    type_=float,
    default=10.0,
)
TOKEN0_IS_BASE = get_env_variable(
    name="TOKEN0_IS_BASE",
    type_=bool,
    default=True,
)

# Event store
KEEPER_DB_URL = get_env_variable(
    name="KEEPER_DB_URL",
    type_=str,
    default="sqlite://keeper.sqlite3",
)
