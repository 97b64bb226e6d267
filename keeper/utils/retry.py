import asyncio
import logging
from functools import wraps
from typing import Tuple, Type

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY_BASE = 1.0  # Base delay in seconds (exponential backoff)
RPC_RETRYABLE_ERRORS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def retry_on_error(
    retryable: Tuple[Type[BaseException], ...],
    max_retries: int = MAX_RETRIES,
    delay_base: float = RETRY_DELAY_BASE,
    label: str = "Operation",
):
    """
    Decorator factory that retries an async call on transient failures with
    exponential backoff. Anything not in `retryable` is raised immediately.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except retryable as e:
                    last_exception = e
                    if attempt == max_retries - 1:
                        break
                    delay = delay_base * (2**attempt)
                    logger.warning(
                        f"{label} {func.__name__} failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
            # All retries exhausted
            logger.error(f"{label} {func.__name__} failed after {max_retries} attempts")
            raise last_exception

        return wrapper

    return decorator


retry_on_rpc_error = retry_on_error(RPC_RETRYABLE_ERRORS, label="RPC call")
