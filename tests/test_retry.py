import pytest
from unittest.mock import AsyncMock, patch

from keeper.utils.retry import retry_on_error


@pytest.mark.asyncio
async def test_retries_transient_errors_with_backoff():
    calls = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), 42])

    @retry_on_error((ConnectionError,), max_retries=3, delay_base=0.5)
    async def read():
        return await calls()

    with patch("keeper.utils.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        assert await read() == 42

    assert calls.await_count == 3
    assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    calls = AsyncMock(side_effect=TimeoutError("slow"))

    @retry_on_error((TimeoutError,), max_retries=2, delay_base=0)
    async def read():
        return await calls()

    with pytest.raises(TimeoutError):
        await read()
    assert calls.await_count == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    calls = AsyncMock(side_effect=ValueError("execution reverted"))

    @retry_on_error((ConnectionError,), delay_base=0)
    async def read():
        return await calls()

    with pytest.raises(ValueError):
        await read()
    assert calls.await_count == 1
