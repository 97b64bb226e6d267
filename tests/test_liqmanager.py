import pytest
from unittest.mock import MagicMock, AsyncMock

from keeper.services.liqmanager import UniswapV3LiquidityManager
from keeper.utils.math import UniswapV3Math
from keeper.utils.web3 import MAX_UINT128

# Constants for testing - Use valid hex addresses
POOL_ADDR = "0x2234567890123456789012345678901234567890"
TOKEN0 = "0x3234567890123456789012345678901234567890"
TOKEN1 = "0x4234567890123456789012345678901234567890"
OWNER = "0x5234567890123456789012345678901234567890"
POS_MANAGER_ADDR = "0x6234567890123456789012345678901234567890"
OTHER_TOKEN = "0x9234567890123456789012345678901234567890"
FEE = 3000

RECEIPT = {"transactionHash": bytes.fromhex("ab" * 32), "status": 1}


def position_info(tick_lower, tick_upper, liquidity, token0=TOKEN0, token1=TOKEN1, fee=FEE, owed0=0, owed1=0):
    return (0, OWNER, token0, token1, fee, tick_lower, tick_upper, liquidity, 0, 0, owed0, owed1)


def make_token(address):
    token = MagicMock()
    token.address = address
    token.ensure_allowance = AsyncMock()
    return token


@pytest.fixture
def helper():
    helper = MagicMock()
    helper.address = OWNER
    helper.send_contract_transaction = AsyncMock(return_value=RECEIPT)

    pm_contract = MagicMock()
    pm_contract.address = POS_MANAGER_ADDR
    pool_contract = MagicMock()
    pool_contract.address = POOL_ADDR

    def make_contract_side_effect(name, addr):
        if name == "NonfungiblePositionManager":
            return pm_contract
        if name == "UniswapV3Pool":
            return pool_contract
        return MagicMock()

    helper.make_contract_by_name.side_effect = make_contract_side_effect
    return helper


@pytest.fixture
def service(helper):
    return UniswapV3LiquidityManager(
        helper, POS_MANAGER_ADDR, POOL_ADDR, make_token(TOKEN0), make_token(TOKEN1), FEE
    )


def mock_contract_call(contract_function_mock, return_value=None, side_effect=None):
    """Helper to mock a contract function call: contract.functions.func().call() -> return_value"""
    # contract.functions.func() returns a method object
    method_obj = MagicMock()
    contract_function_mock.return_value = method_obj
    # method_obj.call() returns an awaitable (AsyncMock)
    method_obj.call = AsyncMock(return_value=return_value, side_effect=side_effect)
    return method_obj.call


def mock_slot0(service, tick):
    sqrt_price = UniswapV3Math.get_sqrt_ratio_at_tick(tick)
    mock_contract_call(service.pool.functions.slot0, [sqrt_price, tick, 0, 0, 0, 0, True])
    return sqrt_price


@pytest.mark.asyncio
async def test_mint_success(service, helper):
    service.position_manager.events.IncreaseLiquidity.return_value.process_receipt.return_value = [
        {"args": {"tokenId": 77, "liquidity": 5_000, "amount0": 900, "amount1": 0}}
    ]

    result = await service.mint(0, 600, 1_000, 500, 980, 0)

    assert result.token_id == 77
    assert result.liquidity == 5_000
    assert result.amount0_used == 900
    assert result.amount1_used == 0
    service.token0.ensure_allowance.assert_awaited_once_with(POS_MANAGER_ADDR, 1_000)
    service.token1.ensure_allowance.assert_awaited_once_with(POS_MANAGER_ADDR, 500)

    params = service.position_manager.functions.mint.call_args.args[0]
    assert params[2] == FEE
    assert params[3:9] == (0, 600, 1_000, 500, 980, 0)
    assert params[9] == OWNER
    helper.send_contract_transaction.assert_awaited_once()


@pytest.mark.asyncio
async def test_mint_without_event_fails(service):
    service.position_manager.events.IncreaseLiquidity.return_value.process_receipt.return_value = []
    with pytest.raises(ValueError, match="IncreaseLiquidity"):
        await service.mint(0, 600, 1_000, 0, 0, 0)


@pytest.mark.asyncio
async def test_mint_revert_propagates(service, helper):
    helper.send_contract_transaction.side_effect = RuntimeError("execution reverted: Price slippage check")
    with pytest.raises(RuntimeError, match="slippage"):
        await service.mint(0, 600, 1_000, 0, 980, 0)


@pytest.mark.asyncio
async def test_get_position_values_liquidity(service):
    sqrt_price = mock_slot0(service, 300)
    mock_contract_call(service.position_manager.functions.positions, position_info(0, 600, 10**15, owed0=3))

    snapshot = await service.get_position(55)

    expected0, expected1 = UniswapV3Math.position_amounts(0, 600, sqrt_price, 10**15)
    assert snapshot.token_id == 55
    assert snapshot.tick_lower == 0
    assert snapshot.tick_upper == 600
    assert snapshot.amount0 == expected0
    assert snapshot.amount1 == expected1
    assert snapshot.amount0 > 0 and snapshot.amount1 > 0
    assert snapshot.tokens_owed0 == 3


@pytest.mark.asyncio
async def test_close_decreases_collects_and_burns(service, helper):
    mock_slot0(service, 300)
    mock_contract_call(service.position_manager.functions.positions, position_info(0, 600, 10**15))
    service.position_manager.events.Collect.return_value.process_receipt.return_value = [
        {"args": {"amount0": 400, "amount1": 700}},
    ]

    result = await service.close(55)

    assert result.amount0 == 400
    assert result.amount1 == 700
    assert helper.send_contract_transaction.await_count == 3
    decrease_params = service.position_manager.functions.decreaseLiquidity.call_args.args[0]
    assert decrease_params[:4] == (55, 10**15, 0, 0)
    collect_params = service.position_manager.functions.collect.call_args.args[0]
    assert collect_params == (55, OWNER, MAX_UINT128, MAX_UINT128)
    service.position_manager.functions.burn.assert_called_once_with(55)


@pytest.mark.asyncio
async def test_close_drained_position_skips_decrease(service, helper):
    mock_slot0(service, 0)
    mock_contract_call(service.position_manager.functions.positions, position_info(-600, 0, 0, owed1=12))
    service.position_manager.events.Collect.return_value.process_receipt.return_value = [
        {"args": {"amount0": 0, "amount1": 12}},
    ]

    result = await service.close(9)

    assert result.amount1 == 12
    service.position_manager.functions.decreaseLiquidity.assert_not_called()
    assert helper.send_contract_transaction.await_count == 2


@pytest.mark.asyncio
async def test_list_positions_filters_pool_and_drained(service):
    mock_slot0(service, 0)
    mock_contract_call(service.position_manager.functions.balanceOf, 4)

    token_ids = [10, 11, 12, 13]
    infos = {
        10: position_info(-600, 0, 1_000),
        11: position_info(-600, 0, 1_000, token1=OTHER_TOKEN),
        12: position_info(0, 600, 0),
        13: position_info(0, 600, 2_000, fee=500),
    }
    index_call = MagicMock()
    index_call.call = AsyncMock(side_effect=token_ids)
    service.position_manager.functions.tokenOfOwnerByIndex.return_value = index_call

    def positions_side_effect(token_id):
        method_obj = MagicMock()
        method_obj.call = AsyncMock(return_value=infos[token_id])
        return method_obj

    service.position_manager.functions.positions.side_effect = positions_side_effect

    snapshots = await service.list_positions(OWNER)

    assert [s.token_id for s in snapshots] == [10]


@pytest.mark.asyncio
async def test_list_positions_skips_unreadable(service):
    mock_slot0(service, 0)
    mock_contract_call(service.position_manager.functions.balanceOf, 1)
    mock_contract_call(service.position_manager.functions.tokenOfOwnerByIndex, 10)
    mock_contract_call(service.position_manager.functions.positions, side_effect=ValueError("bad response"))

    assert await service.list_positions(OWNER) == []
