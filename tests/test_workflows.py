"""
Tests for PositionWorkflow and SwapWorkflow.

Adapter, pool factory and sender are fakes; AllowanceGate and
TransactionSequencer are real.
"""

import time

import pytest
from eth_abi import encode
from unittest.mock import Mock

from adapter_client.allowance import AllowanceGate
from adapter_client.contracts.adapter import Deposit
from adapter_client.errors import (
    ExecutionReverted,
    InvalidInput,
    PoolNotFound,
    QuoteUnavailable,
    Timeout,
)
from adapter_client.events import LIQUIDITY_ADDED, LIQUIDITY_REMOVED, TOKENS_SWAPPED
from adapter_client.math.ticks import PoolTickState
from adapter_client.quotes import Quote
from adapter_client.sequencer import WorkflowState, WorkflowStatus
from adapter_client.workflows import PositionWorkflow, SwapWorkflow

from conftest import (
    ADAPTER,
    FACTORY,
    OWNER,
    POOL,
    USDC_ARB,
    WETH_ARB,
    FakeCall,
    FakeSender,
    FakeToken,
    make_token_w3,
)


def make_adapter(liquidity=10**15, owner=OWNER):
    adapter = Mock()
    adapter.address = ADAPTER
    adapter.add_liquidity.side_effect = lambda *args: FakeCall('addLiquidity', args=args)
    adapter.withdraw_liquidity.side_effect = lambda *args: FakeCall('withdrawLiquidity', args=args)
    adapter.swap_exact_input.side_effect = lambda *args: FakeCall('swapExactInput', args=args)
    adapter.get_deposit.side_effect = lambda token_id: Deposit(token_id, owner, liquidity, WETH_ARB, USDC_ARB)
    return adapter


def make_env(weth_allowance=0, usdc_allowance=0, tick=-198000, spacing=60):
    weth_token = FakeToken(weth_allowance)
    usdc_token = FakeToken(usdc_allowance)
    w3 = make_token_w3({WETH_ARB: weth_token, USDC_ARB: usdc_token})
    sender = FakeSender()
    gate = AllowanceGate(w3, sender)
    account = Mock(address=OWNER)
    adapter = make_adapter()

    pool_factory = Mock()
    pool_factory.get_pool_tick_state.return_value = PoolTickState(POOL, tick, spacing, 2**96)

    positions = PositionWorkflow(
        w3, account, ADAPTER, FACTORY,
        adapter=adapter, sender=sender, gate=gate, pool_factory=pool_factory
    )
    swaps = SwapWorkflow(w3, account, ADAPTER, adapter=adapter, sender=sender, gate=gate)
    return {
        'positions': positions,
        'swaps': swaps,
        'sender': sender,
        'adapter': adapter,
        'pool_factory': pool_factory,
        'weth_token': weth_token,
        'usdc_token': usdc_token,
    }


def primary_calls(sender):
    return [fn for fn, _ in sender.submitted if fn.name != 'approve']


# ============================================================
# PositionWorkflow.resolve_tick_range
# ============================================================

class TestResolveTickRange:

    def test_reads_live_pool_state(self, weth, usdc):
        env = make_env(tick=123456, spacing=60)

        tick_range = env['positions'].resolve_tick_range(weth, usdc, 3000)

        assert (tick_range.lower, tick_range.upper) == (122220, 124620)
        env['pool_factory'].get_pool_tick_state.assert_called_once_with(weth.address, usdc.address, 3000)

    def test_missing_pool_propagates(self, weth, usdc):
        env = make_env()
        env['pool_factory'].get_pool_tick_state.side_effect = PoolNotFound("no pool")

        with pytest.raises(PoolNotFound):
            env['positions'].resolve_tick_range(weth, usdc, 3000)


# ============================================================
# PositionWorkflow.add_liquidity
# ============================================================

class TestAddLiquidity:

    def test_approves_both_tokens_then_executes(self, weth, usdc):
        env = make_env()
        sender = env['sender']

        result = env['positions'].add_liquidity(weth, usdc, 3000, 10**18, 3_500 * 10**6, -199200, -196800)

        assert result.success
        assert result.status == WorkflowStatus.succeeded()
        assert len(result.approval_tx_hashes) == 2
        assert [fn.name for fn, _ in sender.submitted] == ['approve', 'approve', 'addLiquidity']
        assert primary_calls(sender)[0].args == (
            weth.address, usdc.address, 3000, 10**18, 3_500 * 10**6, -199200, -196800
        )
        # simulated before submission
        assert sender.simulated[0].name == 'addLiquidity'
        assert result.tx_hash == "0x" + f"{3:064x}"

    def test_existing_allowances_skip_approvals(self, weth, usdc):
        env = make_env(weth_allowance=10**18, usdc_allowance=10**10)

        result = env['positions'].add_liquidity(weth, usdc, 3000, 10**18, 3_500 * 10**6, -199200, -196800)

        assert result.success
        assert result.approval_tx_hashes == []
        assert env['sender'].approvals() == []

    @pytest.mark.parametrize("lower,upper", [(-196800, -199200), (-199200, -199200), (-199201, -196800)])
    def test_invalid_ticks_rejected_before_submission(self, weth, usdc, lower, upper):
        env = make_env()

        result = env['positions'].add_liquidity(weth, usdc, 3000, 10**18, 10**6, lower, upper)

        assert not result.success
        assert isinstance(result.error, InvalidInput)
        assert result.status == WorkflowStatus.failed("InvalidInput")
        assert env['sender'].submitted == []

    @pytest.mark.parametrize("amount_a,amount_b", [(0, 10**6), (10**18, 0), (-1, 10**6)])
    def test_non_positive_amounts_rejected(self, weth, usdc, amount_a, amount_b):
        env = make_env()

        result = env['positions'].add_liquidity(weth, usdc, 3000, amount_a, amount_b, -199200, -196800)

        assert not result.success
        assert result.error.reason == "InvalidInput"
        assert env['sender'].submitted == []

    def test_simulation_revert_fails_after_approvals(self, weth, usdc):
        env = make_env()
        env['sender'].simulate_error = ExecutionReverted("Price slippage check")

        result = env['positions'].add_liquidity(weth, usdc, 3000, 10**18, 10**6, -199200, -196800)

        assert not result.success
        assert result.status == WorkflowStatus.failed("ExecutionReverted")
        # approvals stay confirmed for a retry
        assert len(result.approval_tx_hashes) == 2
        assert primary_calls(env['sender']) == []

    def test_around_price(self, weth, usdc):
        env = make_env(tick=-198010, spacing=60)

        result = env['positions'].add_liquidity_around_price(weth, usdc, 3000, 10**18, 10**6, width=20)

        assert result.success
        assert (result.tick_lower, result.tick_upper) == (-199260, -196860)

    def test_around_price_without_pool(self, weth, usdc):
        env = make_env()
        env['pool_factory'].get_pool_tick_state.side_effect = PoolNotFound("no pool")

        result = env['positions'].add_liquidity_around_price(weth, usdc, 3000, 10**18, 10**6)

        assert not result.success
        assert result.status.reason == "PoolNotFound"
        assert env['sender'].submitted == []


# ============================================================
# PositionWorkflow.withdraw_liquidity
# ============================================================

class TestWithdrawLiquidity:

    def test_half_withdrawal(self):
        env = make_env()
        liquidity = env['positions'].get_position(7).liquidity

        result = env['positions'].withdraw_liquidity(7, liquidity // 2, 0, 0)

        assert result.success
        assert [fn.name for fn, _ in env['sender'].submitted] == ['withdrawLiquidity']
        assert primary_calls(env['sender'])[0].args == (7, liquidity // 2, 0, 0)

    def test_full_withdrawal_allowed(self):
        env = make_env()

        result = env['positions'].withdraw_liquidity(7, 10**15)

        assert result.success

    def test_exceeding_liquidity_rejected_before_submission(self):
        env = make_env()

        result = env['positions'].withdraw_liquidity(7, 10**15 + 1)

        assert not result.success
        assert isinstance(result.error, InvalidInput)
        assert env['sender'].submitted == []
        assert env['sender'].simulated == []

    @pytest.mark.parametrize("liquidity,min0,min1", [(0, 0, 0), (-1, 0, 0), (10, -1, 0), (10, 0, -1)])
    def test_invalid_arguments_rejected(self, liquidity, min0, min1):
        env = make_env()

        result = env['positions'].withdraw_liquidity(7, liquidity, min0, min1)

        assert result.status == WorkflowStatus.failed("InvalidInput")
        assert env['sender'].submitted == []

    def test_foreign_position_rejected(self):
        env = make_env()
        env['adapter'].get_deposit.side_effect = lambda token_id: Deposit(
            token_id, "0x9999999999999999999999999999999999999999", 10**15, WETH_ARB, USDC_ARB
        )

        result = env['positions'].withdraw_liquidity(7, 100)

        assert not result.success
        assert result.error.reason == "InvalidInput"

    def test_min_amount_shortfall_reverts(self):
        env = make_env()
        env['sender'].simulate_error = ExecutionReverted("Price slippage check")

        result = env['positions'].withdraw_liquidity(7, 100, 10**30, 10**30)

        assert result.status == WorkflowStatus.failed("ExecutionReverted")
        assert env['sender'].submitted == []


# ============================================================
# Confirmation / event decoding
# ============================================================

def _receipt(log):
    return {'status': 1, 'logs': [log]}


class TestConfirm:

    def test_confirm_add_decodes_event(self, weth, usdc):
        env = make_env()
        result = env['positions'].add_liquidity(weth, usdc, 3000, 10**18, 10**6, -199200, -196800)
        log = {
            'address': ADAPTER,
            'topics': [
                LIQUIDITY_ADDED.topic0,
                encode(['uint256'], [11]),
                encode(['address'], [WETH_ARB]),
                encode(['address'], [USDC_ARB]),
            ],
            'data': encode(['uint24', 'uint256', 'uint256', 'int24', 'int24'],
                           [3000, 9 * 10**17, 10**6, -199200, -196800]),
        }
        env['sender'].wait_for_receipt = Mock(return_value=_receipt(log))

        outcome = env['positions'].confirm_add(result)

        assert outcome.position_id == 11
        assert outcome.liquidity == 10**15
        assert outcome.amount0 == 9 * 10**17
        assert (outcome.tick_lower, outcome.tick_upper) == (-199200, -196800)

    def test_confirm_withdraw(self):
        env = make_env()
        result = env['positions'].withdraw_liquidity(7, 100)
        log = {
            'address': ADAPTER,
            'topics': [
                LIQUIDITY_REMOVED.topic0,
                encode(['uint256'], [7]),
                encode(['address'], [WETH_ARB]),
                encode(['address'], [USDC_ARB]),
            ],
            'data': encode(['uint24', 'uint256', 'uint256'], [3000, 123, 456]),
        }
        env['sender'].wait_for_receipt = Mock(return_value=_receipt(log))

        outcome = env['positions'].confirm_withdraw(result)

        assert (outcome.position_id, outcome.amount0, outcome.amount1) == (7, 123, 456)

    def test_confirm_reverted_transaction(self):
        env = make_env()
        result = env['positions'].withdraw_liquidity(7, 100, 10**30, 0)
        env['sender'].wait_for_receipt = Mock(return_value={'status': 0, 'logs': []})

        with pytest.raises(ExecutionReverted):
            env['positions'].confirm_withdraw(result)

    def test_confirm_timeout(self):
        env = make_env()
        result = env['positions'].withdraw_liquidity(7, 100)
        env['sender'].wait_for_receipt = Mock(side_effect=Timeout("not mined", tx_hash=result.tx_hash))

        with pytest.raises(Timeout):
            env['positions'].confirm_withdraw(result)

    def test_confirm_failed_result(self):
        env = make_env()
        result = env['positions'].withdraw_liquidity(7, 0)

        with pytest.raises(InvalidInput):
            env['positions'].confirm_withdraw(result)


# ============================================================
# SwapWorkflow
# ============================================================

class TestSwapExactInput:

    def test_single_approval_then_swap(self, weth, usdc):
        env = make_env()

        result = env['swaps'].swap_exact_input(usdc, weth, 3000, 1_000 * 10**6, 28 * 10**16)

        assert result.success
        assert [fn.name for fn, _ in env['sender'].submitted] == ['approve', 'swapExactInput']
        assert primary_calls(env['sender'])[0].args == (usdc.address, weth.address, 3000, 1_000 * 10**6, 28 * 10**16)
        assert result.min_out == 28 * 10**16

    def test_zero_min_out_rejected(self, weth, usdc):
        env = make_env()

        result = env['swaps'].swap_exact_input(usdc, weth, 3000, 1_000 * 10**6, 0)

        assert not result.success
        assert result.status == WorkflowStatus.failed("InvalidInput")
        assert env['sender'].submitted == []

    def test_slippage_revert(self, weth, usdc):
        env = make_env(usdc_allowance=10**12)
        env['sender'].simulate_error = ExecutionReverted("Too little received")

        result = env['swaps'].swap_exact_input(usdc, weth, 3000, 1_000 * 10**6, 10**30)

        assert result.status.state == WorkflowState.FAILED
        assert result.error.reason == "ExecutionReverted"

    def test_busy_workflow_rejects_second_call(self, weth, usdc):
        env = make_env(usdc_allowance=10**12)
        swaps = env['swaps']
        inner = []

        original_submit = env['sender'].submit

        def submit(fn, gas_type, context=""):
            inner.append(swaps.swap_exact_input(usdc, weth, 3000, 10**6, 1))
            return original_submit(fn, gas_type, context)

        env['sender'].submit = submit

        result = swaps.swap_exact_input(usdc, weth, 3000, 10**6, 1)

        assert result.success
        assert inner[0].status == WorkflowStatus.failed("Busy")
        assert swaps.status == WorkflowStatus.succeeded()

    def test_rejected_call_reports_only_its_own_run(self, weth, usdc):
        """Отклонённый (Busy) вызов не получает approvals работающего вызова."""
        env = make_env(usdc_allowance=0)
        swaps = env['swaps']
        inner = []

        original_submit = env['sender'].submit

        def submit(fn, gas_type, context=""):
            if fn.name == 'swapExactInput':
                inner.append(swaps.swap_exact_input(usdc, weth, 3000, 10**6, 1))
            return original_submit(fn, gas_type, context)

        env['sender'].submit = submit

        result = swaps.swap_exact_input(usdc, weth, 3000, 10**6, 1)

        assert result.success
        assert result.status == WorkflowStatus.succeeded()
        assert len(result.approval_tx_hashes) == 1
        assert inner[0].status == WorkflowStatus.failed("Busy")
        assert inner[0].approval_tx_hashes == []
        assert inner[0].tx_hash is None

    def test_result_status_is_not_read_back_from_the_workflow(self, weth, usdc):
        """Итоговый статус берётся из своего вызова, даже если sequencer уже сброшен."""
        env = make_env(usdc_allowance=10**12)
        swaps = env['swaps']

        first = swaps.swap_exact_input(usdc, weth, 3000, 10**6, 1)
        env['sender'].simulate_error = ExecutionReverted("Too little received")
        second = swaps.swap_exact_input(usdc, weth, 3000, 10**6, 1)

        assert first.status == WorkflowStatus.succeeded()
        assert second.status == WorkflowStatus.failed("ExecutionReverted")
        assert swaps.status == second.status


class TestSwapFromQuote:

    def test_uses_quote_min_out(self, weth, usdc):
        env = make_env()
        quote = Quote(usdc, weth, 3000, 10**6, 1_000_000, time.time())

        result = env['swaps'].swap_from_quote(quote)

        assert result.success
        assert result.min_out == 995_000
        assert quote.consumed

    def test_stale_quote_rejected(self, weth, usdc):
        env = make_env()
        quote = Quote(usdc, weth, 3000, 10**6, 1_000_000, time.time() - 3600)

        result = env['swaps'].swap_from_quote(quote)

        assert not result.success
        assert isinstance(result.error, QuoteUnavailable)
        assert env['sender'].submitted == []

    def test_quote_used_once(self, weth, usdc):
        env = make_env()
        quote = Quote(usdc, weth, 3000, 10**6, 1_000_000, time.time())

        env['swaps'].swap_from_quote(quote)
        second = env['swaps'].swap_from_quote(quote)

        assert second.status == WorkflowStatus.failed("QuoteUnavailable")
        assert len(primary_calls(env['sender'])) == 1

    def test_confirm_swap(self, weth, usdc):
        env = make_env()
        quote = Quote(usdc, weth, 3000, 10**6, 1_000_000, time.time())
        result = env['swaps'].swap_from_quote(quote)
        log = {
            'address': ADAPTER,
            'topics': [
                TOKENS_SWAPPED.topic0,
                encode(['address'], [USDC_ARB]),
                encode(['address'], [WETH_ARB]),
            ],
            'data': encode(['uint24', 'uint256', 'uint256'], [3000, 10**6, 999_000]),
        }
        env['sender'].wait_for_receipt = Mock(return_value=_receipt(log))

        outcome = env['swaps'].confirm_swap(result)

        assert outcome.amount_out == 999_000
