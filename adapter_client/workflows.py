"""
Position and swap workflows.

Композиция расчёта тиков, котировок, approvals и отправки транзакций
через контракт адаптера:
- PositionWorkflow: addLiquidity / withdrawLiquidity
- SwapWorkflow: swapExactInput

Каждый вызов проходит через TransactionSequencer:
Idle -> Approving(i)* -> Executing -> Succeeded | Failed(reason).
Ошибки не пробрасываются наружу: они возвращаются в result.error, а
result.status хранит итоговое состояние.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from .allowance import AllowanceGate
from .contracts.adapter import AdapterContract, Deposit
from .contracts.pool_factory import PoolFactory
from .errors import (
    AdapterError,
    ExecutionReverted,
    InvalidInput,
    SequencerBusy,
)
from .events import LiquidityAddedEvent, LiquidityRemovedEvent, TokensSwappedEvent, find_event
from .math.slippage import DEFAULT_SLIPPAGE_BPS, validate_slippage_bps
from .math.ticks import DEFAULT_TICK_WIDTH, PoolTickState, TickRange, compute_tick_range
from .quotes import DEFAULT_QUOTE_MAX_AGE, Quote
from .sequencer import ApprovalStep, SequencerRun, TransactionSequencer, WorkflowStatus
from .tokens import TokenHandle
from .transactions import DEFAULT_CONFIRMATION_TIMEOUT, TransactionSender

# Настройка логгера
logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG)

# Создаём handler для консоли если его нет
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_non_negative_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass
class SwapResult:
    """Результат swapExactInput."""
    success: bool
    status: WorkflowStatus
    token_in: Optional[TokenHandle] = None
    token_out: Optional[TokenHandle] = None
    amount_in: int = 0
    min_out: int = 0
    tx_hash: Optional[str] = None
    approval_tx_hashes: List[str] = field(default_factory=list)
    error: Optional[AdapterError] = None


@dataclass
class AddLiquidityResult:
    """Результат addLiquidity."""
    success: bool
    status: WorkflowStatus
    tick_lower: Optional[int] = None
    tick_upper: Optional[int] = None
    tx_hash: Optional[str] = None
    approval_tx_hashes: List[str] = field(default_factory=list)
    error: Optional[AdapterError] = None


@dataclass
class WithdrawResult:
    """Результат withdrawLiquidity."""
    success: bool
    status: WorkflowStatus
    position_id: Optional[int] = None
    liquidity: int = 0
    tx_hash: Optional[str] = None
    error: Optional[AdapterError] = None


@dataclass(frozen=True)
class LiquidityAddedOutcome:
    """amount0/amount1 в порядке token_a/token_b вызова."""
    position_id: int
    liquidity: int
    amount0: int
    amount1: int
    tick_lower: int
    tick_upper: int
    pair_id: str


@dataclass(frozen=True)
class LiquidityRemovedOutcome:
    position_id: int
    amount0: int
    amount1: int
    pair_id: str


@dataclass(frozen=True)
class SwapOutcome:
    amount_in: int
    amount_out: int
    pair_id: str


class _AdapterWorkflow:
    """Общая часть: адаптер, отправитель, approval gate и sequencer."""

    def __init__(
        self,
        w3: Web3,
        account: LocalAccount,
        adapter_address: str,
        adapter: AdapterContract = None,
        sender: TransactionSender = None,
        gate: AllowanceGate = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    ):
        self.w3 = w3
        self.account = account
        self.adapter = adapter or AdapterContract(w3, adapter_address)
        self.adapter_address = self.adapter.address
        self.sender = sender or TransactionSender(w3, account)
        self.gate = gate or AllowanceGate(w3, self.sender, confirmation_timeout=confirmation_timeout)
        self.sequencer = TransactionSequencer(self.gate)
        self.confirmation_timeout = confirmation_timeout

    @property
    def status(self) -> WorkflowStatus:
        return self.sequencer.status

    def abandon(self):
        """Остановить текущий вызов до следующей отправки транзакции."""
        self.sequencer.abandon()

    def _run(
        self,
        steps: List[ApprovalStep],
        validate: Callable[[], None],
        build_fn: Callable[[], object],
        gas_type: str,
        context: str
    ) -> SequencerRun:
        """
        Запуск через sequencer.

        Returns:
            SequencerRun этого вызова (статус и approvals не читаются из
            общего sequencer, который мог уже начать следующий вызов)
        """
        def execute() -> str:
            fn = build_fn()
            self.sender.simulate(fn, context)
            return self.sender.submit(fn, gas_type, context)

        outcome = self.sequencer.attempt(steps, execute, validate=validate)
        if isinstance(outcome.error, SequencerBusy):
            logger.error(f"{context} rejected: {outcome.error}")
        elif outcome.error is not None:
            logger.error(f"{context} failed: {outcome.error}")
        else:
            logger.info(f"{context} submitted! TX: {outcome.tx_hash}")
        return outcome

    def _wait_success(self, tx_hash: Optional[str], timeout: Optional[float]):
        if not tx_hash:
            raise InvalidInput("Nothing to confirm: the workflow did not submit a transaction")

        receipt = self.sender.wait_for_receipt(tx_hash, timeout=timeout or self.confirmation_timeout)
        if receipt['status'] != 1:
            raise ExecutionReverted(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
        return receipt


class PositionWorkflow(_AdapterWorkflow):
    """
    Добавление и вывод ликвидности через адаптер.

    Usage:
        workflow = PositionWorkflow(w3, account, adapter_address, factory_address)
        tick_range = workflow.resolve_tick_range(weth, usdc, 3000)
        result = workflow.add_liquidity(weth, usdc, 3000, amount_weth, amount_usdc,
                                        tick_range.lower, tick_range.upper)
        outcome = workflow.confirm_add(result)
    """

    def __init__(
        self,
        w3: Web3,
        account: LocalAccount,
        adapter_address: str,
        factory_address: str,
        adapter: AdapterContract = None,
        sender: TransactionSender = None,
        gate: AllowanceGate = None,
        pool_factory: PoolFactory = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    ):
        super().__init__(w3, account, adapter_address, adapter, sender, gate, confirmation_timeout)
        self.pool_factory = pool_factory or PoolFactory(w3, factory_address)

    def get_pool_state(self, token_a: TokenHandle, token_b: TokenHandle, fee: int) -> PoolTickState:
        """Текущее состояние пула (всегда читается из сети)."""
        return self.pool_factory.get_pool_tick_state(token_a.address, token_b.address, fee)

    def resolve_tick_range(
        self,
        token_a: TokenHandle,
        token_b: TokenHandle,
        fee: int,
        width: int = DEFAULT_TICK_WIDTH
    ) -> TickRange:
        """
        Диапазон тиков вокруг текущей цены пула.

        Raises:
            PoolNotFound: пул не существует или не инициализирован
            InvalidPoolState: tickSpacing <= 0
            InvalidInput: width < 0 или диапазон выходит за границы
        """
        state = self.get_pool_state(token_a, token_b, fee)
        tick_range = compute_tick_range(state.current_tick, state.tick_spacing, width)
        logger.info(
            f"Tick range for {token_a.label}/{token_b.label} fee={fee}: "
            f"current={state.current_tick}, spacing={state.tick_spacing} -> "
            f"[{tick_range.lower}, {tick_range.upper}]"
        )
        return tick_range

    def add_liquidity(
        self,
        token_a: TokenHandle,
        token_b: TokenHandle,
        fee: int,
        amount_a: int,
        amount_b: int,
        tick_lower: int,
        tick_upper: int
    ) -> AddLiquidityResult:
        """
        Approve token_a и token_b для адаптера, затем addLiquidity.

        Успех означает, что нода приняла транзакцию. Позиция и реально
        внесённые суммы доступны через confirm_add().
        """
        owner = self.account.address
        context = f"addLiquidity {token_a.label}/{token_b.label}"

        def validate():
            if token_a.address == token_b.address:
                raise InvalidInput("token_a and token_b must differ")
            if not _is_positive_int(amount_a) or not _is_positive_int(amount_b):
                raise InvalidInput(f"Both amounts must be positive integers, got {amount_a!r}, {amount_b!r}")
            if tick_lower >= tick_upper:
                raise InvalidInput(f"tickLower ({tick_lower}) >= tickUpper ({tick_upper})")
            state = self.get_pool_state(token_a, token_b, fee)
            TickRange(tick_lower, tick_upper).validate(state.tick_spacing)
            logger.info(
                f"Adding liquidity: {token_a.format_units(amount_a)} {token_a.label} + "
                f"{token_b.format_units(amount_b)} {token_b.label}, ticks [{tick_lower}, {tick_upper}]"
            )

        steps = [
            ApprovalStep(token_a, owner, self.adapter_address, amount_a),
            ApprovalStep(token_b, owner, self.adapter_address, amount_b),
        ]
        outcome = self._run(
            steps,
            validate,
            lambda: self.adapter.add_liquidity(
                token_a.address, token_b.address, fee, amount_a, amount_b, tick_lower, tick_upper
            ),
            'add_liquidity',
            context
        )
        return AddLiquidityResult(
            success=outcome.error is None,
            status=outcome.status,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            tx_hash=outcome.tx_hash,
            approval_tx_hashes=outcome.approval_tx_hashes,
            error=outcome.error
        )

    def add_liquidity_around_price(
        self,
        token_a: TokenHandle,
        token_b: TokenHandle,
        fee: int,
        amount_a: int,
        amount_b: int,
        width: int = DEFAULT_TICK_WIDTH
    ) -> AddLiquidityResult:
        """Диапазон ±width шагов от текущего тика, затем add_liquidity."""
        try:
            tick_range = self.resolve_tick_range(token_a, token_b, fee, width)
        except AdapterError as e:
            # execution stays disabled without a resolved range
            logger.error(f"Cannot resolve tick range: {e}")
            return AddLiquidityResult(success=False, status=WorkflowStatus.failed(e.reason), error=e)

        return self.add_liquidity(token_a, token_b, fee, amount_a, amount_b, tick_range.lower, tick_range.upper)

    def get_position(self, position_id: int) -> Deposit:
        """Запись адаптера о позиции (owner, liquidity, token0, token1)."""
        return self.adapter.get_deposit(position_id)

    def withdraw_liquidity(
        self,
        position_id: int,
        liquidity_amount: int,
        min_amount0: int = 0,
        min_amount1: int = 0
    ) -> WithdrawResult:
        """
        decreaseLiquidity + collect через адаптер.

        Approvals не нужны. liquidity_amount ограничен записанной ликвидностью
        позиции; нарушение отклоняется до отправки (InvalidInput).
        """
        context = f"withdrawLiquidity #{position_id}"

        def validate():
            if not _is_non_negative_int(position_id):
                raise InvalidInput(f"Invalid position id: {position_id!r}")
            if not _is_positive_int(liquidity_amount):
                raise InvalidInput(f"liquidity_amount must be a positive integer, got {liquidity_amount!r}")
            if not _is_non_negative_int(min_amount0) or not _is_non_negative_int(min_amount1):
                raise InvalidInput("Minimum amounts must be non-negative integers")

            deposit = self.get_position(position_id)
            if deposit.owner.lower() != self.account.address.lower():
                raise InvalidInput(f"Position {position_id} belongs to {deposit.owner}, not {self.account.address}")
            if liquidity_amount > deposit.liquidity:
                raise InvalidInput(
                    f"liquidity_amount {liquidity_amount} exceeds position liquidity {deposit.liquidity}"
                )
            logger.info(f"Withdrawing {liquidity_amount}/{deposit.liquidity} liquidity from #{position_id}")

        outcome = self._run(
            [],
            validate,
            lambda: self.adapter.withdraw_liquidity(position_id, liquidity_amount, min_amount0, min_amount1),
            'withdraw_liquidity',
            context
        )
        return WithdrawResult(
            success=outcome.error is None,
            status=outcome.status,
            position_id=position_id,
            liquidity=liquidity_amount,
            tx_hash=outcome.tx_hash,
            error=outcome.error
        )

    def confirm_add(self, result: AddLiquidityResult, timeout: float = None) -> LiquidityAddedOutcome:
        """
        Ждёт receipt addLiquidity и декодирует LiquidityAdded.

        Raises:
            Timeout: receipt не получен (итог транзакции неизвестен)
            ExecutionReverted: транзакция откатилась
        """
        receipt = self._wait_success(result.tx_hash, timeout)
        event = find_event(receipt, LiquidityAddedEvent, self.adapter_address)
        if event is None:
            raise AdapterError(f"No LiquidityAdded event in {result.tx_hash}", tx_hash=result.tx_hash)

        deposit = self.get_position(event.token_id)
        outcome = LiquidityAddedOutcome(
            position_id=event.token_id,
            liquidity=deposit.liquidity,
            amount0=event.amount_a,
            amount1=event.amount_b,
            tick_lower=event.tick_lower,
            tick_upper=event.tick_upper,
            pair_id=event.pair_id,
        )
        logger.info(f"Position #{outcome.position_id} created: liquidity={outcome.liquidity}")
        return outcome

    def confirm_withdraw(self, result: WithdrawResult, timeout: float = None) -> LiquidityRemovedOutcome:
        """Ждёт receipt withdrawLiquidity и декодирует LiquidityRemoved."""
        receipt = self._wait_success(result.tx_hash, timeout)
        event = find_event(receipt, LiquidityRemovedEvent, self.adapter_address)
        if event is None:
            raise AdapterError(f"No LiquidityRemoved event in {result.tx_hash}", tx_hash=result.tx_hash)

        logger.info(f"Position #{event.token_id}: collected amount0={event.amount0}, amount1={event.amount1}")
        return LiquidityRemovedOutcome(
            position_id=event.token_id,
            amount0=event.amount0,
            amount1=event.amount1,
            pair_id=event.pair_id,
        )


class SwapWorkflow(_AdapterWorkflow):
    """
    Exact-input своп через адаптер.

    Usage:
        workflow = SwapWorkflow(w3, account, adapter_address)
        quote, _ = estimator.estimate_min_out(usdc, weth, 3000, amount)
        result = workflow.swap_from_quote(quote)
    """

    def __init__(
        self,
        w3: Web3,
        account: LocalAccount,
        adapter_address: str,
        adapter: AdapterContract = None,
        sender: TransactionSender = None,
        gate: AllowanceGate = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        quote_max_age: float = DEFAULT_QUOTE_MAX_AGE,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    ):
        super().__init__(w3, account, adapter_address, adapter, sender, gate, confirmation_timeout)
        self.quote_max_age = quote_max_age
        self.slippage_bps = validate_slippage_bps(slippage_bps)

    def swap_exact_input(
        self,
        token_in: TokenHandle,
        token_out: TokenHandle,
        fee: int,
        amount_in: int,
        min_out: int
    ) -> SwapResult:
        """
        Approve token_in, затем swapExactInput с min_out как есть.

        Повторной котировки при исполнении нет.
        """
        return self._swap(token_in, token_out, fee, amount_in, lambda: min_out)

    def swap_from_quote(self, quote: Quote, slippage_bps: int = None) -> SwapResult:
        """
        Своп по котировке: проверка возраста, consume(), min_out по slippage.

        Котировка используется один раз, даже если своп не удался.
        """
        bps = self.slippage_bps if slippage_bps is None else slippage_bps

        def resolve_min_out() -> int:
            quote.ensure_fresh(self.quote_max_age)
            quote.consume()
            return quote.min_out(bps)

        return self._swap(quote.token_in, quote.token_out, quote.fee, quote.amount_in, resolve_min_out)

    def _swap(
        self,
        token_in: TokenHandle,
        token_out: TokenHandle,
        fee: int,
        amount_in: int,
        resolve_min_out: Callable[[], int]
    ) -> SwapResult:
        owner = self.account.address
        context = f"swap {token_in.label}->{token_out.label}"
        resolved = {'min_out': 0}

        def validate():
            if token_in.address == token_out.address:
                raise InvalidInput("token_in and token_out must differ")
            if not _is_positive_int(amount_in):
                raise InvalidInput(f"amount_in must be a positive integer, got {amount_in!r}")
            min_out = resolve_min_out()
            if not _is_positive_int(min_out):
                raise InvalidInput(f"min_out must be a positive integer, got {min_out!r}")
            resolved['min_out'] = min_out
            logger.info(
                f"Swapping {token_in.format_units(amount_in)} {token_in.label} -> {token_out.label}, "
                f"min_out={token_out.format_units(min_out)}"
            )

        outcome = self._run(
            [ApprovalStep(token_in, owner, self.adapter_address, amount_in)],
            validate,
            lambda: self.adapter.swap_exact_input(
                token_in.address, token_out.address, fee, amount_in, resolved['min_out']
            ),
            'swap',
            context
        )
        return SwapResult(
            success=outcome.error is None,
            status=outcome.status,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            min_out=resolved['min_out'],
            tx_hash=outcome.tx_hash,
            approval_tx_hashes=outcome.approval_tx_hashes,
            error=outcome.error
        )

    def confirm_swap(self, result: SwapResult, timeout: float = None) -> SwapOutcome:
        """Ждёт receipt свопа и декодирует TokensSwapped."""
        receipt = self._wait_success(result.tx_hash, timeout)
        event = find_event(receipt, TokensSwappedEvent, self.adapter_address)
        if event is None:
            raise AdapterError(f"No TokensSwapped event in {result.tx_hash}", tx_hash=result.tx_hash)

        logger.info(f"Swapped {event.amount_in} -> {event.amount_out}")
        return SwapOutcome(amount_in=event.amount_in, amount_out=event.amount_out, pair_id=event.pair_id)
