"""
Transaction sequencer.

Drives an explicit ordered list of approval steps followed by one execute
step:

    Idle -> Approving(i)* -> Executing -> Succeeded | Failed(reason)

Approving(i) is entered only for steps whose allowance is insufficient.
Executing returns as soon as the node accepts the primary transaction.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .allowance import AllowanceGate
from .errors import AdapterError, InvalidInput, SequencerBusy, WorkflowAbandoned, classify_error
from .tokens import TokenHandle

logger = logging.getLogger(__name__)


class WorkflowState(Enum):
    IDLE = "Idle"
    APPROVING = "Approving"
    EXECUTING = "Executing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class WorkflowStatus:
    state: WorkflowState
    token_index: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def idle(cls) -> "WorkflowStatus":
        return cls(WorkflowState.IDLE)

    @classmethod
    def approving(cls, token_index: int) -> "WorkflowStatus":
        return cls(WorkflowState.APPROVING, token_index=token_index)

    @classmethod
    def executing(cls) -> "WorkflowStatus":
        return cls(WorkflowState.EXECUTING)

    @classmethod
    def succeeded(cls) -> "WorkflowStatus":
        return cls(WorkflowState.SUCCEEDED)

    @classmethod
    def failed(cls, reason: str) -> "WorkflowStatus":
        return cls(WorkflowState.FAILED, reason=reason)

    @property
    def is_busy(self) -> bool:
        return self.state in (WorkflowState.APPROVING, WorkflowState.EXECUTING)

    @property
    def is_terminal(self) -> bool:
        return self.state in (WorkflowState.SUCCEEDED, WorkflowState.FAILED)

    def __str__(self) -> str:
        if self.state == WorkflowState.APPROVING:
            return f"Approving({self.token_index})"
        if self.state == WorkflowState.FAILED:
            return f"Failed({self.reason})"
        return self.state.value


@dataclass(frozen=True)
class ApprovalStep:
    """One token that `spender` must be allowed to pull before execution."""
    token: TokenHandle
    owner: str
    spender: str
    amount: int


@dataclass(frozen=True)
class ConfirmedApproval:
    """An approval step that cleared; tx_hash is None when no approval was needed."""
    step_index: int
    token: TokenHandle
    amount: int
    tx_hash: Optional[str]


@dataclass(frozen=True)
class SequencerRun:
    """Outcome of one invocation: its own final status and approvals."""
    status: WorkflowStatus
    tx_hash: Optional[str] = None
    confirmed: Tuple[ConfirmedApproval, ...] = ()
    error: Optional[AdapterError] = None

    @property
    def approval_tx_hashes(self) -> List[str]:
        return [c.tx_hash for c in self.confirmed if c.tx_hash]


def merge_steps(steps: List[ApprovalStep]) -> List[ApprovalStep]:
    """
    Merge steps for the same (owner, token, spender), summing amounts.

    Order of first appearance is kept.
    """
    merged: List[ApprovalStep] = []
    index = {}
    for step in steps:
        key = (step.owner.lower(), step.token.address.lower(), step.spender.lower())
        if key in index:
            i = index[key]
            prev = merged[i]
            merged[i] = ApprovalStep(prev.token, prev.owner, prev.spender, prev.amount + step.amount)
        else:
            index[key] = len(merged)
            merged.append(step)
    return merged


class TransactionSequencer:
    """
    One sequencer per workflow invocation stream.

    Usage:
        sequencer = TransactionSequencer(gate)
        tx_hash = sequencer.run(
            [ApprovalStep(weth, owner, adapter, amount)],
            lambda: sender.submit(fn, 'swap'),
        )
    """

    def __init__(self, gate: AllowanceGate):
        self.gate = gate
        self._status = WorkflowStatus.idle()
        self._history: List[WorkflowStatus] = [self._status]
        self._confirmed: List[ConfirmedApproval] = []
        self._lock = threading.Lock()
        self._abandon = threading.Event()
        self._running = False

    @property
    def status(self) -> WorkflowStatus:
        with self._lock:
            return self._status

    @property
    def history(self) -> List[WorkflowStatus]:
        with self._lock:
            return list(self._history)

    @property
    def confirmed_steps(self) -> List[ConfirmedApproval]:
        with self._lock:
            return list(self._confirmed)

    def abandon(self):
        """Stop the running invocation before its next submission."""
        logger.info("Abandon requested")
        self._abandon.set()

    def _transition(self, status: WorkflowStatus):
        with self._lock:
            self._status = status
            self._history.append(status)
        logger.info(f"Workflow status -> {status}")

    def _check_abandoned(self):
        if self._abandon.is_set():
            raise WorkflowAbandoned("Workflow abandoned before submission")

    def attempt(
        self,
        steps: List[ApprovalStep],
        execute: Callable[[], str],
        validate: Optional[Callable[[], None]] = None
    ) -> SequencerRun:
        """
        Clear every approval step, then submit the primary call.

        Args:
            steps: ordered approval steps (duplicates are merged)
            execute: submits the primary transaction and returns its tx hash
            validate: local precondition checks run before any approval;
                raising moves the status to Failed(reason)

        Returns:
            SequencerRun of this invocation only. A rejected re-invocation
            gets Failed(Busy) with no approvals and leaves the running
            invocation's status untouched.
        """
        with self._lock:
            if self._running:
                busy = SequencerBusy(f"Sequencer is busy ({self._status})")
                logger.warning(str(busy))
                return SequencerRun(WorkflowStatus.failed(busy.reason), error=busy)
            # claim the sequencer; a fresh invocation starts from Idle
            self._status = WorkflowStatus.idle()
            self._history = [self._status]
            self._confirmed = []
            self._abandon.clear()
            self._running = True

        confirmed: List[ConfirmedApproval] = []
        try:
            if validate is not None:
                validate()

            for i, step in enumerate(merge_steps(steps)):
                if step.amount <= 0:
                    raise InvalidInput(f"Approval amount for {step.token.label} must be positive")

                if not self.gate.needs_approval(step.token, step.owner, step.spender, step.amount):
                    logger.info(f"Step {i}: {step.token.label} allowance sufficient, skipping")
                    confirmed.append(self._record(i, step, None))
                    continue

                self._check_abandoned()
                self._transition(WorkflowStatus.approving(i))
                tx_hash = self.gate.check_and_ensure(step.token, step.owner, step.spender, step.amount)
                confirmed.append(self._record(i, step, tx_hash))

            self._check_abandoned()
            self._transition(WorkflowStatus.executing())
            tx_hash = execute()

        except Exception as e:
            error = classify_error(e)
            if error is not e:
                error.__cause__ = e
            logger.error(f"Workflow failed: {error}")
            status = WorkflowStatus.failed(error.reason)
            self._transition(status)
            return SequencerRun(status, confirmed=tuple(confirmed), error=error)

        except BaseException:
            # KeyboardInterrupt / SystemExit: never leave the status busy
            self._transition(WorkflowStatus.failed("Interrupted"))
            raise

        else:
            status = WorkflowStatus.succeeded()
            self._transition(status)
            return SequencerRun(status, tx_hash=tx_hash, confirmed=tuple(confirmed))

        finally:
            with self._lock:
                self._running = False

    def run(
        self,
        steps: List[ApprovalStep],
        execute: Callable[[], str],
        validate: Optional[Callable[[], None]] = None
    ) -> str:
        """
        Same as attempt(), raising instead of returning a failed run.

        Returns:
            tx hash of the primary transaction

        Raises:
            SequencerBusy: another invocation is approving or executing
            AdapterError: the failure that moved the status to Failed(reason)
        """
        outcome = self.attempt(steps, execute, validate=validate)
        if outcome.error is not None:
            raise outcome.error
        return outcome.tx_hash

    def _record(self, step_index: int, step: ApprovalStep, tx_hash: Optional[str]) -> ConfirmedApproval:
        approval = ConfirmedApproval(step_index, step.token, step.amount, tx_hash)
        with self._lock:
            self._confirmed.append(approval)
        return approval

    @property
    def approval_tx_hashes(self) -> List[str]:
        return [c.tx_hash for c in self.confirmed_steps if c.tx_hash]
