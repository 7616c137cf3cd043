"""
ERC20 allowance cache and approval gate.

Includes:
- AllowanceCache: (owner, token, spender) -> last read allowance, with a
  freshness flag that every approval write clears
- AllowanceGate: check-and-ensure approval with one in-flight approval
  per triple; concurrent callers wait on the same request
"""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from web3 import Web3

from .contracts.abis import ERC20_ABI
from .errors import AdapterError, ApprovalFailed, InvalidInput, Timeout, classify_error
from .tokens import TokenHandle
from .transactions import DEFAULT_CONFIRMATION_TIMEOUT, TransactionSender

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1

AllowanceKey = Tuple[str, str, str]


def allowance_key(owner: str, token: str, spender: str) -> AllowanceKey:
    return owner.lower(), token.lower(), spender.lower()


@dataclass
class AllowanceState:
    """Last known allowance for one (owner, token, spender) triple."""
    amount: int
    fresh: bool
    updated_at: float


class AllowanceCache:
    """
    Thread-safe allowance cache.

    Rules:
    - `store` records a value read from the chain (fresh)
    - `invalidate` is called before every approve() write; a stale entry
      is never trusted and forces a re-read
    """

    def __init__(self):
        self._entries: Dict[AllowanceKey, AllowanceState] = {}
        self._lock = threading.Lock()

    def get(self, key: AllowanceKey) -> Optional[AllowanceState]:
        with self._lock:
            state = self._entries.get(key)
            if state is None:
                return None
            return AllowanceState(state.amount, state.fresh, state.updated_at)

    def store(self, key: AllowanceKey, amount: int) -> AllowanceState:
        with self._lock:
            state = AllowanceState(amount=amount, fresh=True, updated_at=time.time())
            self._entries[key] = state
            return state

    def invalidate(self, key: AllowanceKey):
        with self._lock:
            state = self._entries.get(key)
            if state is not None:
                state.fresh = False

    def clear(self):
        with self._lock:
            self._entries.clear()


class AllowanceGate:
    """
    Makes sure `spender` may pull at least `required_amount` of a token.

    Usage:
        gate = AllowanceGate(w3, sender)
        tx_hash = gate.check_and_ensure(weth, owner, adapter_address, amount)
        # None -> allowance was already sufficient, nothing was sent
    """

    def __init__(
        self,
        w3: Web3,
        sender: TransactionSender,
        cache: AllowanceCache = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        approve_max: bool = False
    ):
        self.w3 = w3
        self.sender = sender
        self.cache = cache or AllowanceCache()
        self.confirmation_timeout = confirmation_timeout
        self.approve_max = approve_max

        self._inflight: Dict[AllowanceKey, Future] = {}
        self._inflight_lock = threading.Lock()

    def _token_contract(self, token: TokenHandle):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)

    def read_allowance(self, token: TokenHandle, owner: str, spender: str) -> int:
        """Read allowance from the chain and refresh the cache."""
        contract = self._token_contract(token)
        try:
            amount = contract.functions.allowance(
                Web3.to_checksum_address(owner),
                Web3.to_checksum_address(spender)
            ).call()
        except Exception as e:
            raise classify_error(e, f"allowance() for {token.label}") from e

        self.cache.store(allowance_key(owner, token.address, spender), amount)
        return amount

    def current_allowance(self, token: TokenHandle, owner: str, spender: str) -> int:
        """Cached allowance if fresh, otherwise read through."""
        state = self.cache.get(allowance_key(owner, token.address, spender))
        if state is not None and state.fresh:
            return state.amount
        return self.read_allowance(token, owner, spender)

    def needs_approval(self, token: TokenHandle, owner: str, spender: str, required_amount: int) -> bool:
        return self.current_allowance(token, owner, spender) < required_amount

    def check_and_ensure(
        self,
        token: TokenHandle,
        owner: str,
        spender: str,
        required_amount: int
    ) -> Optional[str]:
        """
        Ensure allowance >= required_amount, approving at most once.

        Returns:
            tx hash of the approval this call waited on, None if no approval
            was needed

        Raises:
            InvalidInput: required_amount <= 0
            ApprovalFailed: approve() rejected or reverted, or allowance still short
            Timeout: approval not mined within confirmation_timeout
        """
        if isinstance(required_amount, bool) or not isinstance(required_amount, int) or required_amount <= 0:
            raise InvalidInput(f"required_amount must be a positive integer, got {required_amount!r}")

        key = allowance_key(owner, token.address, spender)

        while True:
            if self.current_allowance(token, owner, spender) >= required_amount:
                logger.info(f"Token {token.label} already approved for {spender[:10]}...")
                return None

            with self._inflight_lock:
                inflight = self._inflight.get(key)
                if inflight is None:
                    inflight = Future()
                    self._inflight[key] = inflight
                    is_leader = True
                else:
                    is_leader = False

            if not is_leader:
                logger.info(f"Approval for {token.label} already in flight, waiting for it")
                tx_hash = inflight.result()
                # the leader approved its own amount; re-check against ours
                if self.current_allowance(token, owner, spender) >= required_amount:
                    return tx_hash
                continue

            try:
                # a previous leader may have finished between our read and the claim
                if self.current_allowance(token, owner, spender) >= required_amount:
                    logger.info(f"Token {token.label} approved meanwhile, skipping")
                    tx_hash = None
                else:
                    tx_hash = self._approve(token, owner, spender, required_amount)
            except BaseException as e:
                inflight.set_exception(e)
                raise
            else:
                inflight.set_result(tx_hash)
                return tx_hash
            finally:
                with self._inflight_lock:
                    self._inflight.pop(key, None)

    def _approve(self, token: TokenHandle, owner: str, spender: str, required_amount: int) -> str:
        key = allowance_key(owner, token.address, spender)
        amount = MAX_UINT256 if self.approve_max else required_amount

        # invalidate-on-write: whatever happens next, the cached value is stale
        self.cache.invalidate(key)

        logger.info(f"Approving {token.label}: amount={amount} spender={spender[:10]}...")
        approve_fn = self._token_contract(token).functions.approve(Web3.to_checksum_address(spender), amount)

        try:
            tx_hash = self.sender.submit(approve_fn, 'approve', context=f"approve {token.label}")
        except AdapterError as e:
            raise ApprovalFailed(token.address, str(e)) from e

        try:
            receipt = self.sender.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        except Timeout:
            raise
        except AdapterError as e:
            raise ApprovalFailed(token.address, str(e), tx_hash=tx_hash) from e

        if receipt['status'] != 1:
            raise ApprovalFailed(token.address, "approve transaction reverted", tx_hash=tx_hash)

        refreshed = self.read_allowance(token, owner, spender)
        if refreshed < required_amount:
            raise ApprovalFailed(
                token.address,
                f"allowance after approval is {refreshed}, required {required_amount}",
                tx_hash=tx_hash
            )

        logger.info(f"Approved {token.label}! TX: {tx_hash}")
        return tx_hash
