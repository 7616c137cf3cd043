"""
Transaction submission utilities.

Includes:
- NonceManager: Thread-safe nonce tracking for back-to-back transactions
- GasEstimator: Gas estimation with per-operation fallbacks
- TransactionSender: simulate / sign / submit / wait, mapping failures
  onto the workflow error taxonomy
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError

from .errors import classify_error

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 120  # seconds


class NonceManager:
    """
    Thread-safe nonce manager.

    Approvals and the primary call are sent back-to-back; without local
    tracking `get_transaction_count('pending')` may hand out the same nonce
    twice when the node has not indexed the previous transaction yet.

    Usage:
        nonce_mgr = NonceManager(w3, account_address)
        nonce = nonce_mgr.get_next_nonce()
        ...
        nonce_mgr.confirm_transaction(nonce)   # transaction accepted by the node
        nonce_mgr.release_nonce(nonce)         # transaction never left the client
    """

    def __init__(self, w3: Web3, account_address: str, sync_interval: float = 30.0):
        self.w3 = w3
        self.account_address = Web3.to_checksum_address(account_address)
        self._lock = threading.Lock()
        self._current_nonce: Optional[int] = None
        self._pending_nonces: set = set()
        self._last_sync_time: float = 0
        self._sync_interval = sync_interval

    def _sync_nonce(self) -> int:
        return self.w3.eth.get_transaction_count(self.account_address, 'pending')

    def get_next_nonce(self, force_sync: bool = False) -> int:
        """Get the next available nonce, re-syncing with the node periodically."""
        with self._lock:
            current_time = time.time()

            if (self._current_nonce is None or
                force_sync or
                current_time - self._last_sync_time > self._sync_interval):

                blockchain_nonce = self._sync_nonce()
                self._pending_nonces = {n for n in self._pending_nonces if n >= blockchain_nonce}

                if self._current_nonce is None:
                    self._current_nonce = blockchain_nonce
                else:
                    # external transactions may have been sent from the same account
                    self._current_nonce = max(self._current_nonce, blockchain_nonce)

                self._last_sync_time = current_time
                logger.debug(f"Synced nonce with blockchain: {self._current_nonce}")

            nonce = self._current_nonce
            self._current_nonce += 1
            self._pending_nonces.add(nonce)

            logger.debug(f"Allocated nonce: {nonce}, pending: {len(self._pending_nonces)}")
            return nonce

    def confirm_transaction(self, nonce: int):
        """Mark a nonce as consumed."""
        with self._lock:
            self._pending_nonces.discard(nonce)

    def release_nonce(self, nonce: int):
        """
        Release a nonce whose transaction was never sent.

        Reclaims it if it was the most recently allocated one, so rapid
        failures do not leave nonce gaps.
        """
        with self._lock:
            self._pending_nonces.discard(nonce)
            if self._current_nonce is not None and nonce == self._current_nonce - 1:
                self._current_nonce = nonce
            logger.debug(f"Released nonce: {nonce}, current: {self._current_nonce}")

    def reset(self):
        """Force re-sync on next call."""
        with self._lock:
            self._current_nonce = None
            self._pending_nonces.clear()
            self._last_sync_time = 0

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending_nonces)


class GasEstimator:
    """
    Gas estimation with fallbacks.

    Usage:
        estimator = GasEstimator(w3, buffer_percent=20)
        gas_limit = estimator.estimate(token.functions.approve(spender, amount), owner, 'approve')
    """

    # Default gas limits by operation type
    DEFAULTS = {
        'approve': 60000,
        'swap': 300000,
        'add_liquidity': 600000,
        'withdraw_liquidity': 400000,
    }

    def __init__(self, w3: Web3, buffer_percent: int = 20):
        self.w3 = w3
        self.buffer_percent = buffer_percent

    def estimate(
        self,
        contract_function,
        from_address: str,
        default_type: str = 'approve',
        max_gas: int = 3000000
    ) -> int:
        """
        Estimate gas for a contract call with a safety buffer.

        Returns:
            Estimated gas with buffer, or the default for `default_type` when
            estimation fails
        """
        try:
            estimated = contract_function.estimate_gas({'from': Web3.to_checksum_address(from_address)})
            result = min(int(estimated * (1 + self.buffer_percent / 100)), max_gas)
            logger.debug(f"Gas estimated: {estimated}, with buffer: {result}")
            return result

        except ContractLogicError as e:
            logger.warning(f"Gas estimation failed (contract error): {e}")
            return self.DEFAULTS.get(default_type, 200000)

        except Exception as e:
            logger.warning(f"Gas estimation failed: {e}, using default for '{default_type}'")
            return self.DEFAULTS.get(default_type, 200000)


class TransactionSender:
    """
    Signs and submits contract calls for one account.

    Submission returns as soon as the node accepts the signed transaction;
    waiting for the receipt is a separate, explicit step.
    """

    def __init__(
        self,
        w3: Web3,
        account: LocalAccount,
        nonce_manager: NonceManager = None,
        gas_estimator: GasEstimator = None,
        chain_id: int = None
    ):
        self.w3 = w3
        self.account = account
        self.chain_id = chain_id
        self.nonce_manager = nonce_manager or NonceManager(w3, account.address)
        self.gas_estimator = gas_estimator or GasEstimator(w3, buffer_percent=20)

    @property
    def address(self) -> str:
        return self.account.address

    def _get_gas_params(self) -> Dict[str, int]:
        """EIP-1559 if supported, legacy gasPrice otherwise."""
        try:
            max_priority_fee = self.w3.eth.max_priority_fee
            base_fee = self.w3.eth.get_block('latest')['baseFeePerGas']
            return {
                'maxPriorityFeePerGas': max_priority_fee,
                'maxFeePerGas': base_fee * 2 + max_priority_fee,
            }
        except Exception:
            return {'gasPrice': self.w3.eth.gas_price}

    def simulate(self, contract_function, context: str = "") -> Any:
        """
        eth_call the function from this account before submitting it.

        Raises:
            ExecutionReverted: the call would revert
            NetworkError / ExecutionRejected: the call could not be made
        """
        try:
            return contract_function.call({'from': self.account.address})
        except Exception as e:
            error = classify_error(e, f"{context} simulation" if context else "simulation")
            logger.error(f"Simulation failed: {error}")
            raise error from e

    def submit(self, contract_function, gas_type: str, context: str = "") -> str:
        """
        Build, sign and send a transaction.

        Returns:
            tx hash (0x-prefixed) once the node has accepted the transaction

        Raises:
            ExecutionRejected: signer or node refused the transaction
            NetworkError: RPC unreachable
        """
        nonce = self.nonce_manager.get_next_nonce()

        try:
            gas_limit = self.gas_estimator.estimate(contract_function, self.account.address, default_type=gas_type)
            tx_params = {
                'from': self.account.address,
                'nonce': nonce,
                'gas': gas_limit,
            }
            if self.chain_id is not None:
                tx_params['chainId'] = self.chain_id
            tx_params.update(self._get_gas_params())

            tx = contract_function.build_transaction(tx_params)
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)

        except Exception as e:
            self.nonce_manager.release_nonce(nonce)
            error = classify_error(e, context)
            logger.error(f"Submission failed ({context or gas_type}): {error}")
            raise error from e

        # Node accepted the transaction: nonce is consumed whatever its outcome
        self.nonce_manager.confirm_transaction(nonce)

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"TX sent ({context or gas_type}): {tx_hash_hex}, nonce={nonce}")
        return tx_hash_hex

    def wait_for_receipt(self, tx_hash: str, timeout: float = DEFAULT_CONFIRMATION_TIMEOUT):
        """
        Wait until the transaction is mined.

        Raises:
            Timeout: not mined within `timeout` seconds (outcome unknown)
            NetworkError: RPC unreachable
        """
        try:
            return self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except Exception as e:
            error = classify_error(e, f"receipt for {tx_hash}")
            error.tx_hash = tx_hash
            logger.error(f"Waiting for {tx_hash} failed: {error}")
            raise error from e
