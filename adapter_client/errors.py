"""
Error taxonomy for adapter workflows.

Every failure a workflow can end in is an AdapterError subclass with a
stable `reason` code. The code is what WorkflowStatus.Failed carries.

Includes:
- InvalidInput / InvalidPoolState / PoolNotFound: rejected before any submission
- ApprovalFailed: approve() declined or reverted
- QuoteUnavailable: quote read failed or went stale
- ExecutionRejected / ExecutionReverted / NetworkError: primary call failures
- Timeout: confirmation wait expired
- WorkflowAbandoned / SequencerBusy: sequencer lifecycle
"""

from typing import Optional

import requests
from web3.exceptions import ContractLogicError, TimeExhausted


class AdapterError(Exception):
    """Base class for all workflow failures."""

    reason = "Error"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class InvalidInput(AdapterError):
    """Malformed amounts or ticks. Never retried."""

    reason = "InvalidInput"


class InvalidPoolState(AdapterError):
    """Pool returned state that cannot be used (e.g. tickSpacing <= 0)."""

    reason = "InvalidPoolState"


class PoolNotFound(AdapterError):
    """No pool (or no initialized pool) for the pair and fee tier."""

    reason = "PoolNotFound"


class ApprovalFailed(AdapterError):
    """Approval was rejected by the signer or reverted on-chain."""

    reason = "ApprovalFailed"

    def __init__(self, token: str, cause: str, tx_hash: Optional[str] = None):
        super().__init__(f"Approval failed for token {token}: {cause}", tx_hash)
        self.token = token
        self.cause = cause


class QuoteUnavailable(AdapterError):
    """Quote read failed, returned nothing, or is older than its max age."""

    reason = "QuoteUnavailable"


class ExecutionRejected(AdapterError):
    """Signer or node declined to accept the transaction."""

    reason = "ExecutionRejected"


class ExecutionReverted(AdapterError):
    """Simulation or on-chain execution reverted (e.g. slippage floor)."""

    reason = "ExecutionReverted"

    def __init__(self, message: str, revert_reason: Optional[str] = None, tx_hash: Optional[str] = None):
        super().__init__(message, tx_hash)
        self.revert_reason = revert_reason


class Timeout(AdapterError):
    """
    Confirmation wait expired.

    The underlying transaction may still confirm later; nothing is
    asserted about its eventual outcome.
    """

    reason = "Timeout"


class NetworkError(AdapterError):
    """RPC transport failure."""

    reason = "NetworkError"


class WorkflowAbandoned(AdapterError):
    """Invocation was abandoned before its next submission."""

    reason = "Abandoned"


class SequencerBusy(AdapterError):
    """Sequencer is already approving or executing another invocation."""

    reason = "Busy"


# Error(string) selector
_ERROR_STRING_SELECTOR = "08c379a0"


def decode_revert_reason(error_data) -> Optional[str]:
    """
    Decode an Error(string) revert payload.

    Args:
        error_data: hex string (with or without 0x) or bytes

    Returns:
        Decoded message or None if the payload is not Error(string)
    """
    if not error_data:
        return None

    if isinstance(error_data, (bytes, bytearray)):
        data = bytes(error_data).hex()
    elif isinstance(error_data, str):
        data = error_data[2:] if error_data.startswith("0x") else error_data
    else:
        return None

    if not data.startswith(_ERROR_STRING_SELECTOR):
        return None

    try:
        payload = bytes.fromhex(data[8:])
        # offset (32) + length (32) + utf-8 bytes
        length = int.from_bytes(payload[32:64], "big")
        return payload[64:64 + length].decode("utf-8", errors="replace")
    except ValueError:
        return None


def classify_error(exc: BaseException, context: str = "") -> AdapterError:
    """
    Map a web3 / transport exception onto the workflow taxonomy.

    AdapterError instances are returned unchanged.
    """
    if isinstance(exc, AdapterError):
        return exc

    prefix = f"{context}: " if context else ""

    if isinstance(exc, TimeExhausted):
        return Timeout(f"{prefix}confirmation wait timed out ({exc})")

    if isinstance(exc, ContractLogicError):
        revert_reason = decode_revert_reason(getattr(exc, "data", None)) or getattr(exc, "message", None)
        return ExecutionReverted(f"{prefix}execution reverted: {exc}", revert_reason=revert_reason)

    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return NetworkError(f"{prefix}RPC unreachable: {exc}")

    return ExecutionRejected(f"{prefix}{exc}")
