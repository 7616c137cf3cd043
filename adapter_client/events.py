"""
Adapter domain events.

Decodes LiquidityAdded / LiquidityRemoved / TokensSwapped from a receipt's
logs by topic0 and exposes the canonical pair key used by the indexer:
lowercase hex of the smaller address, '-', the larger one.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from eth_abi import decode
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)

# (name, abi type, indexed)
EventParam = Tuple[str, str, bool]


def canonical_pair_id(token_a: str, token_b: str) -> str:
    """Порядок-независимый ключ пары."""
    a = token_a.lower()
    b = token_b.lower()
    return f"{a}-{b}" if a < b else f"{b}-{a}"


class EventLayout:
    """Event signature + parameter layout; topic0 = keccak(signature)."""

    def __init__(self, name: str, params: List[EventParam]):
        self.name = name
        self.params = params
        self.signature = f"{name}({','.join(p[1] for p in params)})"
        self.topic0 = Web3.keccak(text=self.signature)

    def decode_log(self, log) -> dict:
        """
        Decode one log into {param_name: value}.

        Indexed parameters are read from topics[1:], the rest from data.
        Raises ValueError if the log does not fit the layout.
        """
        topics = [HexBytes(t) for t in log['topics']]
        data = HexBytes(log['data'])

        indexed = [p for p in self.params if p[2]]
        non_indexed = [p for p in self.params if not p[2]]

        if len(topics) - 1 != len(indexed):
            raise ValueError(
                f"{self.name}: expected {len(indexed)} indexed topics, got {len(topics) - 1}"
            )

        values = {}
        for (name, abi_type, _), topic in zip(indexed, topics[1:]):
            values[name] = decode([abi_type], bytes(topic))[0]

        decoded = decode([p[1] for p in non_indexed], bytes(data))
        for (name, _, _), value in zip(non_indexed, decoded):
            values[name] = value

        return values


LIQUIDITY_ADDED = EventLayout("LiquidityAdded", [
    ("tokenId", "uint256", True),
    ("tokenA", "address", True),
    ("tokenB", "address", True),
    ("fee", "uint24", False),
    ("amountA", "uint256", False),
    ("amountB", "uint256", False),
    ("tickLower", "int24", False),
    ("tickUpper", "int24", False),
])

LIQUIDITY_REMOVED = EventLayout("LiquidityRemoved", [
    ("tokenId", "uint256", True),
    ("tokenA", "address", True),
    ("tokenB", "address", True),
    ("fee", "uint24", False),
    ("amount0", "uint256", False),
    ("amount1", "uint256", False),
])

TOKENS_SWAPPED = EventLayout("TokensSwapped", [
    ("tokenIn", "address", True),
    ("tokenOut", "address", True),
    ("fee", "uint24", False),
    ("amountIn", "uint256", False),
    ("amountOut", "uint256", False),
])


@dataclass(frozen=True)
class LiquidityAddedEvent:
    token_id: int
    token_a: str
    token_b: str
    fee: int
    amount_a: int
    amount_b: int
    tick_lower: int
    tick_upper: int
    log_index: int = 0

    @property
    def pair_id(self) -> str:
        return canonical_pair_id(self.token_a, self.token_b)


@dataclass(frozen=True)
class LiquidityRemovedEvent:
    token_id: int
    token_a: str
    token_b: str
    fee: int
    amount0: int
    amount1: int
    log_index: int = 0

    @property
    def pair_id(self) -> str:
        return canonical_pair_id(self.token_a, self.token_b)


@dataclass(frozen=True)
class TokensSwappedEvent:
    token_in: str
    token_out: str
    fee: int
    amount_in: int
    amount_out: int
    log_index: int = 0

    @property
    def pair_id(self) -> str:
        return canonical_pair_id(self.token_in, self.token_out)


AdapterEvent = Union[LiquidityAddedEvent, LiquidityRemovedEvent, TokensSwappedEvent]


def _build_event(layout: EventLayout, values: dict, log_index: int) -> AdapterEvent:
    if layout is LIQUIDITY_ADDED:
        return LiquidityAddedEvent(
            token_id=values["tokenId"],
            token_a=Web3.to_checksum_address(values["tokenA"]),
            token_b=Web3.to_checksum_address(values["tokenB"]),
            fee=values["fee"],
            amount_a=values["amountA"],
            amount_b=values["amountB"],
            tick_lower=values["tickLower"],
            tick_upper=values["tickUpper"],
            log_index=log_index,
        )
    if layout is LIQUIDITY_REMOVED:
        return LiquidityRemovedEvent(
            token_id=values["tokenId"],
            token_a=Web3.to_checksum_address(values["tokenA"]),
            token_b=Web3.to_checksum_address(values["tokenB"]),
            fee=values["fee"],
            amount0=values["amount0"],
            amount1=values["amount1"],
            log_index=log_index,
        )
    return TokensSwappedEvent(
        token_in=Web3.to_checksum_address(values["tokenIn"]),
        token_out=Web3.to_checksum_address(values["tokenOut"]),
        fee=values["fee"],
        amount_in=values["amountIn"],
        amount_out=values["amountOut"],
        log_index=log_index,
    )


_LAYOUTS = (LIQUIDITY_ADDED, LIQUIDITY_REMOVED, TOKENS_SWAPPED)


def decode_receipt_events(receipt, adapter_address: Optional[str] = None) -> List[AdapterEvent]:
    """
    Decode all adapter events in a receipt.

    Args:
        receipt: transaction receipt (dict-like with 'logs')
        adapter_address: if given, logs emitted by other contracts are ignored
            (ERC20 Transfer, pool Swap, NPM IncreaseLiquidity ...)
    """
    events: List[AdapterEvent] = []
    adapter_lower = adapter_address.lower() if adapter_address else None

    for log in receipt.get('logs', []):
        if adapter_lower and str(log.get('address', '')).lower() != adapter_lower:
            continue

        topics = log.get('topics') or []
        if not topics:
            continue
        topic0 = HexBytes(topics[0])

        for layout in _LAYOUTS:
            if topic0 != layout.topic0:
                continue
            try:
                values = layout.decode_log(log)
            except Exception as e:
                logger.warning(f"Failed to decode {layout.name} log: {e}")
                break
            events.append(_build_event(layout, values, log.get('logIndex', 0)))
            break

    return events


def find_event(receipt, event_type: type, adapter_address: Optional[str] = None) -> Optional[AdapterEvent]:
    """First decoded event of the given dataclass type, or None."""
    for event in decode_receipt_events(receipt, adapter_address):
        if isinstance(event, event_type):
            return event
    return None
