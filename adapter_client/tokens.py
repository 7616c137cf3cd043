"""
Token identity and decimals lookup.

Includes:
- TokenHandle: immutable token address + decimals
- TokenResolver: thread-safe cache building TokenHandles from chain reads
"""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Union

from web3 import Web3

from .contracts.abis import ERC20_ABI
from .errors import InvalidInput, NetworkError, classify_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenHandle:
    """Immutable token identity with decimal precision."""
    address: str
    decimals: int
    symbol: str = ""

    def __post_init__(self):
        if not Web3.is_address(self.address):
            raise InvalidInput(f"Invalid token address: {self.address}")
        if not 0 <= self.decimals <= 77:
            raise InvalidInput(f"Invalid decimals for {self.address}: {self.decimals}")
        # frozen dataclass: normalise via object.__setattr__
        object.__setattr__(self, "address", Web3.to_checksum_address(self.address))

    @property
    def label(self) -> str:
        return self.symbol or f"{self.address[:10]}..."

    def to_units(self, amount: Union[str, int, Decimal]) -> int:
        """
        Human amount -> integer base units.

        Floats are rejected: amounts go through Decimal only.
        """
        if isinstance(amount, float):
            raise InvalidInput("Pass amounts as str or Decimal, not float")
        try:
            value = Decimal(amount)
        except (InvalidOperation, TypeError) as e:
            raise InvalidInput(f"Invalid amount {amount!r}: {e}") from e

        units = value * (Decimal(10) ** self.decimals)
        if units != units.to_integral_value():
            raise InvalidInput(f"{amount} has more than {self.decimals} decimal places for {self.label}")
        return int(units)

    def format_units(self, amount: int, places: int = 6) -> str:
        """Integer base units -> human string."""
        value = Decimal(amount) / (Decimal(10) ** self.decimals)
        return f"{value:,.{places}f}"


class TokenResolver:
    """
    Builds TokenHandles, caching decimals and symbols per address.

    Usage:
        resolver = TokenResolver(w3)
        weth = resolver.resolve("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1")
    """

    def __init__(self, w3: Web3, known: Dict[str, TokenHandle] = None):
        self.w3 = w3
        self._cache: Dict[str, TokenHandle] = {}
        self._lock = threading.Lock()

        for handle in (known or {}).values():
            self._cache[handle.address.lower()] = handle

    def resolve(self, token_address: str) -> TokenHandle:
        """
        Get a TokenHandle (cached).

        Raises:
            InvalidInput: malformed address
            NetworkError / ExecutionRejected: decimals() could not be read
        """
        if not Web3.is_address(token_address):
            raise InvalidInput(f"Invalid token address: {token_address}")

        address_lower = token_address.lower()
        with self._lock:
            if address_lower in self._cache:
                return self._cache[address_lower]

        token = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

        try:
            decimals = token.functions.decimals().call()
        except Exception as e:
            logger.error(f"Failed to get decimals for {token_address[:10]}...: {e}")
            error = classify_error(e, f"decimals() for {token_address}")
            if isinstance(error, NetworkError):
                raise error from e
            # Wrong decimals cause catastrophic amount errors: never default to 18
            raise InvalidInput(f"Cannot determine decimals for token {token_address}: {e}") from e

        try:
            symbol = token.functions.symbol().call()
        except Exception as e:
            logger.debug(f"Failed to get symbol for {token_address[:10]}...: {e}")
            symbol = ""

        handle = TokenHandle(address=token_address, decimals=decimals, symbol=symbol)
        with self._lock:
            self._cache[address_lower] = handle

        logger.debug(f"Resolved token {handle.label}: decimals={decimals}")
        return handle
