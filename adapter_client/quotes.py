"""
Quote lookup through the adapter's read-only getQuote.

Quote cache is read-through and only remembers the most recent successful
read per (token_in, token_out, fee, amount_in). A failed read never falls
back to an older entry.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .contracts.adapter import AdapterContract
from .errors import AdapterError, InvalidInput, QuoteUnavailable
from .math.slippage import DEFAULT_SLIPPAGE_BPS, min_acceptable_out, slippage_percent
from .tokens import TokenHandle

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_MAX_AGE = 30.0  # seconds

QuoteKey = Tuple[str, str, int, int]


@dataclass
class Quote:
    """Результат getQuote. Используется один раз."""
    token_in: TokenHandle
    token_out: TokenHandle
    fee: int
    amount_in: int
    amount_out: int
    retrieved_at: float
    _consumed: bool = field(default=False, repr=False, compare=False)

    @property
    def age(self) -> float:
        return time.time() - self.retrieved_at

    @property
    def consumed(self) -> bool:
        return self._consumed

    def is_stale(self, max_age: float) -> bool:
        return self.age > max_age

    def ensure_fresh(self, max_age: float):
        if self.is_stale(max_age):
            raise QuoteUnavailable(
                f"Quote for {self.token_in.label}->{self.token_out.label} is {self.age:.1f}s old "
                f"(max age {max_age}s)"
            )

    def consume(self) -> "Quote":
        """Mark the quote as used. A quote can back only one submission."""
        if self._consumed:
            raise QuoteUnavailable("Quote already consumed; request a new one")
        self._consumed = True
        return self

    def min_out(self, slippage_bps: int = DEFAULT_SLIPPAGE_BPS) -> int:
        return min_acceptable_out(self.amount_out, slippage_bps)


class QuoteEstimator:
    """
    Quote + slippage floor for exact-input swaps.

    Usage:
        estimator = QuoteEstimator(adapter, max_age=30)
        quote, min_out = estimator.estimate_min_out(weth, usdc, 3000, 10**18)
    """

    def __init__(
        self,
        adapter: AdapterContract,
        max_age: float = DEFAULT_QUOTE_MAX_AGE,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    ):
        self.adapter = adapter
        self.max_age = max_age
        self.slippage_bps = slippage_bps
        self._cache: Dict[QuoteKey, Quote] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(token_in: TokenHandle, token_out: TokenHandle, fee: int, amount_in: int) -> QuoteKey:
        return token_in.address.lower(), token_out.address.lower(), fee, amount_in

    def get_quote(self, token_in: TokenHandle, token_out: TokenHandle, fee: int, amount_in: int) -> Quote:
        """
        Fresh quote for swapping `amount_in` of token_in.

        Returns a new Quote object each time (cached values are copied) so
        that consuming one never affects another caller.

        Raises:
            InvalidInput: non-positive fee / amount, identical tokens
            QuoteUnavailable: read failed or returned zero output
        """
        if isinstance(amount_in, bool) or not isinstance(amount_in, int) or amount_in <= 0:
            raise InvalidInput(f"amount_in must be a positive integer, got {amount_in!r}")
        if fee <= 0:
            raise InvalidInput(f"fee must be positive, got {fee}")
        if token_in.address == token_out.address:
            raise InvalidInput("token_in and token_out must differ")

        key = self._key(token_in, token_out, fee, amount_in)

        with self._lock:
            cached = self._cache.get(key)
        if cached is not None and not cached.is_stale(self.max_age):
            logger.debug(f"Quote cache hit: {token_in.label}->{token_out.label} amount_in={amount_in}")
            return Quote(token_in, token_out, fee, amount_in, cached.amount_out, cached.retrieved_at)

        try:
            amount_out = self.adapter.get_quote(token_in.address, token_out.address, fee, amount_in)
        except AdapterError as e:
            logger.error(f"Failed to get quote: {e}")
            raise QuoteUnavailable(f"getQuote failed for {token_in.label}->{token_out.label}: {e}") from e

        if amount_out <= 0:
            raise QuoteUnavailable(f"No liquidity for {token_in.label}->{token_out.label} at fee {fee}")

        quote = Quote(token_in, token_out, fee, amount_in, amount_out, time.time())
        with self._lock:
            self._cache[key] = Quote(token_in, token_out, fee, amount_in, amount_out, quote.retrieved_at)

        logger.info(
            f"Quote: {token_in.format_units(amount_in)} {token_in.label} -> "
            f"{token_out.format_units(amount_out)} {token_out.label} (fee={fee / 10000}%)"
        )
        return quote

    def estimate_min_out(
        self,
        token_in: TokenHandle,
        token_out: TokenHandle,
        fee: int,
        amount_in: int,
        slippage_bps: Optional[int] = None
    ) -> Tuple[Quote, int]:
        """
        Quote plus its slippage-adjusted minimum output.

        Returns:
            (quote, min_out)
        """
        bps = self.slippage_bps if slippage_bps is None else slippage_bps
        quote = self.get_quote(token_in, token_out, fee, amount_in)
        min_out = quote.min_out(bps)
        logger.info(f"min_out={min_out} (slippage {slippage_percent(bps)}%)")
        return quote, min_out

    def invalidate(self):
        with self._lock:
            self._cache.clear()
