"""
Slippage protection math.

Integer-only: the floor is computed with floor division so it is never
stricter than the requested tolerance.

slippage_bps is expressed over a 100000 denominator:
    500 -> 0.5%, 1000 -> 1%, 100000 -> 100%
"""

from ..errors import InvalidInput

SLIPPAGE_DENOMINATOR = 100_000
DEFAULT_SLIPPAGE_BPS = 500


def validate_slippage_bps(slippage_bps: int) -> int:
    if isinstance(slippage_bps, bool) or not isinstance(slippage_bps, int):
        raise InvalidInput(f"slippage_bps must be an integer, got {slippage_bps!r}")
    if not 0 <= slippage_bps <= SLIPPAGE_DENOMINATOR:
        raise InvalidInput(f"slippage_bps must be within [0, {SLIPPAGE_DENOMINATOR}], got {slippage_bps}")
    return slippage_bps


def min_acceptable_out(quote: int, slippage_bps: int = DEFAULT_SLIPPAGE_BPS) -> int:
    """
    Minimum output accepted for a quoted amount.

        min_out = quote - (quote * slippage_bps) // 100000

    Example:
        min_acceptable_out(1_000_000, 500)  # 995000
    """
    if isinstance(quote, bool) or not isinstance(quote, int) or quote <= 0:
        raise InvalidInput(f"quote must be a positive integer, got {quote!r}")
    validate_slippage_bps(slippage_bps)

    return quote - (quote * slippage_bps) // SLIPPAGE_DENOMINATOR


def slippage_percent(slippage_bps: int) -> float:
    """Human-readable percent for logging (500 -> 0.5)."""
    return slippage_bps * 100 / SLIPPAGE_DENOMINATOR
