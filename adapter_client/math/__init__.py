from .ticks import (
    PoolTickState,
    TickRange,
    nearest_usable_tick,
    compute_tick_range,
    align_tick_to_spacing,
    get_tick_spacing,
    DEFAULT_TICK_WIDTH,
)
from .slippage import min_acceptable_out, SLIPPAGE_DENOMINATOR, DEFAULT_SLIPPAGE_BPS
