"""
Uniswap V3 Tick Mathematics

Расчёт диапазона тиков для позиции вокруг текущего тика пула.

- price(i) = 1.0001^i
- Допустимы только тики, кратные tick_spacing пула
- nearest_usable_tick = floor(current_tick / tick_spacing) * tick_spacing

Tick spacing по fee tier:
- 0.01% (100) -> spacing 1
- 0.05% (500) -> spacing 10
- 0.30% (3000) -> spacing 60
- 1.00% (10000) -> spacing 200
"""

from dataclasses import dataclass

from ..errors import InvalidInput, InvalidPoolState

# Константы
MIN_TICK = -887272
MAX_TICK = 887272

# Ширина диапазона в шагах tick_spacing по каждую сторону от текущего тика
DEFAULT_TICK_WIDTH = 20

# Fee tier -> tick spacing
FEE_TO_TICK_SPACING = {
    100: 1,      # 0.01%
    500: 10,     # 0.05%
    3000: 60,    # 0.30%
    10000: 200,  # 1.00%
}


@dataclass(frozen=True)
class PoolTickState:
    """Состояние пула, нужное для расчёта тиков (читается из сети при каждом запросе)."""
    pool_address: str
    current_tick: int
    tick_spacing: int
    sqrt_price_x96: int = 0


@dataclass(frozen=True)
class TickRange:
    """Диапазон тиков позиции [lower, upper)."""
    lower: int
    upper: int

    @property
    def width_ticks(self) -> int:
        return self.upper - self.lower

    def validate(self, tick_spacing: int):
        """
        Проверка инвариантов диапазона для пула с данным tick_spacing.

        Raises:
            InvalidPoolState: tick_spacing <= 0
            InvalidInput: lower >= upper, тики не кратны spacing или вне [MIN_TICK, MAX_TICK]
        """
        if tick_spacing <= 0:
            raise InvalidPoolState(f"tick_spacing must be positive, got {tick_spacing}")

        if self.lower >= self.upper:
            raise InvalidInput(f"tickLower ({self.lower}) >= tickUpper ({self.upper}). Invalid tick range!")

        if self.lower % tick_spacing != 0:
            raise InvalidInput(
                f"tickLower ({self.lower}) not aligned to tick_spacing ({tick_spacing}). "
                f"Remainder: {self.lower % tick_spacing}"
            )

        if self.upper % tick_spacing != 0:
            raise InvalidInput(
                f"tickUpper ({self.upper}) not aligned to tick_spacing ({tick_spacing}). "
                f"Remainder: {self.upper % tick_spacing}"
            )

        if self.lower < MIN_TICK or self.upper > MAX_TICK:
            raise InvalidInput(f"Tick range [{self.lower}, {self.upper}] outside [{MIN_TICK}, {MAX_TICK}]")


def nearest_usable_tick(current_tick: int, tick_spacing: int) -> int:
    """
    Ближайший допустимый тик не выше текущего.

    Используется floor (к -∞), а не отсечение к нулю: для current_tick=-7
    и spacing=10 результат -10, а не 0.

    Raises:
        InvalidPoolState: tick_spacing <= 0
    """
    if tick_spacing <= 0:
        raise InvalidPoolState(f"tick_spacing must be positive, got {tick_spacing}")

    # Floor division works correctly for both positive and negative
    return (current_tick // tick_spacing) * tick_spacing


def compute_tick_range(current_tick: int, tick_spacing: int, width: int = DEFAULT_TICK_WIDTH) -> TickRange:
    """
    Диапазон тиков вокруг текущей цены пула.

    Args:
        current_tick: Текущий тик пула (slot0.tick), может быть отрицательным
        tick_spacing: Шаг тиков пула
        width: Количество шагов tick_spacing по каждую сторону

    Returns:
        TickRange, где upper - lower = 2 * tick_spacing * width

    Example:
        compute_tick_range(123456, 60)  # TickRange(lower=122220, upper=124620)
    """
    if width < 0:
        raise InvalidInput(f"width must be non-negative, got {width}")

    nearest = nearest_usable_tick(current_tick, tick_spacing)
    tick_range = TickRange(
        lower=nearest - tick_spacing * width,
        upper=nearest + tick_spacing * width,
    )

    if tick_range.lower < MIN_TICK or tick_range.upper > MAX_TICK:
        raise InvalidInput(
            f"Range [{tick_range.lower}, {tick_range.upper}] exceeds tick bounds; reduce width ({width})"
        )

    return tick_range


def align_tick_to_spacing(tick: int, tick_spacing: int, round_down: bool = True) -> int:
    """
    Выравнивание тика к tick_spacing.

    Args:
        tick: Исходный тик
        tick_spacing: Шаг тиков
        round_down: True = округление вниз (к -∞), False = вверх (к +∞)
    """
    if tick_spacing <= 0:
        raise InvalidPoolState(f"tick_spacing must be positive, got {tick_spacing}")

    if tick % tick_spacing == 0:
        return tick

    if round_down:
        return (tick // tick_spacing) * tick_spacing
    return ((tick // tick_spacing) + 1) * tick_spacing


def get_tick_spacing(fee: int) -> int:
    """
    tick_spacing по стандартному fee tier.

    Raises:
        InvalidInput: неизвестный fee tier
    """
    if fee in FEE_TO_TICK_SPACING:
        return FEE_TO_TICK_SPACING[fee]

    valid_fees = sorted(FEE_TO_TICK_SPACING.keys())
    raise InvalidInput(f"Unknown fee tier: {fee}. Valid fee tiers are: {valid_fees}")


def tick_to_price(tick: int, decimals0: int = 18, decimals1: int = 18) -> float:
    """
    Цена token1/token0 в человеческих единицах для тика.

    Только для отображения; в расчётах сумм не используется.
    """
    return (1.0001 ** tick) * (10 ** (decimals0 - decimals1))
