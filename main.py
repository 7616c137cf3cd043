"""
Uniswap V3 Adapter Console

Интерактивное меню поверх контракта-адаптера:
- расчёт диапазона тиков вокруг текущей цены
- котировка и своп с защитой от проскальзывания
- добавление и вывод ликвидности
"""

import sys
from decimal import Decimal

from adapter_client import AdapterClient, AdapterError
from adapter_client.math.slippage import slippage_percent
from config import TOKENS_ARBITRUM, FEE_TIERS, DEFAULT_TICK_WIDTH, load_settings


def _ask_token(prompt: str) -> str:
    symbols = list(TOKENS_ARBITRUM.keys())
    while True:
        value = input(f"{prompt} ({'/'.join(symbols)} или адрес): ").strip()
        if value.upper() in TOKENS_ARBITRUM:
            return TOKENS_ARBITRUM[value.upper()].address
        if value.startswith("0x") and len(value) == 42:
            return value
        print("Неизвестный токен")


def _ask_fee() -> int:
    print("Fee tiers: " + ", ".join(f"{name}={fee}" for name, fee in FEE_TIERS.items()))
    while True:
        try:
            fee = int(input("Fee tier (например 3000): ").strip() or "3000")
            if fee in FEE_TIERS.values():
                return fee
            print("Неизвестный fee tier")
        except ValueError:
            print("Введите число")


def _ask_amount(prompt: str) -> Decimal:
    while True:
        raw = input(prompt).strip()
        try:
            value = Decimal(raw)
            if value > 0:
                return value
            print("Сумма должна быть > 0")
        except ArithmeticError:
            print("Введите число")


def _ask_int(prompt: str, default: int = None) -> int:
    while True:
        raw = input(prompt).strip()
        if not raw and default is not None:
            return default
        try:
            return int(raw)
        except ValueError:
            print("Введите целое число")


def _build_client() -> AdapterClient:
    settings = load_settings()

    if not settings.private_key:
        print("\nERROR: PRIVATE_KEY not found in .env file")
        print("Create .env file with: PRIVATE_KEY=0x...")
        sys.exit(1)
    if not settings.adapter_address:
        print("\nERROR: ADAPTER_ADDRESS not found in .env file")
        sys.exit(1)

    return AdapterClient(
        rpc_url=settings.rpc_url,
        private_key=settings.private_key,
        adapter_address=settings.adapter_address,
        factory_address=settings.chain.pool_factory,
        chain_id=settings.chain.chain_id,
        slippage_bps=settings.slippage_bps,
        confirmation_timeout=settings.confirmation_timeout,
        quote_max_age=settings.quote_max_age,
    )


def show_tick_range(client: AdapterClient):
    """Диапазон тиков вокруг текущей цены пула."""
    token_a = client.token(_ask_token("Token A"))
    token_b = client.token(_ask_token("Token B"))
    fee = _ask_fee()
    width = _ask_int(f"Ширина (шагов spacing, Enter = {DEFAULT_TICK_WIDTH}): ", DEFAULT_TICK_WIDTH)

    state = client.positions.get_pool_state(token_a, token_b, fee)
    tick_range = client.positions.resolve_tick_range(token_a, token_b, fee, width)

    print(f"\nPool: {state.pool_address}")
    print(f"Current tick: {state.current_tick}, tick spacing: {state.tick_spacing}")
    print(f"Tick range: [{tick_range.lower}, {tick_range.upper}] ({tick_range.width_ticks} ticks)")


def quote_and_swap(client: AdapterClient):
    """Котировка, затем своп по ней."""
    token_in = client.token(_ask_token("Token in"))
    token_out = client.token(_ask_token("Token out"))
    fee = _ask_fee()
    amount_in = token_in.to_units(_ask_amount(f"Сумма {token_in.label}: "))

    quote, min_out = client.quotes.estimate_min_out(token_in, token_out, fee, amount_in)
    print(f"\nQuote: {token_in.format_units(amount_in)} {token_in.label} -> "
          f"{token_out.format_units(quote.amount_out)} {token_out.label}")
    print(f"Min out ({slippage_percent(client.swaps.slippage_bps)}% slippage): "
          f"{token_out.format_units(min_out)} {token_out.label}")

    confirm = input("\nВыполнить своп? (yes/no): ")
    if confirm.lower() != "yes":
        print("Отменено")
        return

    result = client.swaps.swap_from_quote(quote)
    if not result.success:
        print(f"\n FAILED [{result.status}]: {result.error}")
        return

    print(f"\nTX: {result.tx_hash}")
    outcome = client.swaps.confirm_swap(result)
    print(f" SUCCESS! Received {token_out.format_units(outcome.amount_out)} {token_out.label}")


def add_liquidity(client: AdapterClient):
    """Позиция ±width шагов вокруг текущей цены."""
    token_a = client.token(_ask_token("Token A"))
    token_b = client.token(_ask_token("Token B"))
    fee = _ask_fee()
    amount_a = token_a.to_units(_ask_amount(f"Сумма {token_a.label}: "))
    amount_b = token_b.to_units(_ask_amount(f"Сумма {token_b.label}: "))
    width = _ask_int(f"Ширина (шагов spacing, Enter = {DEFAULT_TICK_WIDTH}): ", DEFAULT_TICK_WIDTH)

    tick_range = client.positions.resolve_tick_range(token_a, token_b, fee, width)
    print(f"\nTick range: [{tick_range.lower}, {tick_range.upper}]")

    confirm = input("Создать позицию? (yes/no): ")
    if confirm.lower() != "yes":
        print("Отменено")
        return

    result = client.positions.add_liquidity(
        token_a, token_b, fee, amount_a, amount_b, tick_range.lower, tick_range.upper
    )
    if not result.success:
        print(f"\n FAILED [{result.status}]: {result.error}")
        return

    print(f"\nTX: {result.tx_hash}")
    outcome = client.positions.confirm_add(result)
    print(f" SUCCESS! Position #{outcome.position_id}, liquidity={outcome.liquidity}")
    print(f"Used: {token_a.format_units(outcome.amount0)} {token_a.label}, "
          f"{token_b.format_units(outcome.amount1)} {token_b.label}")


def withdraw_liquidity(client: AdapterClient):
    """Вывод ликвидности из позиции."""
    position_id = _ask_int("Position ID: ")
    deposit = client.positions.get_position(position_id)
    print(f"\nPosition #{position_id}: liquidity={deposit.liquidity}")
    print(f"token0={deposit.token0}, token1={deposit.token1}")

    liquidity = _ask_int(f"Сколько ликвидности вывести (Enter = половина, {deposit.liquidity // 2}): ",
                         deposit.liquidity // 2)
    min0 = _ask_int("Min amount0 (Enter = 0): ", 0)
    min1 = _ask_int("Min amount1 (Enter = 0): ", 0)

    result = client.positions.withdraw_liquidity(position_id, liquidity, min0, min1)
    if not result.success:
        print(f"\n FAILED [{result.status}]: {result.error}")
        return

    print(f"\nTX: {result.tx_hash}")
    outcome = client.positions.confirm_withdraw(result)
    print(f" SUCCESS! Collected amount0={outcome.amount0}, amount1={outcome.amount1}")


def main():
    """Главная функция."""
    print("""
    Uniswap V3 Adapter Console
    """)

    client = _build_client()
    print(f"Account: {client.address}")
    print(f"Adapter: {client.adapter.address}")

    actions = {
        "1": show_tick_range,
        "2": quote_and_swap,
        "3": add_liquidity,
        "4": withdraw_liquidity,
    }

    while True:
        print("\nВыбери действие:")
        print("1. Диапазон тиков вокруг текущей цены")
        print("2. Котировка и своп")
        print("3. Добавить ликвидность")
        print("4. Вывести ликвидность")
        print("5. Выход")

        choice = input("\nВыбор (1-5): ").strip()

        if choice == "5":
            print("Выход")
            break
        if choice not in actions:
            print("Неверный выбор")
            continue

        try:
            actions[choice](client)
        except AdapterError as e:
            print(f"\n ERROR [{e.reason}]: {e}")


if __name__ == "__main__":
    main()
