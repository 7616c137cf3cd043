"""
Uniswap V3 Pool Factory Integration

Поиск пула по паре токенов и fee tier, чтение текущего тика и tick spacing.
Состояние пула не кэшируется: каждый запрос читает сеть заново.
"""

import logging
from typing import Optional

from web3 import Web3
from web3.contract import Contract

from .abis import FACTORY_ABI, POOL_ABI
from ..errors import InvalidPoolState, PoolNotFound, classify_error
from ..math.ticks import PoolTickState

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# slot0() selector
SLOT0_SELECTOR = bytes.fromhex('3850c7bd')


class PoolFactory:
    """
    Класс для чтения пулов Uniswap V3 Factory.

    Usage:
        factory = PoolFactory(w3, factory_address)
        state = factory.get_pool_tick_state(weth, usdc, 3000)
        print(state.current_tick, state.tick_spacing)
    """

    def __init__(self, w3: Web3, factory_address: str):
        self.w3 = w3
        self.factory_address = Web3.to_checksum_address(factory_address)
        self.factory: Contract = w3.eth.contract(address=self.factory_address, abi=FACTORY_ABI)

    def get_pool_address(self, token_a: str, token_b: str, fee: int) -> Optional[str]:
        """
        Адрес пула или None если пул не существует.

        Порядок токенов не важен: фабрика сортирует их сама.
        """
        try:
            pool_address = self.factory.functions.getPool(
                Web3.to_checksum_address(token_a),
                Web3.to_checksum_address(token_b),
                fee
            ).call()
        except Exception as e:
            raise classify_error(e, "getPool") from e

        if int(pool_address, 16) == 0:
            return None

        return Web3.to_checksum_address(pool_address)

    def _read_slot0(self, pool: Contract, pool_address: str):
        """
        (sqrtPriceX96, tick) из slot0.

        Некоторые форки V3 возвращают slot0 с другим набором полей, поэтому
        при ошибке декодирования читаем первые два слова через raw eth_call.
        """
        try:
            slot0 = pool.functions.slot0().call()
            return slot0[0], slot0[1]
        except Exception as e:
            logger.debug(f"slot0 ABI decode failed, trying raw eth_call: {e}")

        try:
            raw = self.w3.eth.call({'to': pool_address, 'data': SLOT0_SELECTOR})
        except Exception as e:
            raise classify_error(e, f"slot0 for pool {pool_address}") from e

        if len(raw) < 64:
            raise InvalidPoolState(f"slot0 for pool {pool_address} returned {len(raw)} bytes")

        sqrt_price_x96 = int.from_bytes(raw[0:32], 'big')
        tick_raw = int.from_bytes(raw[32:64], 'big')
        tick = tick_raw - 2**256 if tick_raw >= 2**255 else tick_raw
        return sqrt_price_x96, tick

    def get_pool_tick_state(self, token_a: str, token_b: str, fee: int) -> PoolTickState:
        """
        Текущее состояние тиков пула.

        Raises:
            PoolNotFound: пул не создан или не инициализирован
            InvalidPoolState: tickSpacing <= 0
        """
        pool_address = self.get_pool_address(token_a, token_b, fee)
        if pool_address is None:
            raise PoolNotFound(
                f"Pool does NOT EXIST for tokens {token_a[:10]}.../{token_b[:10]}... with fee tier {fee}"
            )

        pool = self.w3.eth.contract(address=pool_address, abi=POOL_ABI)
        sqrt_price_x96, tick = self._read_slot0(pool, pool_address)

        if sqrt_price_x96 == 0:
            raise PoolNotFound(f"Pool exists at {pool_address} but is NOT INITIALIZED")

        try:
            tick_spacing = pool.functions.tickSpacing().call()
        except Exception as e:
            raise classify_error(e, f"tickSpacing for pool {pool_address}") from e

        if tick_spacing <= 0:
            raise InvalidPoolState(f"Pool {pool_address} reports tickSpacing={tick_spacing}")

        logger.info(f"Pool {pool_address}: tick={tick}, tickSpacing={tick_spacing}")
        return PoolTickState(
            pool_address=pool_address,
            current_tick=tick,
            tick_spacing=tick_spacing,
            sqrt_price_x96=sqrt_price_x96,
        )
