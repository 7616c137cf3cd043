"""
Adapter contract integration.

Адаптер оборачивает NonfungiblePositionManager, SwapRouter02 и QuoterV2:
- getQuote: котировка exact-input свопа (только чтение)
- swapExactInput: своп с минимальным выходом
- addLiquidity: создание позиции (NFT остаётся у адаптера, учёт в deposits)
- withdrawLiquidity: decreaseLiquidity + collect с минимальными суммами
"""

import logging
from dataclasses import dataclass

from web3 import Web3
from web3.contract import Contract

from .abis import ADAPTER_ABI
from ..errors import InvalidInput, classify_error

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Deposit:
    """Запись адаптера о позиции."""
    token_id: int
    owner: str
    liquidity: int
    token0: str
    token1: str


class AdapterContract:
    """
    Типизированная обёртка над контрактом адаптера.

    Мутирующие методы возвращают contract function (не отправляют транзакцию):
    подпись и отправка выполняются TransactionSender.
    """

    def __init__(self, w3: Web3, adapter_address: str):
        self.w3 = w3
        self.address = Web3.to_checksum_address(adapter_address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=ADAPTER_ABI)

    def get_quote(self, token_in: str, token_out: str, fee: int, amount_in: int) -> int:
        """
        Котировка через QuoterV2 адаптера.

        Raises:
            AdapterError: вызов не удался (revert / сеть)
        """
        try:
            return self.contract.functions.getQuote(
                Web3.to_checksum_address(token_in),
                Web3.to_checksum_address(token_out),
                fee,
                amount_in
            ).call()
        except Exception as e:
            raise classify_error(e, "getQuote") from e

    def get_deposit(self, token_id: int) -> Deposit:
        """
        Запись deposits(tokenId).

        Raises:
            InvalidInput: позиция не найдена у адаптера
        """
        try:
            owner, liquidity, token0, token1 = self.contract.functions.deposits(token_id).call()
        except Exception as e:
            raise classify_error(e, f"deposits({token_id})") from e

        if int(owner, 16) == 0:
            raise InvalidInput(f"Position {token_id} is not held by the adapter")

        return Deposit(token_id=token_id, owner=owner, liquidity=liquidity, token0=token0, token1=token1)

    def swap_exact_input(self, token_in: str, token_out: str, fee: int, amount_in: int, min_out: int):
        return self.contract.functions.swapExactInput(
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            fee,
            amount_in,
            min_out
        )

    def add_liquidity(
        self,
        token_a: str,
        token_b: str,
        fee: int,
        amount_a: int,
        amount_b: int,
        tick_lower: int,
        tick_upper: int
    ):
        return self.contract.functions.addLiquidity(
            Web3.to_checksum_address(token_a),
            Web3.to_checksum_address(token_b),
            fee,
            amount_a,
            amount_b,
            tick_lower,
            tick_upper
        )

    def withdraw_liquidity(self, token_id: int, liquidity: int, amount0_min: int, amount1_min: int):
        return self.contract.functions.withdrawLiquidity(token_id, liquidity, amount0_min, amount1_min)
