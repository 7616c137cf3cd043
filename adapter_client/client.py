"""
Adapter Client

Точка сборки: один Web3, один аккаунт, общие NonceManager / AllowanceGate
для всех workflow, чтобы approvals и nonce не дублировались между
свопами и операциями с позициями.
"""

import logging

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .allowance import AllowanceCache, AllowanceGate
from .contracts.adapter import AdapterContract
from .contracts.pool_factory import PoolFactory
from .errors import InvalidInput
from .math.slippage import DEFAULT_SLIPPAGE_BPS
from .quotes import DEFAULT_QUOTE_MAX_AGE, QuoteEstimator
from .tokens import TokenHandle, TokenResolver
from .transactions import DEFAULT_CONFIRMATION_TIMEOUT, GasEstimator, NonceManager, TransactionSender
from .workflows import PositionWorkflow, SwapWorkflow

logger = logging.getLogger(__name__)


class AdapterClient:
    """
    Клиент контракта-адаптера.

    Usage:
    ```python
    client = AdapterClient(
        rpc_url="http://127.0.0.1:8545",
        private_key="0x...",
        adapter_address="0x...",
        factory_address="0x1F98431c8aD98523631AE4a59f267346ea31F984",
        chain_id=31337,
    )
    weth = client.token("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1")
    usdc = client.token("0xaf88d065e77c8cC2239327C5EDb3A432268e5831")

    quote, min_out = client.quotes.estimate_min_out(usdc, weth, 3000, 1000 * 10**6)
    result = client.swaps.swap_from_quote(quote)
    ```
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        adapter_address: str,
        factory_address: str,
        chain_id: int = None,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        quote_max_age: float = DEFAULT_QUOTE_MAX_AGE,
        approve_max: bool = False,
        proxy: dict = None  # {"http": "socks5://...", "https": "socks5://..."}
    ):
        if not private_key:
            raise InvalidInput("private_key is required")
        if not adapter_address or not Web3.is_address(adapter_address):
            raise InvalidInput(f"Invalid adapter address: {adapter_address!r}")

        # Create HTTPProvider with optional proxy support
        if proxy:
            provider = Web3.HTTPProvider(endpoint_uri=rpc_url, request_kwargs={"proxies": proxy})
        else:
            provider = Web3.HTTPProvider(rpc_url)

        self.w3 = Web3(provider)
        self.chain_id = chain_id
        self.account: LocalAccount = Account.from_key(private_key)

        self.nonce_manager = NonceManager(self.w3, self.account.address)
        self.gas_estimator = GasEstimator(self.w3, buffer_percent=20)
        self.sender = TransactionSender(
            self.w3,
            self.account,
            nonce_manager=self.nonce_manager,
            gas_estimator=self.gas_estimator,
            chain_id=chain_id
        )
        self.gate = AllowanceGate(
            self.w3,
            self.sender,
            cache=AllowanceCache(),
            confirmation_timeout=confirmation_timeout,
            approve_max=approve_max
        )

        self.adapter = AdapterContract(self.w3, adapter_address)
        self.pool_factory = PoolFactory(self.w3, factory_address)
        self.tokens = TokenResolver(self.w3)
        self.quotes = QuoteEstimator(self.adapter, max_age=quote_max_age, slippage_bps=slippage_bps)

        self.positions = PositionWorkflow(
            self.w3,
            self.account,
            adapter_address,
            factory_address,
            adapter=self.adapter,
            sender=self.sender,
            gate=self.gate,
            pool_factory=self.pool_factory,
            confirmation_timeout=confirmation_timeout
        )
        self.swaps = SwapWorkflow(
            self.w3,
            self.account,
            adapter_address,
            adapter=self.adapter,
            sender=self.sender,
            gate=self.gate,
            confirmation_timeout=confirmation_timeout,
            quote_max_age=quote_max_age,
            slippage_bps=slippage_bps
        )

        logger.info(f"Adapter client ready: account={self.account.address}, adapter={self.adapter.address}")

    @property
    def address(self) -> str:
        return self.account.address

    def token(self, token_address: str) -> TokenHandle:
        return self.tokens.resolve(token_address)
