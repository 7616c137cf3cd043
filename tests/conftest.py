"""
Shared fixtures for all tests.
"""

import threading

import pytest
from unittest.mock import Mock, MagicMock

from adapter_client.tokens import TokenHandle


# Тестовые адреса
OWNER = "0x1234567890123456789012345678901234567890"
ADAPTER = "0x5555555555555555555555555555555555555555"
FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"
POOL = "0x7777777777777777777777777777777777777777"
WETH_ARB = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
USDC_ARB = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"


class MockWeb3:
    """Переиспользуемый мок Web3 для тестов."""

    def __init__(self, initial_nonce: int = 100):
        self._nonce = initial_nonce
        self.eth = MagicMock()
        self.eth.get_transaction_count = MagicMock(return_value=self._nonce)
        self.eth.gas_price = 100_000_000  # 0.1 gwei
        self.eth.max_priority_fee = 1_000_000
        self.eth.get_block = MagicMock(return_value={'baseFeePerGas': 10_000_000})
        self.eth.chain_id = 42161
        self.eth.send_raw_transaction = MagicMock(return_value=b'\x12\x34' * 16)
        self.eth.wait_for_transaction_receipt = MagicMock(return_value={
            'status': 1,
            'gasUsed': 300_000,
            'logs': [],
            'transactionHash': b'\x12\x34' * 16
        })
        self.eth.call = MagicMock(return_value=b'\x00' * 32)
        self.eth.contract = MagicMock()

    def set_nonce(self, nonce: int):
        self._nonce = nonce
        self.eth.get_transaction_count.return_value = nonce


class FakeCall:
    """Contract function, собранная фейковым контрактом."""

    def __init__(self, name: str, **kwargs):
        self.name = name
        self.kwargs = kwargs

    def __getattr__(self, item):
        try:
            return self.__dict__['kwargs'][item]
        except KeyError:
            raise AttributeError(item)


class FakeToken:
    """ERC20 с изменяемым allowance (один owner/spender на тест)."""

    def __init__(self, allowance: int = 0):
        self.allowance = allowance
        self.allowance_reads = 0
        self.contract = MagicMock()
        self.contract.functions.allowance.side_effect = self._allowance
        self.contract.functions.approve.side_effect = self._approve

    def _read(self, *args, **kwargs):
        self.allowance_reads += 1
        return self.allowance

    def _allowance(self, owner, spender):
        return Mock(call=Mock(side_effect=self._read))

    def _approve(self, spender, amount):
        return FakeCall('approve', token=self, spender=spender, amount=amount)


class FakeSender:
    """
    TransactionSender без сети.

    approve() применяется к FakeToken при получении receipt со status=1.
    """

    def __init__(self, address: str = OWNER):
        self.address = address
        self.submitted = []
        self.simulated = []
        self.failing_tokens = set()
        self.submit_error = None
        self.simulate_error = None
        self.wait_error = None
        self.release = threading.Event()
        self.release.set()
        self.on_wait = None
        self._calls = {}
        self._lock = threading.Lock()

    def simulate(self, fn, context: str = ""):
        self.simulated.append(fn)
        if self.simulate_error is not None:
            raise self.simulate_error
        return None

    def submit(self, fn, gas_type: str, context: str = "") -> str:
        if self.submit_error is not None:
            raise self.submit_error
        with self._lock:
            self.submitted.append((fn, gas_type))
            tx_hash = "0x" + f"{len(self.submitted):064x}"
            self._calls[tx_hash] = fn
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float = 120):
        if self.on_wait is not None:
            self.on_wait(tx_hash)
        self.release.wait(5)
        if self.wait_error is not None:
            raise self.wait_error

        fn = self._calls[tx_hash]
        if fn.name == 'approve':
            if fn.token in self.failing_tokens:
                return {'status': 0, 'logs': []}
            fn.token.allowance = fn.amount
        return {'status': 1, 'logs': []}

    def approvals(self):
        return [fn for fn, _ in self.submitted if fn.name == 'approve']


def make_token_w3(tokens: dict) -> MockWeb3:
    """MockWeb3, у которого eth.contract возвращает FakeToken по адресу."""
    w3 = MockWeb3()
    by_address = {address.lower(): token for address, token in tokens.items()}
    w3.eth.contract.side_effect = lambda address, abi: by_address[address.lower()].contract
    return w3


@pytest.fixture
def mock_w3():
    """Мок Web3 instance."""
    return MockWeb3()


@pytest.fixture
def mock_account():
    """Мок LocalAccount."""
    account = Mock()
    account.address = OWNER
    account.sign_transaction = Mock(return_value=Mock(raw_transaction=b'signed_tx'))
    return account


@pytest.fixture
def weth():
    return TokenHandle(WETH_ARB, 18, "WETH")


@pytest.fixture
def usdc():
    return TokenHandle(USDC_ARB, 6, "USDC")


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def mock_receipt_success():
    """Успешный receipt транзакции."""
    return {
        'status': 1,
        'gasUsed': 300_000,
        'logs': [],
        'transactionHash': b'\x12\x34' * 16,
        'blockNumber': 200_000_000,
    }


@pytest.fixture
def mock_receipt_fail():
    """Неуспешный receipt транзакции."""
    return {
        'status': 0,
        'gasUsed': 300_000,
        'logs': [],
        'transactionHash': b'\xde\xad' * 16,
        'blockNumber': 200_000_000,
    }
