"""
Tests for TokenHandle and TokenResolver.
"""

from decimal import Decimal

import pytest
import requests
from unittest.mock import MagicMock

from adapter_client.errors import InvalidInput, NetworkError
from adapter_client.tokens import TokenHandle, TokenResolver

from conftest import USDC_ARB, WETH_ARB, MockWeb3


class TestTokenHandle:

    def test_address_is_checksummed(self):
        handle = TokenHandle(USDC_ARB.lower(), 6)
        assert handle.address == USDC_ARB

    def test_invalid_address(self):
        with pytest.raises(InvalidInput):
            TokenHandle("0x1234", 18)

    def test_invalid_decimals(self):
        with pytest.raises(InvalidInput):
            TokenHandle(WETH_ARB, 78)

    def test_to_units(self, usdc, weth):
        assert usdc.to_units("1000") == 1_000 * 10**6
        assert usdc.to_units(Decimal("0.000001")) == 1
        assert weth.to_units("0.5") == 5 * 10**17

    def test_to_units_rejects_float(self, weth):
        with pytest.raises(InvalidInput):
            weth.to_units(0.1)

    def test_to_units_rejects_excess_precision(self, usdc):
        with pytest.raises(InvalidInput, match="decimal places"):
            usdc.to_units("0.0000001")

    def test_format_units(self, usdc):
        assert usdc.format_units(1_234_500_000, places=2) == "1,234.50"

    def test_label(self):
        assert TokenHandle(WETH_ARB, 18, "WETH").label == "WETH"
        assert TokenHandle(WETH_ARB, 18).label == WETH_ARB[:10] + "..."

    def test_is_hashable(self, weth):
        assert {weth: 1}[TokenHandle(WETH_ARB, 18, "WETH")] == 1


def make_resolver(decimals=6, symbol="USDC"):
    w3 = MockWeb3()
    contract = MagicMock()
    contract.functions.decimals.return_value.call.return_value = decimals
    contract.functions.symbol.return_value.call.return_value = symbol
    w3.eth.contract.return_value = contract
    return TokenResolver(w3), w3, contract


class TestTokenResolver:

    def test_resolve_reads_chain(self):
        resolver, _, _ = make_resolver()

        handle = resolver.resolve(USDC_ARB)

        assert handle.decimals == 6
        assert handle.symbol == "USDC"

    def test_resolve_is_cached(self):
        resolver, w3, _ = make_resolver()

        resolver.resolve(USDC_ARB)
        resolver.resolve(USDC_ARB.lower())

        assert w3.eth.contract.call_count == 1

    def test_known_tokens_skip_rpc(self, weth):
        w3 = MockWeb3()
        resolver = TokenResolver(w3, known={"WETH": weth})

        assert resolver.resolve(WETH_ARB) is weth
        w3.eth.contract.assert_not_called()

    def test_decimals_failure_never_defaults(self):
        """decimals() не прочитан -> ошибка, а не 18 по умолчанию."""
        resolver, _, contract = make_resolver()
        contract.functions.decimals.return_value.call.side_effect = ValueError("not a token")

        with pytest.raises(InvalidInput):
            resolver.resolve(USDC_ARB)

    def test_decimals_network_failure(self):
        resolver, _, contract = make_resolver()
        contract.functions.decimals.return_value.call.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(NetworkError):
            resolver.resolve(USDC_ARB)

    def test_symbol_failure_is_tolerated(self):
        resolver, _, contract = make_resolver()
        contract.functions.symbol.return_value.call.side_effect = ValueError("bytes32 symbol")

        assert resolver.resolve(USDC_ARB).symbol == ""

    def test_invalid_address(self):
        resolver, _, _ = make_resolver()

        with pytest.raises(InvalidInput):
            resolver.resolve("not-an-address")
