"""
Configuration for the Uniswap V3 adapter client

Конфигурация для работы с контрактом-адаптером над Uniswap V3 на Arbitrum
(и на локальном Hardhat-форке Arbitrum).
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

from adapter_client.math.slippage import DEFAULT_SLIPPAGE_BPS, SLIPPAGE_DENOMINATOR
from adapter_client.math.ticks import DEFAULT_TICK_WIDTH
from adapter_client.quotes import DEFAULT_QUOTE_MAX_AGE
from adapter_client.transactions import DEFAULT_CONFIRMATION_TIMEOUT


@dataclass
class ChainConfig:
    """Конфигурация сети."""
    chain_id: int
    rpc_url: str
    pool_factory: str


@dataclass
class TokenConfig:
    """Конфигурация токена."""
    address: str
    symbol: str
    decimals: int


# ============================================================
# CHAIN CONFIGURATIONS
# ============================================================

# Arbitrum One - Uniswap V3
ARBITRUM = ChainConfig(
    chain_id=42161,
    rpc_url="https://arb1.arbitrum.io/rpc",
    # Uniswap V3 Factory; the adapter wraps the position manager, router and quoter itself
    pool_factory="0x1F98431c8aD98523631AE4a59f267346ea31F984",
)

# Local Hardhat node forking Arbitrum: same contract addresses
HARDHAT = ChainConfig(
    chain_id=31337,
    rpc_url="http://127.0.0.1:8545",
    pool_factory=ARBITRUM.pool_factory,
)

# ============================================================
# TOKEN CONFIGURATIONS (Arbitrum)
# ============================================================

TOKENS_ARBITRUM: Dict[str, TokenConfig] = {
    "WETH": TokenConfig(
        address="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        symbol="WETH",
        decimals=18
    ),
    "USDC": TokenConfig(
        address="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        symbol="USDC",
        decimals=6  # native USDC on Arbitrum has 6 decimals
    ),
}

# ============================================================
# FEE TIERS
# ============================================================

FEE_TIERS = {
    "LOWEST": 100,   # 0.01% - стейблкоины
    "LOW": 500,      # 0.05% - стабильные пары
    "MEDIUM": 3000,  # 0.30% - стандартный tier (WETH/USDC в смоук-тесте)
    "HIGH": 10000,   # 1.00% - экзотические пары
}

# ============================================================
# DEFAULT SETTINGS
# ============================================================

# SLIPPAGE_DENOMINATOR, DEFAULT_SLIPPAGE_BPS (0.5%), DEFAULT_TICK_WIDTH,
# DEFAULT_QUOTE_MAX_AGE and DEFAULT_CONFIRMATION_TIMEOUT come from adapter_client


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_chain_config(chain_id: int) -> ChainConfig:
    """Получение конфигурации по chain_id."""
    configs = {
        42161: ARBITRUM,
        31337: HARDHAT,
    }
    if chain_id not in configs:
        raise ValueError(f"Unknown chain_id: {chain_id}")
    return configs[chain_id]


def get_token(symbol: str) -> TokenConfig:
    """Получение токена по символу."""
    if symbol not in TOKENS_ARBITRUM:
        raise ValueError(f"Unknown token: {symbol}")
    return TOKENS_ARBITRUM[symbol]


@dataclass
class WorkflowSettings:
    """Настройки запуска, собранные из окружения (.env)."""
    chain: ChainConfig
    rpc_url: str
    private_key: Optional[str]
    adapter_address: Optional[str]
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    quote_max_age: float = DEFAULT_QUOTE_MAX_AGE


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def load_settings(dotenv_path: Optional[str] = None) -> WorkflowSettings:
    """
    Загрузка настроек из .env и переменных окружения.

    Переменные:
        CHAIN_ID (42161 по умолчанию), RPC_URL, PRIVATE_KEY, ADAPTER_ADDRESS,
        SLIPPAGE_BPS, CONFIRMATION_TIMEOUT, QUOTE_MAX_AGE
    """
    load_dotenv(dotenv_path)

    chain = get_chain_config(_env_int("CHAIN_ID", ARBITRUM.chain_id))

    slippage_bps = _env_int("SLIPPAGE_BPS", DEFAULT_SLIPPAGE_BPS)
    if not 0 <= slippage_bps <= SLIPPAGE_DENOMINATOR:
        raise ValueError(f"SLIPPAGE_BPS must be within [0, {SLIPPAGE_DENOMINATOR}], got {slippage_bps}")

    return WorkflowSettings(
        chain=chain,
        rpc_url=os.getenv("RPC_URL") or chain.rpc_url,
        private_key=os.getenv("PRIVATE_KEY"),
        adapter_address=os.getenv("ADAPTER_ADDRESS"),
        slippage_bps=slippage_bps,
        confirmation_timeout=_env_float("CONFIRMATION_TIMEOUT", DEFAULT_CONFIRMATION_TIMEOUT),
        quote_max_age=_env_float("QUOTE_MAX_AGE", DEFAULT_QUOTE_MAX_AGE),
    )
