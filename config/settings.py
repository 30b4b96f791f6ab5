"""
Application configuration for api-strategies.

Centralizes environment variables using python-dotenv.
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load variables from .env (if present)
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings:
    """
    Configuration settings for the api-strategies service.
    """

    # MongoDB
    MONGODB_URI: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME", "strategies_db")
    MONGODB_MAX_POOL_SIZE: int = int(os.getenv("MONGODB_MAX_POOL_SIZE", "50"))
    MONGODB_SERVER_SELECTION_TIMEOUT_MS: int = int(
        os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "5000")
    )
    MONGODB_CONNECT_TIMEOUT_MS: int = int(
        os.getenv("MONGODB_CONNECT_TIMEOUT_MS", "3000")
    )
    MONGODB_SOCKET_TIMEOUT_MS: int = int(
        os.getenv("MONGODB_SOCKET_TIMEOUT_MS", "10000")
    )

    # Execution engine
    ENGINE_TICK_INTERVAL_SEC: float = float(os.getenv("ENGINE_TICK_INTERVAL_SEC", "30"))
    ENGINE_MAX_CONCURRENCY: int = int(os.getenv("ENGINE_MAX_CONCURRENCY", "8"))
    # Locks older than this are considered abandoned by a crashed instance
    ENGINE_LOCK_TTL_SEC: int = int(os.getenv("ENGINE_LOCK_TTL_SEC", "600"))
    ENGINE_AUTOSTART: bool = _env_bool("ENGINE_AUTOSTART", "true")

    # Orders
    DEFAULT_SLIPPAGE: float = float(os.getenv("DEFAULT_SLIPPAGE", "0.005"))

    # Chain / limit order protocol
    CHAIN_NETWORK: str = os.getenv("CHAIN_NETWORK", "MAINNET").upper()
    CHAIN_ID: int = int(os.getenv("CHAIN_ID", "1"))
    RPC_URL: str = os.getenv("RPC_URL", "http://127.0.0.1:8545")
    LIMIT_ORDER_PROTOCOL_ADDRESS: Optional[str] = os.getenv("LIMIT_ORDER_PROTOCOL_ADDRESS") or None
    LOP_DOMAIN_NAME: str = os.getenv("LOP_DOMAIN_NAME", "1inch Limit Order Protocol")
    LOP_DOMAIN_VERSION: str = os.getenv("LOP_DOMAIN_VERSION", "2")
    SIGNER_PRIVATE_KEY: Optional[str] = os.getenv("SIGNER_PRIVATE_KEY") or None
    GAS_LIMIT_MULTIPLIER: float = float(os.getenv("GAS_LIMIT_MULTIPLIER", "1.2"))
    TX_RECEIPT_TIMEOUT_SEC: float = float(os.getenv("TX_RECEIPT_TIMEOUT_SEC", "180"))

    # Simulated receipts for local testing only; never on by default
    CHAIN_DRY_RUN: bool = _env_bool("CHAIN_DRY_RUN", "false")

    # Price oracle (CoinGecko-compatible API)
    PRICE_API_BASE_URL: str = os.getenv(
        "PRICE_API_BASE_URL", "https://api.coingecko.com/api/v3"
    )
    PRICE_API_KEY: Optional[str] = os.getenv("PRICE_API_KEY") or None
    PRICE_CACHE_TTL_SEC: float = float(os.getenv("PRICE_CACHE_TTL_SEC", "30"))
    PRICE_MIN_REQUEST_INTERVAL_SEC: float = float(
        os.getenv("PRICE_MIN_REQUEST_INTERVAL_SEC", "1.0")
    )

    # Telegram (optional)
    TELEGRAM_BOT_TOKEN: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN") or None
    TELEGRAM_CHAT_ID: Optional[str] = os.getenv("TELEGRAM_CHAT_ID") or None

    # Log / app
    APP_NAME: str = os.getenv("APP_NAME", "api-strategies")


settings = Settings()
