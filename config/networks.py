"""
Static on-chain configuration per network: limit order protocol deployments
and the ERC-20 tokens strategies may reference by symbol.

Addresses are kept lowercase here and checksummed by the TokenRegistry.
"""

from typing import Dict, Tuple

LIMIT_ORDER_PROTOCOL: Dict[str, str] = {
    "MAINNET": "0x119c71d3bbac22029622cbaec24854d3d32d2828",
    "POLYGON": "0x94bc2a1c732bcad7343b25af48385fe76e08734f",
    "ARBITRUM": "0x7f069df72b7a39bce9806e3afaf579e54d8cf2b9",
    # first contract deployed on a fresh hardhat node
    "LOCAL": "0x5fbdb2315678afecb367f032d93f642f64180aa3",
}

# symbol -> (address, decimals)
TOKENS: Dict[str, Dict[str, Tuple[str, int]]] = {
    "MAINNET": {
        "WETH": ("0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2", 18),
        "USDC": ("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", 6),
        "USDT": ("0xdac17f958d2ee523a2206206994597c13d831ec7", 6),
        "DAI": ("0x6b175474e89094c44da98b954eedeac495271d0f", 18),
        "WBTC": ("0x2260fac5e5542a773aa44fbcfedf7c193bc2c599", 8),
    },
    "LOCAL": {
        "WETH": ("0x9fe46736679d2d9a65f0992f2272de9f3c7fa6e0", 18),
        "USDC": ("0xcf7ed3acca5a467e9e704c703e8d87f634fb0fc9", 6),
        "USDT": ("0xdc64a140aa3e981100a9beca4e685f962f0cf6c9", 6),
        "DAI": ("0x5fc8d32690cc91d4c39d9d3abcbd16989f875707", 18),
    },
}

# Native assets are traded through their wrapped ERC-20
SYMBOL_ALIASES: Dict[str, str] = {
    "ETH": "WETH",
    "BTC": "WBTC",
}
