from __future__ import annotations

import os
from pathlib import Path


def _as_bool(value: str | None, default: bool = False) -> bool:
    """Parse a truthy/falsey string into a boolean."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


ETHERSCAN_V2_URL = "https://api.etherscan.io/v2/api"


class Settings:
    # Node / provider
    NODE_PROVIDER: str = os.getenv("NODE_PROVIDER", "alchemy").lower()
    NODE_NETWORK: str = os.getenv("NODE_NETWORK", "mainnet").lower()
    NODE_API_KEY: str = os.getenv("NODE_API_KEY", "")
    NODE_URL: str = os.getenv("NODE_URL", "")
    NODE_TIMEOUT_SECONDS: float = float(os.getenv("NODE_TIMEOUT_SECONDS", "30"))

    # Etherscan (indexer, verified sources, ether price)
    ETHERSCAN_ENABLED: bool = _as_bool(os.getenv("ETHERSCAN_ENABLED"), True)
    ETHERSCAN_API_KEY: str = os.getenv("ETHERSCAN_API_KEY", "")
    ETHERSCAN_BASE_URL: str = os.getenv("ETHERSCAN_BASE_URL", "")
    ETHERSCAN_TIMEOUT_SECONDS: float = float(os.getenv("ETHERSCAN_TIMEOUT_SECONDS", "30"))

    # Network metadata
    CHAINS_FILE: str = os.getenv("CHAINS_FILE", str(Path(__file__).resolve().parents[1] / "data" / "chains.json"))

    # Synchronizer
    SYNC_INTERVAL_SECONDS: float = float(os.getenv("SYNC_INTERVAL_SECONDS", "10"))
    SYNC_BLOCK_POLL_INTERVAL_SECONDS: float = float(os.getenv("SYNC_BLOCK_POLL_INTERVAL_SECONDS", "2"))

    # Cache / history
    CACHE_CONTRACT_TTL_SECONDS: float = float(os.getenv("CACHE_CONTRACT_TTL_SECONDS", "3600"))
    DEVNET_HISTORY_MAX_BLOCKS: int = int(os.getenv("DEVNET_HISTORY_MAX_BLOCKS", "100"))
    DEVNET_HISTORY_MAX_TRANSACTIONS: int = int(os.getenv("DEVNET_HISTORY_MAX_TRANSACTIONS", "100"))
    HISTORY_BATCH_SIZE: int = int(os.getenv("HISTORY_BATCH_SIZE", "20"))
    ALCHEMY_TRANSFERS_MAX_COUNT: int = int(os.getenv("ALCHEMY_TRANSFERS_MAX_COUNT", "20"))

    # Debug / logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "WARNING").upper()
    LOG_LEVEL_ETHERDASH: str = os.getenv("LOG_LEVEL_ETHERDASH", "INFO").upper()
    LOG_LEVEL_LIB_WEB3: str = os.getenv("LOG_LEVEL_LIB_WEB3", "WARNING").upper()
    LOG_LEVEL_LIB_WEBSOCKETS: str = os.getenv("LOG_LEVEL_LIB_WEBSOCKETS", "WARNING").upper()
    LOG_LEVEL_LIB_AIOHTTP: str = os.getenv("LOG_LEVEL_LIB_AIOHTTP", "WARNING").upper()
    LOG_LEVEL_LIB_HTTPX: str = os.getenv("LOG_LEVEL_LIB_HTTPX", "WARNING").upper()
    LOG_LEVEL_LIB_HTTPCORE: str = os.getenv("LOG_LEVEL_LIB_HTTPCORE", "WARNING").upper()
    LOG_LEVEL_LIB_ASYNCIO: str = os.getenv("LOG_LEVEL_LIB_ASYNCIO", "WARNING").upper()
    NO_COLOR: bool = _as_bool(os.getenv("NO_COLOR"), False)

    def node_endpoint(self) -> str:
        """Return the JSON-RPC endpoint for the configured provider and network."""
        if self.NODE_URL:
            return self.NODE_URL
        if self.NODE_PROVIDER == "local":
            return "ws://localhost:8545"
        if self.NODE_PROVIDER == "alchemy":
            return f"wss://eth-{self.NODE_NETWORK}.g.alchemy.com/v2/{self.NODE_API_KEY}"
        return ""

    def etherscan_endpoint(self) -> str:
        """Return the Etherscan API endpoint; the network is selected per request by chain id."""
        return self.ETHERSCAN_BASE_URL or ETHERSCAN_V2_URL


settings = Settings()
