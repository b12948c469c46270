# config.py
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


# Database
DB_PATH = os.getenv("DB_PATH", "eip1559_config.db")

# L2 JSON-RPC
RPC_URL = os.getenv("ETHEREUM_JSONRPC_HTTP_URL", "http://localhost:8545")
RPC_REQUEST_TIMEOUT = float(os.getenv("RPC_REQUEST_TIMEOUT", "30"))
RPC_RETRY_INTERVAL = float(os.getenv("RPC_RETRY_INTERVAL", "3"))  # seconds between retries
RPC_MAX_RETRIES = _optional_int("RPC_MAX_RETRIES") or None  # None (or 0) = retry forever

# Holocene upgrade. Unset disables the fetcher, 0 means active from genesis.
HOLOCENE_TIMESTAMP = _optional_int("INDEXER_OPTIMISM_L2_HOLOCENE_TIMESTAMP")
BLOCK_DURATION = int(os.getenv("INDEXER_OPTIMISM_BLOCK_DURATION", "2"))  # seconds

# Scanning
CHUNK_SIZE = int(os.getenv("INDEXER_OPTIMISM_EIP1559_CHUNK_SIZE", "10"))
LATEST_BLOCK_CHECK_INTERVAL = float(os.getenv("LATEST_BLOCK_CHECK_INTERVAL", "60"))
TIMESTAMP_RESOLVER_MAX_ITERATIONS = _optional_int("TIMESTAMP_RESOLVER_MAX_ITERATIONS")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
