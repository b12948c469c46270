import sqlite3
from typing import Dict, List, Optional

import pytest

from api_client import RpcError
from db_utils import create_core_tables


def block_hash(number: int, fork: str = "a") -> str:
    return "0x" + f"{fork}{number:x}".rjust(64, "0")


def extra_data(denominator: int, elasticity: int, version: int = 0, trailing: bytes = b"") -> str:
    raw = bytes([version]) + denominator.to_bytes(4, "big") + elasticity.to_bytes(4, "big") + trailing
    return "0x" + raw.hex()


class FakeChain:
    """
    In-memory L2 chain implementing the ApiClient interface.
    Block i has timestamp `genesis_timestamp + i * block_duration` unless
    overridden via `timestamps`.
    """

    def __init__(self, latest: int, genesis_timestamp: int = 1000, block_duration: int = 2):
        self.latest = latest
        self.timestamps: Dict[int, int] = {
            n: genesis_timestamp + n * block_duration for n in range(latest + 1)
        }
        self.extra: Dict[int, str] = {}
        self.hashes: Dict[int, str] = {n: block_hash(n) for n in range(latest + 1)}
        self.batch_failures = 0
        self.hash_lookup_error = False
        self.calls: List[str] = []

    def _block(self, number: int) -> Dict:
        return {
            "number": number,
            "hash": self.hashes[number],
            "timestamp": self.timestamps[number],
            "extra_data": self.extra.get(number, "0x"),
        }

    def fetch_blocks_by_numbers(self, block_numbers):
        self.calls.append("fetch_blocks_by_numbers")
        if self.batch_failures > 0:
            self.batch_failures -= 1
            return {"blocks": [], "errors": [{"block_number": block_numbers[0], "error": "timeout"}]}
        return {"blocks": [self._block(n) for n in block_numbers], "errors": []}

    def get_block_by_hash(self, hash_) -> Optional[Dict]:
        self.calls.append("get_block_by_hash")
        if self.hash_lookup_error:
            raise RpcError("eth_getBlockByHash failed")
        for number, h in self.hashes.items():
            if h == hash_:
                return self._block(number)
        return None

    def get_block_number_by_tag(self, tag="latest"):
        self.calls.append("get_block_number_by_tag")
        return self.latest

    def get_block_timestamp_by_number(self, number_or_tag):
        self.calls.append("get_block_timestamp_by_number")
        if number_or_tag == "latest":
            number_or_tag = self.latest
        return self.timestamps[number_or_tag]


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    create_core_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def sleep():
    return SleepRecorder()


def config_rows(connection: sqlite3.Connection):
    return connection.execute(
        """
        SELECT l2_block_number, l2_block_hash, base_fee_max_change_denominator, elasticity_multiplier
        FROM op_eip1559_config_updates
        ORDER BY l2_block_number;
        """
    ).fetchall()
