# db_utils.py
import sqlite3
import time
from typing import Iterable, Optional, Tuple

from config import DB_PATH

EMPTY_HASH = "0x0000000000000000000000000000000000000000000000000000000000000000"
LAST_L2_BLOCK_HASH_COUNTER = "optimism_eip1559_config_updates_fetcher_last_l2_block_hash"

# (l2_block_number, l2_block_hash, base_fee_max_change_denominator, elasticity_multiplier)
ConfigUpdate = Tuple[int, str, int, int]


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    return sqlite3.connect(db_path or DB_PATH)


def create_core_tables(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()

    # one row per L2 block where the EIP-1559 config changed
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS op_eip1559_config_updates (
            l2_block_number                 INTEGER PRIMARY KEY,
            l2_block_hash                   TEXT NOT NULL,
            base_fee_max_change_denominator INTEGER NOT NULL,
            elasticity_multiplier           INTEGER NOT NULL,
            inserted_at                     INTEGER NOT NULL
        );
        """
    )

    # key-value metadata, holds the scan cursor
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS last_fetched_counters (
            counter_type TEXT PRIMARY KEY,
            value        TEXT NOT NULL
        );
        """
    )

    # indexed L2 blocks, filled by the block indexer and only read here
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS blocks (
            number    INTEGER PRIMARY KEY,
            hash      TEXT,
            timestamp INTEGER,
            consensus INTEGER NOT NULL DEFAULT 1
        );
        """
    )

    cur.execute("CREATE INDEX IF NOT EXISTS idx_blocks_timestamp ON blocks(timestamp);")

    conn.commit()


# The functions below don't commit. Callers scope transactions with `with conn:`.


def insert_change_records(conn: sqlite3.Connection, updates: Iterable[ConfigUpdate]) -> int:
    now = int(time.time())
    cur = conn.executemany(
        """
        INSERT OR IGNORE INTO op_eip1559_config_updates
        (l2_block_number, l2_block_hash, base_fee_max_change_denominator, elasticity_multiplier, inserted_at)
        VALUES (?, ?, ?, ?, ?);
        """,
        [(number, block_hash, denominator, elasticity, now) for number, block_hash, denominator, elasticity in updates],
    )
    return cur.rowcount


def latest_change_record(conn: sqlite3.Connection) -> Optional[ConfigUpdate]:
    row = conn.execute(
        """
        SELECT l2_block_number, l2_block_hash, base_fee_max_change_denominator, elasticity_multiplier
        FROM op_eip1559_config_updates
        ORDER BY l2_block_number DESC
        LIMIT 1;
        """
    ).fetchone()
    return tuple(row) if row else None


def change_record_before(conn: sqlite3.Connection, block_number: int) -> Optional[Tuple[int, int]]:
    """
    Config (denominator, elasticity) actual before the given block, or None if unknown.
    """
    row = conn.execute(
        """
        SELECT base_fee_max_change_denominator, elasticity_multiplier
        FROM op_eip1559_config_updates
        WHERE l2_block_number < ?
        ORDER BY l2_block_number DESC
        LIMIT 1;
        """,
        (block_number,),
    ).fetchone()
    return tuple(row) if row else None


def delete_change_record(conn: sqlite3.Connection, block_number: int) -> int:
    cur = conn.execute(
        "DELETE FROM op_eip1559_config_updates WHERE l2_block_number = ?;",
        (block_number,),
    )
    return cur.rowcount


def delete_change_records_outside(conn: sqlite3.Connection, first_block: int, last_block: int) -> int:
    cur = conn.execute(
        "DELETE FROM op_eip1559_config_updates WHERE l2_block_number < ? OR l2_block_number > ?;",
        (first_block, last_block),
    )
    return cur.rowcount


def get_cursor(conn: sqlite3.Connection) -> str:
    row = conn.execute(
        "SELECT value FROM last_fetched_counters WHERE counter_type = ?;",
        (LAST_L2_BLOCK_HASH_COUNTER,),
    ).fetchone()
    return row[0] if row else EMPTY_HASH


def set_cursor(conn: sqlite3.Connection, block_hash: str) -> None:
    conn.execute(
        """
        INSERT INTO last_fetched_counters (counter_type, value)
        VALUES (?, ?)
        ON CONFLICT(counter_type) DO UPDATE SET value = excluded.value;
        """,
        (LAST_L2_BLOCK_HASH_COUNTER, block_hash),
    )


def min_block_number_at_or_after(conn: sqlite3.Connection, timestamp: int) -> Optional[int]:
    cur = conn.cursor()
    cur.execute(
        "SELECT MIN(number) FROM blocks WHERE timestamp >= ? AND consensus = 1;",
        (timestamp,),
    )
    row = cur.fetchone()
    if not row or row[0] is None:
        return None
    return int(row[0])
