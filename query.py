import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import pandas as pd

from config import DB_PATH

# Connection Manage

@contextmanager
def get_connection(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Get a read connection with proper cleanup."""
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()

# Core Query Functions

def get_config_updates(
        limit: Optional[int] = None,
        offset: int = 0,
        db_path: Optional[str] = None,
) -> pd.DataFrame:
    """Get EIP-1559 config updates as DataFrame, newest first."""
    with get_connection(db_path) as conn:
        query = """
            SELECT
                l2_block_number,
                l2_block_hash,
                base_fee_max_change_denominator,
                elasticity_multiplier,
                inserted_at
            FROM op_eip1559_config_updates
            ORDER BY l2_block_number DESC
        """

        params = []
        if limit:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        df = pd.read_sql_query(query, conn, params=params)

    if df.empty:
        return pd.DataFrame({
            "Block": pd.Series(dtype="int64"),
            "Block Hash": pd.Series(dtype="string"),
            "Denominator": pd.Series(dtype="int64"),
            "Elasticity": pd.Series(dtype="int64"),
            "Inserted At": pd.Series(dtype="datetime64[ns]"),
        })

    df["Inserted At"] = pd.to_datetime(df["inserted_at"], unit="s", errors="coerce")

    df = df.rename(columns={
        "l2_block_number": "Block",
        "l2_block_hash": "Block Hash",
        "base_fee_max_change_denominator": "Denominator",
        "elasticity_multiplier": "Elasticity",
    })

    return df[["Block", "Block Hash", "Denominator", "Elasticity", "Inserted At"]]


def get_config_for_block(block_number: int, db_path: Optional[str] = None) -> Optional[Dict[str, int]]:
    """Get the config active at the given block (set at this block or earlier)."""
    with get_connection(db_path) as conn:
        cur = conn.cursor()
        cur.execute("""
            SELECT l2_block_number, base_fee_max_change_denominator, elasticity_multiplier
            FROM op_eip1559_config_updates
            WHERE l2_block_number <= ?
            ORDER BY l2_block_number DESC
            LIMIT 1
        """, (block_number,))
        row = cur.fetchone()

    if row is None:
        return None

    return {
        "since_block": int(row["l2_block_number"]),
        "base_fee_max_change_denominator": int(row["base_fee_max_change_denominator"]),
        "elasticity_multiplier": int(row["elasticity_multiplier"]),
    }


def get_update_count(db_path: Optional[str] = None) -> int:
    """Get total config update count."""
    with get_connection(db_path) as conn:
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM op_eip1559_config_updates")
        result = cur.fetchone()
        return int(result[0]) if result else 0
