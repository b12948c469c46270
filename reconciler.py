# reconciler.py
import logging
import sqlite3

from api_client import ApiClient
from db_utils import EMPTY_HASH, delete_change_record, get_cursor, latest_change_record, set_cursor

logger = logging.getLogger(__name__)


def get_last_block_number(conn: sqlite3.Connection, client: ApiClient) -> int:
    """
    Block number the scan should resume from.

    The cursor (hash of the last scanned block) is used when it's still
    canonical. Otherwise the cursor is reset and the latest row of
    `op_eip1559_config_updates` is checked instead; rows whose block was
    reorged out are removed one by one until a canonical one is found.
    Returns 0 when nothing is known. RpcError propagates to the caller.
    """
    last_block_hash = get_cursor(conn)

    if last_block_hash != EMPTY_HASH:
        block = client.get_block_by_hash(last_block_hash)
        if block is not None:
            return block["number"]

        logger.warning(
            "Cannot find the last scanned L2 block by its hash (%s). Probably, there was a reorg on L2 chain. "
            "Falling back to the last config update...",
            last_block_hash,
        )
        with conn:
            set_cursor(conn, EMPTY_HASH)

    while True:
        last_update = latest_change_record(conn)
        if last_update is None:
            return 0

        block_number, block_hash, _, _ = last_update

        if client.get_block_by_hash(block_hash) is not None:
            return block_number

        logger.warning(
            "Cannot find the last L2 block from RPC by its hash (%s). Probably, there was a reorg on L2 chain. "
            "Trying to check preceding block...",
            block_hash,
        )

        with conn:
            delete_change_record(conn, block_number)
