# ingestion.py
import logging
import sqlite3
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from api_client import ApiClient, RpcError
from config import CHUNK_SIZE, RPC_RETRY_INTERVAL
from db_utils import change_record_before, insert_change_records, set_cursor

logger = logging.getLogger(__name__)

EXTRA_DATA_MIN_SIZE = 9
SUPPORTED_EXTRA_DATA_VERSION = 0


class InvalidExtraData(ValueError):
    pass


def decode_extra_data(extra_data: str) -> Tuple[int, int]:
    """
    Decode Holocene extraData: 1-byte version (must be 0), then big-endian
    uint32 denominator and uint32 elasticity. Trailing bytes are ignored.

    Raises InvalidExtraData if the field is too short or has another version.
    """
    if extra_data[:2] in ("0x", "0X"):
        extra_data = extra_data[2:]
    raw = bytes.fromhex(extra_data)

    if len(raw) < EXTRA_DATA_MIN_SIZE:
        raise InvalidExtraData("invalid format")

    version = raw[0]
    if version != SUPPORTED_EXTRA_DATA_VERSION:
        raise InvalidExtraData(f"invalid version {version}")

    denominator = int.from_bytes(raw[1:5], "big")
    elasticity = int.from_bytes(raw[5:9], "big")
    return denominator, elasticity


def log_blocks_chunk_handling(
    chunk_start: int, chunk_end: int, start_block: int, end_block: int, items_count: Optional[str] = None
) -> None:
    if chunk_start == chunk_end:
        target_range = f"L2 block #{chunk_start}"
    else:
        target_range = f"L2 block range #{chunk_start}..#{chunk_end}"

    if items_count is None:
        total = end_block - start_block + 1
        progress = (chunk_end - start_block + 1) / total * 100 if total > 0 else 100.0
        logger.info("Handling %s. Progress: %.2f%%", target_range, progress)
    else:
        logger.info("Handled %s. %s", target_range, items_count)


def _apply_block(conn: sqlite3.Connection, block: Dict[str, Any], block_number: int) -> int:
    try:
        denominator, elasticity = decode_extra_data(block.get("extra_data") or "0x")
    except InvalidExtraData as e:
        logger.warning("extraData of the block #%d has %s. Ignoring it.", block_number, e)
        return 0
    except ValueError:
        logger.warning("extraData of the block #%d is not a hex string. Ignoring it.", block_number)
        return 0

    prev_config = change_record_before(conn, block_number)
    new_config = (denominator, elasticity)

    if prev_config == new_config:
        return 0

    # already stored when the block is scanned again
    inserted = insert_change_records(conn, [(block_number, block["hash"], denominator, elasticity)])
    if inserted:
        logger.info(
            "Config was updated at block %d. Previous one: %s. New one: %s.", block_number, prev_config, new_config
        )
    return inserted


def handle_updates(
    conn: sqlite3.Connection,
    client: ApiClient,
    block_numbers: List[int],
    retry_interval: float = RPC_RETRY_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Fetch the given blocks, store config changes found in their extraData and
    move the cursor to the last block. The chunk is retried until the batch
    request succeeds for every block.

    `block_numbers` must not exceed the node's max batch size.
    Returns the number of inserted config updates.
    """
    while True:
        try:
            result = client.fetch_blocks_by_numbers(block_numbers)
            errors = result["errors"]
        except (RpcError, requests.RequestException) as e:
            errors = e

        if not errors:
            break

        logger.error(
            "Cannot fetch blocks %d..%d. Error(s): %s Retrying...", block_numbers[0], block_numbers[-1], errors
        )
        sleep(retry_interval)

    blocks_by_number = {b["number"]: b for b in result["blocks"]}
    last_block_number = block_numbers[-1]
    updates_count = 0

    # rows and cursor are committed together
    with conn:
        for block_number in block_numbers:
            block = blocks_by_number.get(block_number, {"extra_data": "0x"})
            updates_count += _apply_block(conn, block, block_number)

            if block_number == last_block_number and block.get("hash"):
                set_cursor(conn, block["hash"])

    return updates_count


def chunk_range(start_block: int, end_block: int, chunk_size: int = CHUNK_SIZE) -> List[List[int]]:
    return [
        list(range(chunk_start, min(chunk_start + chunk_size - 1, end_block) + 1))
        for chunk_start in range(start_block, end_block + 1, chunk_size)
    ]


def scan_range(
    conn: sqlite3.Connection,
    client: ApiClient,
    start_block: int,
    end_block: int,
    chunk_size: int = CHUNK_SIZE,
    retry_interval: float = RPC_RETRY_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    total = 0

    for block_numbers in chunk_range(start_block, end_block, chunk_size):
        chunk_start = block_numbers[0]
        chunk_end = block_numbers[-1]

        log_blocks_chunk_handling(chunk_start, chunk_end, start_block, end_block)

        updates_count = handle_updates(conn, client, block_numbers, retry_interval=retry_interval, sleep=sleep)
        total += updates_count

        log_blocks_chunk_handling(chunk_start, chunk_end, start_block, end_block, f"{updates_count} update(s).")

    return total
