# timestamp_resolver.py
import logging
import sqlite3
import time
from typing import Callable, Optional

from api_client import ApiClient
from config import TIMESTAMP_RESOLVER_MAX_ITERATIONS
from db_utils import min_block_number_at_or_after

logger = logging.getLogger(__name__)

RETRY_PAUSE_SECONDS = 1


class TimestampResolutionError(Exception):
    pass


def block_number_by_timestamp(
    conn: sqlite3.Connection,
    client: ApiClient,
    timestamp: int,
    block_duration: int,
    max_iterations: Optional[int] = TIMESTAMP_RESOLVER_MAX_ITERATIONS,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Determine the first L2 block at or after `timestamp`.

    Indexed blocks are tried first; if none of them is late enough (the
    block indexer hasn't caught up yet) the number is calculated with RPC
    requests. A zero timestamp means the upgrade is active since genesis.
    """
    if timestamp == 0:
        return 0

    logger.info("Trying to detect Holocene block number by its timestamp using indexed L2 blocks...")

    block_number = min_block_number_at_or_after(conn, timestamp)

    if block_number is None:
        logger.info(
            "Cannot detect Holocene block number using indexed L2 blocks. "
            "Trying to calculate the number using RPC requests..."
        )
        return block_number_by_timestamp_from_rpc(
            client, timestamp, block_duration, max_iterations=max_iterations, sleep=sleep
        )

    logger.info("Holocene block number is detected using indexed L2 blocks. The block number is %d", block_number)
    return block_number


def block_number_by_timestamp_from_rpc(
    client: ApiClient,
    timestamp: int,
    block_duration: int,
    max_iterations: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Calculate the block number by its timestamp starting from the latest block
    and the average block duration.

    When the guessed block is earlier or later than `timestamp` (block time
    isn't constant), the duration is re-estimated from the guessed block and
    its neighbour, and the guess becomes the new reference point. Terminates
    on an exact timestamp match only, so `max_iterations` bounds the search on
    chains where block timestamps may skip over `timestamp`.
    """
    if block_duration <= 0:
        raise TimestampResolutionError(f"Block duration must be positive, got {block_duration}")

    ref_block_number = client.get_block_number_by_tag("latest")
    ref_block_timestamp = client.get_block_timestamp_by_number(ref_block_number)
    iteration = 0

    while True:
        iteration += 1

        gap = abs(ref_block_timestamp - timestamp) // block_duration

        if ref_block_timestamp > timestamp:
            block_number = max(ref_block_number - gap, 0)
        else:
            block_number = ref_block_number + gap

        block_timestamp = client.get_block_timestamp_by_number(block_number)

        if block_timestamp == timestamp:
            logger.info("Holocene block number was successfully calculated using RPC. The block number is %d", block_number)
            return block_number

        next_block_number = block_number + 1
        next_block_timestamp = client.get_block_timestamp_by_number(next_block_number)

        if next_block_timestamp == timestamp:
            logger.info(
                "Holocene block number was successfully calculated using RPC. The block number is %d", next_block_number
            )
            return next_block_number

        if max_iterations is not None and iteration >= max_iterations:
            raise TimestampResolutionError(
                f"Cannot find a block with timestamp {timestamp} after {iteration} iteration(s). "
                f"Last probed blocks: {block_number} ({block_timestamp}), {next_block_number} ({next_block_timestamp})"
            )

        logger.debug(
            "block_number = %d, next_block_number = %d, block_timestamp = %d, next_block_timestamp = %d",
            block_number,
            next_block_number,
            block_timestamp,
            next_block_timestamp,
        )

        # two blocks in the same second give no duration estimate, keep the previous one
        if next_block_timestamp > block_timestamp:
            block_duration = next_block_timestamp - block_timestamp

        ref_block_number = block_number
        ref_block_timestamp = block_timestamp

        sleep(RETRY_PAUSE_SECONDS)
        logger.info("Another try for Holocene block number calculation using RPC...")
