# worker.py
import enum
import logging
import queue
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Optional

from api_client import ApiClient, RpcError
from config import BLOCK_DURATION, CHUNK_SIZE, LATEST_BLOCK_CHECK_INTERVAL, RPC_RETRY_INTERVAL
from db_utils import create_core_tables, delete_change_records_outside
from ingestion import scan_range
from reconciler import get_last_block_number
from timestamp_resolver import TimestampResolutionError, block_number_by_timestamp

logger = logging.getLogger(__name__)

FETCHER_NAME = "optimism_eip1559_config_updates"


class State(enum.Enum):
    UNINITIALIZED = "uninitialized"
    DISABLED = "disabled"
    WAITING_FOR_ACTIVATION = "waiting_for_activation"
    RECONCILING_STATE = "reconciling_state"
    SCANNING = "scanning"
    LIVE_FOLLOWING = "live_following"
    FAILED = "failed"


TERMINAL_STATES = {State.DISABLED, State.FAILED, State.LIVE_FOLLOWING}

# inbox messages
BOOTSTRAP = "bootstrap"
CONTINUE = "continue"
HANDLE_REALTIME = "handle_realtime"


@dataclass
class ScanState:
    start_block: int
    end_block: int
    client: ApiClient


class ConfigUpdateWorker:
    """
    Fills the op_eip1559_config_updates table.

    Single-threaded state machine driven by messages posted to its own inbox:
    BOOTSTRAP waits for Holocene, cleans up invalid rows and finds the resume
    point; CONTINUE scans the historical range chunk by chunk; HANDLE_REALTIME
    marks the hand-off to tip following.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        client: ApiClient,
        holocene_timestamp: Optional[int],
        block_duration: int = BLOCK_DURATION,
        chunk_size: int = CHUNK_SIZE,
        check_interval: float = LATEST_BLOCK_CHECK_INTERVAL,
        retry_interval: float = RPC_RETRY_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.conn = conn
        self.client = client
        self.holocene_timestamp = holocene_timestamp
        self.block_duration = block_duration
        self.chunk_size = chunk_size
        self.check_interval = check_interval
        self.retry_interval = retry_interval
        self.sleep = sleep

        self.state = State.UNINITIALIZED
        self.scan_state: Optional[ScanState] = None
        self.updates_count = 0
        self.inbox: "queue.Queue[str]" = queue.Queue()

    def send(self, message: str) -> None:
        self.inbox.put(message)

    def run(self) -> State:
        """Process inbox messages until the worker reaches a terminal state."""
        self.send(BOOTSTRAP)

        while self.state not in TERMINAL_STATES:
            message = self.inbox.get()
            self.handle_message(message)

        logger.info("%s fetcher stopped in state %s", FETCHER_NAME, self.state.value)
        return self.state

    def handle_message(self, message: str) -> None:
        if message == BOOTSTRAP:
            self._bootstrap()
        elif message == CONTINUE:
            self._scan()
        elif message == HANDLE_REALTIME:
            self.scan_state = None
            self.state = State.LIVE_FOLLOWING
        else:
            logger.warning("Unknown message %r, ignoring it", message)

    def _bootstrap(self) -> None:
        if self.holocene_timestamp is None:
            # Holocene timestamp is not defined, so we don't start
            self.state = State.DISABLED
            return

        self.state = State.WAITING_FOR_ACTIVATION
        try:
            self.wait_for_holocene()
            latest_block_number = self.client.get_block_number_by_tag("latest")
        except RpcError as e:
            logger.error("Cannot get the latest L2 block due to RPC error: %s", e)
            self.state = State.FAILED
            return

        self.state = State.RECONCILING_STATE
        create_core_tables(self.conn)

        try:
            holocene_block_number = block_number_by_timestamp(
                self.conn, self.client, self.holocene_timestamp, self.block_duration, sleep=self.sleep
            )
        except (TimestampResolutionError, RpcError) as e:
            logger.error("Cannot detect Holocene block number: %s", e)
            self.state = State.FAILED
            return

        self.remove_invalid_updates(holocene_block_number, latest_block_number)

        try:
            last_block_number = get_last_block_number(self.conn, self.client)
        except RpcError as e:
            logger.error("Cannot get last L2 block from RPC by its hash due to RPC error: %s", e)
            self.state = State.FAILED
            return

        logger.debug("holocene_block_number = %d", holocene_block_number)
        logger.debug("last_block_number = %d", last_block_number)

        self.scan_state = ScanState(
            start_block=max(holocene_block_number, last_block_number),
            end_block=latest_block_number,
            client=self.client,
        )
        self.state = State.SCANNING
        self.send(CONTINUE)

    def _scan(self) -> None:
        scan_state = self.scan_state
        if scan_state is not None and scan_state.start_block <= scan_state.end_block:
            self.updates_count += scan_range(
                self.conn,
                scan_state.client,
                scan_state.start_block,
                scan_state.end_block,
                chunk_size=self.chunk_size,
                retry_interval=self.retry_interval,
                sleep=self.sleep,
            )

        self.send(HANDLE_REALTIME)

    def wait_for_holocene(self) -> None:
        """Block until the latest L2 block timestamp reaches the Holocene timestamp."""
        while True:
            latest_timestamp = self.client.get_block_timestamp_by_number("latest")
            if latest_timestamp >= self.holocene_timestamp:
                logger.info("Holocene activation detected")
                return

            logger.info(
                "Holocene is not activated yet. Waiting for the timestamp %d to be reached...",
                self.holocene_timestamp,
            )
            self.sleep(self.check_interval)

    def remove_invalid_updates(self, holocene_block_number: int, latest_block_number: int) -> None:
        """
        Drop rows before the Holocene block or after the latest block. They
        can appear after a wrong Holocene timestamp setting or a reorg.
        """
        with self.conn:
            removed = delete_change_records_outside(self.conn, holocene_block_number, latest_block_number)
        if removed:
            logger.info("Removed %d invalid config update(s)", removed)
