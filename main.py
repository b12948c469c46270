import logging
import sys

from api_client import ApiClient
from config import DB_PATH, HOLOCENE_TIMESTAMP, LOG_LEVEL, RPC_URL
from db_utils import get_connection
from worker import FETCHER_NAME, ConfigUpdateWorker, State


def main() -> int:
    logging.basicConfig(
        level=LOG_LEVEL,
        format=f"%(asctime)s [%(levelname)s] fetcher={FETCHER_NAME} %(name)s: %(message)s",
    )

    conn = get_connection(DB_PATH)
    try:
        worker = ConfigUpdateWorker(conn, ApiClient(RPC_URL), HOLOCENE_TIMESTAMP)
        final_state = worker.run()
    finally:
        conn.close()

    return 1 if final_state == State.FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
