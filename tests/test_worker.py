from api_client import RpcError
from conftest import FakeChain, block_hash, config_rows, extra_data
from db_utils import get_cursor, insert_change_records
from worker import ConfigUpdateWorker, State


def make_worker(conn, chain, timestamp, sleep, **kwargs):
    return ConfigUpdateWorker(conn, chain, timestamp, block_duration=2, chunk_size=10, sleep=sleep, **kwargs)


def test_disabled_without_holocene_timestamp(sleep):
    chain = FakeChain(latest=10)

    class NoStore:
        def __getattr__(self, name):
            raise AssertionError(f"store was touched: {name}")

    worker = make_worker(NoStore(), chain, None, sleep)

    assert worker.run() == State.DISABLED
    assert chain.calls == []
    assert sleep.calls == []


def test_full_bootstrap_and_scan(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    chain.extra.update({n: extra_data(250, 6) for n in range(10, 41)})
    chain.extra.update({n: extra_data(50, 4) for n in range(25, 41)})

    worker = make_worker(conn, chain, 1020, sleep)

    assert worker.run() == State.LIVE_FOLLOWING
    assert worker.updates_count == 2
    assert config_rows(conn) == [
        (10, block_hash(10), 250, 6),
        (25, block_hash(25), 50, 4),
    ]
    assert get_cursor(conn) == block_hash(40)


def test_waits_for_activation(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    original = chain.get_block_timestamp_by_number
    polls = []

    def lagging_timestamp(number_or_tag):
        if number_or_tag == "latest" and len(polls) < 2:
            polls.append(number_or_tag)
            return 1000
        return original(number_or_tag)

    chain.get_block_timestamp_by_number = lagging_timestamp
    worker = make_worker(conn, chain, 1060, sleep, check_interval=60)

    assert worker.run() == State.LIVE_FOLLOWING
    assert sleep.calls == [60, 60]


def test_invalid_rows_are_removed_before_scan(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    insert_change_records(
        conn,
        [
            (5, block_hash(5), 1, 1),
            (20, block_hash(20), 250, 6),
            (45, block_hash(45), 2, 2),
        ],
    )
    conn.commit()

    worker = make_worker(conn, chain, 1020, sleep)

    assert worker.run() == State.LIVE_FOLLOWING
    # blocks carry no valid extraData, so only the surviving row remains
    assert config_rows(conn) == [(20, block_hash(20), 250, 6)]
    assert worker.updates_count == 0


def test_resumes_from_cursor(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    chain.extra.update({n: extra_data(250, 6) for n in range(10, 41)})

    worker = make_worker(conn, chain, 1020, sleep)
    worker.run()
    chain.calls.clear()

    restarted = make_worker(conn, chain, 1020, sleep)
    assert restarted.run() == State.LIVE_FOLLOWING
    assert restarted.scan_state is None
    assert restarted.updates_count == 0
    # only block 40 is fetched again
    assert chain.calls.count("fetch_blocks_by_numbers") == 1


def test_rpc_error_during_reconciliation_fails(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    insert_change_records(conn, [(20, block_hash(20), 250, 6)])
    conn.commit()
    chain.hash_lookup_error = True

    worker = make_worker(conn, chain, 1020, sleep)

    assert worker.run() == State.FAILED
    assert "fetch_blocks_by_numbers" not in chain.calls


def test_rpc_error_while_waiting_for_activation_fails(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)

    def unreachable(number_or_tag):
        raise RpcError("Cannot get timestamp of block latest: connection refused")

    chain.get_block_timestamp_by_number = unreachable
    worker = make_worker(conn, chain, 1020, sleep)

    assert worker.run() == State.FAILED
    assert config_rows(conn) == []


def test_rpc_error_on_latest_block_number_fails(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)

    def unreachable(tag="latest"):
        raise RpcError("Cannot get block number by tag latest: connection refused")

    chain.get_block_number_by_tag = unreachable
    worker = make_worker(conn, chain, 1020, sleep)

    assert worker.run() == State.FAILED
    assert "fetch_blocks_by_numbers" not in chain.calls


def test_rpc_error_while_resolving_holocene_block_fails(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    original = chain.get_block_timestamp_by_number

    def flaky_timestamp(number_or_tag):
        if number_or_tag != "latest":
            raise RpcError(f"Cannot get timestamp of block {number_or_tag}")
        return original(number_or_tag)

    chain.get_block_timestamp_by_number = flaky_timestamp
    worker = make_worker(conn, chain, 1020, sleep)

    assert worker.run() == State.FAILED
    assert "fetch_blocks_by_numbers" not in chain.calls


def test_zero_block_duration_fails(conn, sleep):
    chain = FakeChain(latest=40, genesis_timestamp=1000, block_duration=2)
    worker = ConfigUpdateWorker(conn, chain, 1020, block_duration=0, sleep=sleep)

    assert worker.run() == State.FAILED
