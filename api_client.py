# api_client.py
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from config import RPC_MAX_RETRIES, RPC_REQUEST_TIMEOUT, RPC_RETRY_INTERVAL, RPC_URL

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """
    Raised when a JSON-RPC call fails: transport error, malformed response
    or an `error` member in the response.
    """

    def __init__(self, message: str, error: Any = None):
        super().__init__(message)
        self.error = error


class RetryPolicy:
    """
    Fixed-interval retry. `max_attempts=None` retries forever, which is what
    the fetcher runs with in production: an unreachable node stalls the
    worker instead of failing it.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        interval: float = RPC_RETRY_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_attempts = max_attempts
        self.interval = interval
        self.sleep = sleep

    def call(self, func: Callable[..., Any], *args: Any, error_message: str = "RPC call failed") -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args)
            except (RpcError, requests.RequestException, ValueError) as e:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    if isinstance(e, RpcError):
                        raise
                    raise RpcError(f"{error_message}: {e}") from e
                logger.error("%s. Error: %s. Retrying...", error_message, e)
                self.sleep(self.interval)


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=RPC_MAX_RETRIES)


def quantity_to_integer(value: Union[str, int, None]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


def normalize_block(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "number": quantity_to_integer(raw["number"]),
        "hash": raw["hash"],
        "timestamp": quantity_to_integer(raw.get("timestamp")),
        "extra_data": raw.get("extraData", "0x"),
    }


class ApiClient:
    """
    Minimal JSON-RPC client for the L2 node.
    """

    def __init__(
        self,
        rpc_url: str = RPC_URL,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = RPC_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not rpc_url:
            raise ValueError("RPC URL is not configured")
        self.rpc_url = rpc_url
        self.retry_policy = retry_policy or default_retry_policy()
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, payload: Any) -> Any:
        resp = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _request(self, method: str, params: List[Any]) -> Any:
        data = self._post({"jsonrpc": "2.0", "id": 0, "method": method, "params": params})
        if "error" in data:
            raise RpcError(f"{method} returned an error: {data['error']}", data["error"])
        return data.get("result")

    def fetch_blocks_by_numbers(self, block_numbers: List[int]) -> Dict[str, List[Dict[str, Any]]]:
        """
        Batch eth_getBlockByNumber (without transactions).

        Returns {"blocks": [...normalized blocks...], "errors": [...]}.
        A missing block or an error entry in the batch response lands in
        `errors`; transport failures raise RpcError. No retries here.
        """
        batch = [
            {
                "jsonrpc": "2.0",
                "method": "eth_getBlockByNumber",
                "params": [hex(number), False],
                "id": i,
            }
            for i, number in enumerate(block_numbers)
        ]

        try:
            results = self._post(batch)
        except (requests.RequestException, ValueError) as e:
            raise RpcError(f"eth_getBlockByNumber batch failed: {e}") from e

        if isinstance(results, dict):
            # a single object instead of a list means the whole batch was rejected
            raise RpcError(f"eth_getBlockByNumber batch rejected: {results.get('error')}", results.get("error"))

        if not isinstance(results, list):
            raise RpcError(f"eth_getBlockByNumber batch returned unexpected response: {results!r}")

        by_id = {r.get("id"): r for r in results if isinstance(r, dict)}
        blocks: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for i, number in enumerate(block_numbers):
            resp = by_id.get(i, {})
            if "error" in resp:
                errors.append({"block_number": number, "error": resp["error"]})
            elif not resp.get("result"):
                errors.append({"block_number": number, "error": "block not found"})
            else:
                blocks.append(normalize_block(resp["result"]))

        return {"blocks": blocks, "errors": errors}

    def get_block_by_hash(self, block_hash: str) -> Optional[Dict[str, Any]]:
        """
        Returns the normalized block, or None when the node doesn't know the
        hash (e.g. it was reorged out).
        """
        result = self.retry_policy.call(
            self._request, "eth_getBlockByHash", [block_hash, False], error_message="eth_getBlockByHash failed"
        )
        if result is None:
            return None
        return normalize_block(result)

    def _request_existing_block(self, param: str) -> Dict[str, Any]:
        result = self._request("eth_getBlockByNumber", [param, False])
        if result is None:
            raise RpcError(f"Block {param} not found")
        return result

    def get_block_number_by_tag(self, tag: str = "latest") -> int:
        result = self.retry_policy.call(
            self._request_existing_block, tag, error_message=f"Cannot get block number by tag {tag}"
        )
        return quantity_to_integer(result["number"])

    def get_block_timestamp_by_number(self, number_or_tag: Union[int, str]) -> int:
        param = hex(number_or_tag) if isinstance(number_or_tag, int) else number_or_tag
        result = self.retry_policy.call(
            self._request_existing_block, param, error_message=f"Cannot get timestamp of block {number_or_tag}"
        )
        return quantity_to_integer(result["timestamp"])
