"""Ethereum JSON-RPC client: the handful of calls the settlement worker needs."""

import logging
from typing import Any

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from equitybridge.exceptions import (
    ContractRevertError,
    DependencyError,
    NonceError,
    TransientDependencyError,
)
from equitybridge.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

_REVERT_MARKERS = ("execution reverted", "revert")
_NONCE_MARKERS = ("nonce too low", "nonce too high", "replacement transaction underpriced", "invalid nonce")


def _classify(method: str, error: dict) -> DependencyError:
    """Map a JSON-RPC error object onto the taxonomy."""
    message = str(error.get("message", error))
    code = error.get("code")
    lowered = message.lower()
    text = f"RPC error ({method}): {message}"

    if code == 3 or any(m in lowered for m in _REVERT_MARKERS):
        exc: DependencyError = ContractRevertError(text, code=str(code), data=error.get("data"))
    elif any(m in lowered for m in _NONCE_MARKERS):
        exc = NonceError(text, code=str(code), data=error.get("data"))
    else:
        exc = TransientDependencyError(text, code=str(code), data=error.get("data"))
    exc.response_received = True
    return exc


def _retryable(exc: BaseException) -> bool:
    # Nonce errors need a fresh nonce, which only the caller can provide.
    return isinstance(exc, TransientDependencyError) and not isinstance(exc, NonceError)


def to_hex(value: int) -> str:
    return hex(value)


class EVMRPCClient:
    """Minimal JSON-RPC client. Results are returned as the raw ``result`` field."""

    def __init__(
        self,
        rpc_url: str,
        http_client: RateLimitedClient,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._rpc_url = rpc_url
        self._http = http_client
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._request_id = 0

    async def _call_once(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        try:
            resp = await self._http.post(self._rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise TransientDependencyError(f"RPC timeout ({method})", code="TIMEOUT") from e
        except httpx.TransportError as e:
            raise TransientDependencyError(f"RPC transport error ({method}): {e}", code="NO_RESPONSE") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientDependencyError(
                f"RPC HTTP {resp.status_code} ({method})", status_code=resp.status_code
            )
        data = resp.json()

        if "error" in data:
            raise _classify(method, data["error"])

        return data.get("result")

    async def _call(self, method: str, params: list) -> Any:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_retryable),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=30),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._call_once(method, params)
        return result

    async def block_number(self) -> int:
        return int(await self._call("eth_blockNumber", []), 16)

    async def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int,
        to_block: int | None = None,
    ) -> list[dict]:
        params = {
            "address": address,
            "topics": topics,
            "fromBlock": to_hex(from_block),
            "toBlock": to_hex(to_block) if to_block is not None else "latest",
        }
        result = await self._call("eth_getLogs", [params])
        return result or []

    async def call(self, tx: dict, block: str = "latest") -> str:
        return await self._call("eth_call", [tx, block])

    async def estimate_gas(self, tx: dict) -> int:
        return int(await self._call("eth_estimateGas", [tx]), 16)

    async def gas_price(self) -> int:
        return int(await self._call("eth_gasPrice", []), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self._call("eth_getTransactionCount", [address, block]), 16)

    async def get_transaction(self, tx_hash: str) -> dict | None:
        """Pending or mined transaction by hash; None if the node does not know it."""
        return await self._call("eth_getTransactionByHash", [tx_hash])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Broadcast once. Not retried: a resend must go through the caller's nonce handling."""
        return await self._call_once("eth_sendRawTransaction", [raw_tx])
