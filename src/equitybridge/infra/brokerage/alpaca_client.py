"""Alpaca trading REST API client.

Every failure leaves this module as one of the ``BrokerageAPIError`` types:
429 / 5xx / timeouts are transient, other 4xx are terminal, 404 is
``NotFoundError`` (lookups turn it into ``None``).
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from equitybridge.domain.enums import OrderSide, OrderType, TimeInForce
from equitybridge.domain.models.brokerage import Account, Asset, Order, Position
from equitybridge.domain.quantity import format_quantity
from equitybridge.exceptions import (
    BrokerageAPIError,
    NotFoundError,
    TerminalBrokerageError,
    TransientBrokerageError,
    TransientDependencyError,
    ValidationError,
)
from equitybridge.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

PAPER_BASE_URL = "https://paper-api.alpaca.markets/v2"


def _to_error(resp: httpx.Response) -> BrokerageAPIError:
    """Normalize an Alpaca error response (JSON body with message/code, or plain text)."""
    status = resp.status_code
    message = "Unknown error occurred"
    code = "UNKNOWN_ERROR"
    try:
        data: Any = resp.json()
    except ValueError:
        data = resp.text

    if isinstance(data, dict):
        message = data.get("message") or data.get("error") or message
        if data.get("code") is not None:
            code = str(data["code"])
    elif isinstance(data, str) and data:
        message = data

    if status == 404:
        return NotFoundError(f"Not found: {message}", status_code=status, code=code, data=data)
    if status == 408:
        return TransientBrokerageError(f"Request timeout: {message}", status_code=status, code=code, data=data)
    if status == 429:
        return TransientBrokerageError(
            f"Rate limit exceeded: {message}", status_code=status, code=code, data=data
        )
    if status >= 500:
        return TransientBrokerageError(f"Server error: {message}", status_code=status, code=code, data=data)
    if status == 403:
        return TerminalBrokerageError(
            f"Forbidden: {message}. This may be due to insufficient buying power or account restrictions.",
            status_code=status, code=code, data=data,
        )
    if status == 422:
        return TerminalBrokerageError(f"Invalid request: {message}", status_code=status, code=code, data=data)
    return TerminalBrokerageError(f"Alpaca API error {status}: {message}", status_code=status, code=code, data=data)


class AlpacaClient:
    """Authenticated Alpaca client (two static key headers)."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        http_client: RateLimitedClient,
        base_url: str = PAPER_BASE_URL,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds

    def _headers(self) -> dict[str, str]:
        return {
            "APCA-API-KEY-ID": self._api_key,
            "APCA-API-SECRET-KEY": self._api_secret,
            "accept": "application/json",
        }

    async def _request(self, method: str, path: str, params: dict | None = None, json: dict | None = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            if method == "GET":
                resp = await self._http.get(url, params=params, headers=self._headers())
            else:
                resp = await self._http.post(url, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            raise TransientBrokerageError(f"Alpaca request timed out: {method} {path}", code="TIMEOUT") from e
        except httpx.TransportError as e:
            raise TransientBrokerageError(
                f"No response received from Alpaca API ({method} {path}): {e}", code="NO_RESPONSE"
            ) from e

        if resp.status_code >= 400:
            error = _to_error(resp)
            error.response_received = True
            logger.warning("Alpaca %s %s failed: %d %s (code=%s)", method, path, resp.status_code, error.message, error.code)
            raise error
        return resp.json()

    async def _get(self, path: str, params: dict | None = None) -> Any:
        """GET with bounded retry on transient errors. Reads are idempotent."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientDependencyError),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=30),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                data = await self._request("GET", path, params=params)
        return data

    async def get_account(self) -> Account:
        """GET /account"""
        return Account.model_validate(await self._get("/account"))

    async def get_position(self, symbol: str) -> Position | None:
        """GET /positions/{symbol}. No open position -> None."""
        try:
            data = await self._get(f"/positions/{symbol}")
        except NotFoundError:
            return None
        return Position.model_validate(data)

    async def get_assets(self, status: str | None = "active", asset_class: str | None = "us_equity") -> list[Asset]:
        """GET /assets"""
        params = {k: v for k, v in {"status": status, "asset_class": asset_class}.items() if v}
        data = await self._get("/assets", params=params or None)
        return [Asset.model_validate(a) for a in data] if isinstance(data, list) else []

    async def get_order(self, order_id: str) -> Order:
        """GET /orders/{order_id}"""
        return Order.model_validate(await self._get(f"/orders/{order_id}"))

    async def get_order_by_client_order_id(self, client_order_id: str) -> Order | None:
        """GET /orders:by_client_order_id. Unknown id -> None."""
        try:
            data = await self._get("/orders:by_client_order_id", params={"client_order_id": client_order_id})
        except NotFoundError:
            return None
        return Order.model_validate(data)

    async def place_market_order(
        self,
        symbol: str,
        quantity: Decimal | str,
        side: OrderSide | str,
        time_in_force: TimeInForce | str = TimeInForce.DAY,
        extended_hours: bool = False,
        client_order_id: str | None = None,
    ) -> Order:
        """POST /orders. Parameters are validated before any network call.

        Not retried here: a POST that timed out may still have created the
        order. Callers retry with the same ``client_order_id`` and check
        ``get_order_by_client_order_id`` first.
        """
        if not symbol or not symbol.strip():
            raise ValidationError("symbol must be a non-empty string")
        try:
            qty = Decimal(str(quantity))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"quantity is not a number: {quantity!r}") from e
        if not qty.is_finite() or qty <= 0:
            raise ValidationError(f"quantity must be > 0, got {quantity}")
        try:
            order_side = OrderSide(side)
        except ValueError as e:
            raise ValidationError(f"side must be 'buy' or 'sell', got {side!r}") from e
        try:
            tif = TimeInForce(time_in_force)
        except ValueError as e:
            raise ValidationError(f"unsupported time_in_force {time_in_force!r}") from e

        body: dict[str, Any] = {
            "symbol": symbol.strip().upper(),
            "qty": format_quantity(qty),
            "side": order_side.value,
            "type": OrderType.MARKET.value,
            "time_in_force": tif.value,
            "extended_hours": extended_hours,
        }
        if client_order_id:
            body["client_order_id"] = client_order_id

        data = await self._request("POST", "/orders", json=body)
        order = Order.model_validate(data)
        logger.info(
            "Placed %s market order %s: %s %s (status=%s)",
            order.side.value, order.id, body["qty"], order.symbol, order.status,
        )
        return order
