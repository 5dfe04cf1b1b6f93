"""Async REST client for the broker's order and portfolio endpoints."""

import logging
from typing import Any

import httpx

from tradeguard.errors import BrokerNetworkError, BrokerRejectedError
from tradeguard.models.system import BrokerOrderState, BrokerPosition
from tradeguard.models.trading import OrderType, TransactionType

logger = logging.getLogger(__name__)

BROKER_API_BASE = "https://api.kite.trade"
API_VERSION = "3"
DEFAULT_TAG = "TradeGuard"
SQUARE_OFF_TAG = "SquareOff"


class BrokerClient:
    """Thin async wrapper around the broker REST API for one authenticated user.

    Order placement is form-encoded; every response is an envelope of the
    form ``{"status": "success", "data": ...}``.
    """

    def __init__(
        self,
        api_key: str,
        access_token: str,
        base_url: str = BROKER_API_BASE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "X-Kite-Version": API_VERSION,
                "Authorization": f"token {api_key}:{access_token}",
            },
        )

    async def __aenter__(self) -> "BrokerClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Make an authenticated request and unwrap the ``data`` envelope."""
        try:
            resp = await self._client.request(method, endpoint, data=data)
        except httpx.TimeoutException as e:
            logger.error("Broker API timeout: %s %s", method, endpoint)
            raise BrokerNetworkError(f"Broker request timed out: {method} {endpoint}") from e
        except httpx.RequestError as e:
            logger.error("Broker API request failed: %s %s -> %s", method, endpoint, e)
            raise BrokerNetworkError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            body = _safe_json(resp)
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(
                "Broker API %d: %s %s -> %s", resp.status_code, method, endpoint, resp.text
            )
            error_cls = BrokerNetworkError if resp.status_code >= 500 else BrokerRejectedError
            raise error_cls(
                f"HTTP {resp.status_code}: {message or resp.text}",
                status_code=resp.status_code,
                response=body,
            )
        body = _safe_json(resp)
        if not isinstance(body, dict):
            raise BrokerNetworkError(f"Unexpected broker response for {endpoint}")
        return body.get("data")

    # --- Orders ---

    async def place_order(self, params: dict[str, Any]) -> dict[str, Any]:
        """Place a regular order.

        Args:
            params: symbol, exchange, transaction_type, order_type, product_type,
                quantity, and optionally price, trigger_price, validity, tag.

        Returns:
            ``{"order_id": ..., "raw": <response data>}``.
        """
        order_type = str(params["order_type"])
        payload: dict[str, Any] = {
            "exchange": str(params["exchange"]),
            "tradingsymbol": params["symbol"],
            "transaction_type": str(params["transaction_type"]),
            "order_type": order_type,
            "product": str(params["product_type"]),
            "quantity": int(params["quantity"]),
            "validity": str(params.get("validity") or "DAY"),
            "disclosed_quantity": 0,
            "tag": params.get("tag") or DEFAULT_TAG,
        }
        if order_type in (OrderType.LIMIT, OrderType.SL) and params.get("price") is not None:
            payload["price"] = params["price"]
        if order_type in (OrderType.SL, OrderType.SL_M) and params.get("trigger_price") is not None:
            payload["trigger_price"] = params["trigger_price"]

        data = await self._request("POST", "/orders/regular", payload)
        order_id = (data or {}).get("order_id")
        if not order_id:
            raise BrokerRejectedError("Broker accepted the request but returned no order id",
                                      response=data)
        return {"order_id": str(order_id), "raw": data}

    async def cancel_order(self, order_id: str, variety: str = "regular") -> dict[str, Any]:
        return await self._request("DELETE", f"/orders/{variety}/{order_id}") or {}

    async def get_order(self, order_id: str) -> BrokerOrderState | None:
        """Latest state of an order (the last entry of its history)."""
        history = await self._request("GET", f"/orders/{order_id}")
        if not history:
            return None
        latest = history[-1] if isinstance(history, list) else history
        return BrokerOrderState(
            status=str(latest.get("status", "")),
            filled_quantity=int(latest.get("filled_quantity") or 0),
            average_price=_to_float(latest.get("average_price")),
            status_message=latest.get("status_message"),
            raw=latest,
        )

    # --- Portfolio ---

    async def get_positions(self) -> list[BrokerPosition]:
        """Net positions for the day, including flat ones."""
        data = await self._request("GET", "/portfolio/positions") or {}
        return [
            BrokerPosition(
                symbol=p.get("tradingsymbol", ""),
                exchange=p.get("exchange", ""),
                quantity=int(p.get("quantity") or 0),
                product=p.get("product", ""),
                raw=p,
            )
            for p in data.get("net", [])
        ]

    async def exit_position(self, position: BrokerPosition) -> dict[str, Any]:
        """Square off with an opposite-direction market order."""
        side = TransactionType.SELL if position.quantity > 0 else TransactionType.BUY
        return await self.place_order({
            "exchange": position.exchange,
            "symbol": position.symbol,
            "transaction_type": side,
            "order_type": OrderType.MARKET,
            "product_type": position.product,
            "quantity": abs(position.quantity),
            "tag": SQUARE_OFF_TAG,
        })

    async def get_margins(self) -> dict[str, Any]:
        return await self._request("GET", "/user/margins") or {}


def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)
