from __future__ import annotations

import logging
import ssl
import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from uuid import uuid4

import httpx

from gridbot.adapters.binance_auth import build_auth_headers, sign_query
from gridbot.adapters.exchange import ExchangeClient
from gridbot.domain.models import (
    AccountTrade,
    Balance,
    ExchangeError,
    ExchangeOrder,
    ExchangeOrderStatus,
    LotSize,
    OrderSide,
    OrderType,
    normalize_symbol,
    parse_decimal,
)
from gridbot.security.redaction import sanitize_text
from gridbot.services.retry import RetryAttempt, retry_with_backoff

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when required runtime configuration is missing or invalid."""


_ERROR_SNIPPET_LIMIT = 240
_RETRY_ATTEMPTS = 4
_RETRY_BASE_DELAY_SECONDS = 0.4
_RETRY_MAX_DELAY_SECONDS = 4.0
_RETRY_TOTAL_WAIT_CAP_SECONDS = 8.0


class _RetryableRequestError(Exception):
    def __init__(self, exchange_error: ExchangeError, *, retry_after_header: str | None = None) -> None:
        super().__init__(str(exchange_error))
        self.exchange_error = exchange_error
        self.retry_after_header = retry_after_header


def _is_permanent_transport_error(exc: httpx.TransportError) -> bool:
    if isinstance(exc, (httpx.UnsupportedProtocol, httpx.ProtocolError)):
        return True
    return isinstance(getattr(exc, "__cause__", None), ssl.SSLCertVerificationError)


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TimeoutException):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    if isinstance(exc, httpx.TransportError):
        return not _is_permanent_transport_error(exc)
    return False


def _response_snippet(response: httpx.Response) -> str:
    text = response.text.strip().replace("\n", " ")
    return sanitize_text(text[:_ERROR_SNIPPET_LIMIT])


def _fmt_decimal(value: Decimal) -> str:
    normalized = format(value, "f")
    if "." in normalized:
        normalized = normalized.rstrip("0").rstrip(".")
    return normalized or "0"


def _error_fields(response: httpx.Response) -> tuple[object, str | None]:
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    message = payload.get("msg")
    return payload.get("code"), (sanitize_text(str(message)) if message is not None else None)


class BinanceHttpClient(ExchangeClient):
    BASE_URL = "https://api.binance.com"

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        timeout: float | httpx.Timeout = 10.0,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        recv_window_ms: int | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        resolved_timeout = (
            timeout
            if isinstance(timeout, httpx.Timeout)
            else httpx.Timeout(timeout=timeout, connect=5.0)
        )
        self.client = httpx.Client(
            base_url=base_url or self.BASE_URL,
            timeout=resolved_timeout,
            transport=transport,
        )
        self._sleep = sleep_fn or time.sleep
        self._recv_window_ms = recv_window_ms

    def __enter__(self) -> BinanceHttpClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        self.close()

    def _get(self, path: str, params: dict[str, str | int] | None = None) -> object:
        request_id = uuid4().hex

        def _call() -> object:
            response = self.client.get(path, params=params, headers={"X-Request-ID": request_id})
            if response.status_code >= 500 or response.status_code == 429:
                response.raise_for_status()
            if response.status_code >= 400:
                code, message = _error_fields(response)
                raise ExchangeError(
                    f"Binance public endpoint error status={response.status_code} path={path} "
                    f"code={code} message={message}",
                    status_code=response.status_code,
                    error_code=code,
                    error_message=message,
                    request_path=path,
                    request_method="GET",
                    response_body=_response_snippet(response),
                )
            return response.json()

        def _retry_after(exc: Exception) -> str | None:
            response = getattr(exc, "response", None)
            return None if response is None else response.headers.get("Retry-After")

        def _on_retry(attempt: RetryAttempt) -> None:
            logger.info(
                "rest_retry",
                extra={
                    "extra": {
                        "path": path,
                        "attempt": attempt.attempt,
                        "delay_ms": attempt.delay_ms,
                        "error_type": attempt.error_type,
                        "used_retry_after": attempt.used_retry_after,
                    }
                },
            )

        def _retry_filter() -> object:
            try:
                return _call()
            except (httpx.HTTPStatusError, httpx.TransportError) as exc:
                if not _should_retry(exc):
                    raise ExchangeError(
                        f"Binance public endpoint transport failure path={path}: {type(exc).__name__}",
                        request_path=path,
                        request_method="GET",
                    ) from exc
                raise

        try:
            return retry_with_backoff(
                _retry_filter,
                max_attempts=_RETRY_ATTEMPTS,
                base_delay_ms=int(_RETRY_BASE_DELAY_SECONDS * 1000),
                max_delay_ms=int(_RETRY_MAX_DELAY_SECONDS * 1000),
                max_total_sleep_seconds=_RETRY_TOTAL_WAIT_CAP_SECONDS,
                jitter_seed=17,
                retry_on_exceptions=(httpx.TransportError, httpx.HTTPStatusError),
                retry_after_getter=_retry_after,
                on_retry=_on_retry,
                sleep_fn=self._sleep,
            )
        except httpx.HTTPStatusError as exc:
            raise ExchangeError(
                f"Binance public endpoint error status={exc.response.status_code} path={path}",
                status_code=exc.response.status_code,
                request_path=path,
                request_method="GET",
                response_body=_response_snippet(exc.response),
            ) from exc

    def _signed_request(
        self,
        method: str,
        path: str,
        params: dict[str, object] | None = None,
        *,
        timestamp_ms: int | None = None,
    ) -> object:
        if not self.api_key or not self.api_secret:
            raise ConfigurationError(
                "Missing Binance API credentials: "
                "BINANCE_API_KEY and BINANCE_API_SECRET are required for signed endpoints"
            )

        request_id = uuid4().hex
        normalized_method = method.upper()
        is_write = normalized_method in {"POST", "PUT", "DELETE"}
        base_params = dict(params or {})
        if self._recv_window_ms is not None:
            base_params["recvWindow"] = self._recv_window_ms
        pending_stamp = [timestamp_ms]

        def _call() -> object:
            # a caller-supplied stamp is only used for the first attempt
            stamp = pending_stamp.pop() if pending_stamp else None
            if stamp is None:
                stamp = self.get_server_time()
            query = sign_query(base_params, self.api_secret or "", stamp)
            headers = build_auth_headers(self.api_key or "")
            headers["X-Request-ID"] = request_id
            response = self.client.request(normalized_method, f"{path}?{query}", headers=headers)
            if response.status_code != 200:
                code, message = _error_fields(response)
                err = ExchangeError(
                    "Binance signed endpoint error "
                    f"status={response.status_code} method={normalized_method} path={path} "
                    f"code={code} message={message} request_id={request_id}",
                    status_code=response.status_code,
                    error_code=code,
                    error_message=message,
                    request_path=path,
                    request_method=normalized_method,
                    response_body=_response_snippet(response),
                )
                if response.status_code == 429 or (response.status_code >= 500 and not is_write):
                    raise _RetryableRequestError(
                        err, retry_after_header=response.headers.get("Retry-After")
                    ) from err
                raise err
            return response.json()

        def _retry_after(exc: Exception) -> str | None:
            if isinstance(exc, _RetryableRequestError):
                return exc.retry_after_header
            return None

        # order placement is never replayed on timeouts or 5xx
        retryable: tuple[type[Exception], ...] = (_RetryableRequestError,)
        if not is_write:
            retryable = (*retryable, httpx.TransportError)
        try:
            return retry_with_backoff(
                _call,
                max_attempts=_RETRY_ATTEMPTS,
                base_delay_ms=int(_RETRY_BASE_DELAY_SECONDS * 1000),
                max_delay_ms=int(_RETRY_MAX_DELAY_SECONDS * 1000),
                max_total_sleep_seconds=_RETRY_TOTAL_WAIT_CAP_SECONDS,
                jitter_seed=23,
                retry_on_exceptions=retryable,
                retry_after_getter=_retry_after,
                sleep_fn=self._sleep,
            )
        except _RetryableRequestError as exc:
            raise exc.exchange_error from exc

    def get_server_time(self) -> int:
        payload = self._get("/api/v3/time")
        if not isinstance(payload, dict) or payload.get("serverTime") is None:
            raise ExchangeError("Malformed server time payload", request_path="/api/v3/time")
        return int(payload["serverTime"])

    def get_price(self, symbol: str) -> Decimal:
        pair = normalize_symbol(symbol)
        payload = self._get("/api/v3/ticker/price", params={"symbol": pair})
        if not isinstance(payload, dict) or payload.get("price") is None:
            raise ValueError(f"Malformed ticker payload for {pair}")
        price = parse_decimal(payload["price"])
        if price <= 0:
            raise ValueError(f"Non-positive ticker price for {pair}: {price}")
        return price

    def get_lot_size(self, symbol: str) -> LotSize:
        pair = normalize_symbol(symbol)
        payload = self._get("/api/v3/exchangeInfo", params={"symbol": pair})
        symbols = payload.get("symbols") if isinstance(payload, dict) else None
        if not isinstance(symbols, list):
            raise ValueError("Malformed exchangeInfo payload: symbols must be a list")
        for item in symbols:
            if not isinstance(item, dict) or str(item.get("symbol", "")).upper() != pair:
                continue
            filters = {
                str(flt.get("filterType", "")).upper(): flt
                for flt in item.get("filters") or []
                if isinstance(flt, dict)
            }
            lot_filter = filters.get("LOT_SIZE")
            if lot_filter is None:
                break
            try:
                tick_size = parse_decimal(filters.get("PRICE_FILTER", {}).get("tickSize"))
                lot = LotSize(
                    min_qty=parse_decimal(lot_filter.get("minQty")),
                    step_size=parse_decimal(lot_filter.get("stepSize")),
                    tick_size=tick_size if tick_size > 0 else None,
                )
            except (TypeError, ValueError, InvalidOperation) as exc:
                raise ValueError(f"Malformed LOT_SIZE filter for {pair}: {lot_filter}") from exc
            if lot.step_size <= 0:
                raise ValueError(f"Non-positive LOT_SIZE stepSize for {pair}: {lot.step_size}")
            return lot
        raise ValueError(f"LOT_SIZE filter not found for {pair}")

    def get_balance(self, asset: str) -> Balance:
        payload = self._signed_request("GET", "/api/v3/account", params={"omitZeroBalances": "true"})
        balances = payload.get("balances") if isinstance(payload, dict) else None
        if not isinstance(balances, list):
            raise ValueError("Malformed account payload: balances must be a list")
        wanted = asset.upper()
        for item in balances:
            if isinstance(item, dict) and str(item.get("asset", "")).upper() == wanted:
                try:
                    return Balance(
                        asset=wanted,
                        free=parse_decimal(item.get("free")),
                        locked=parse_decimal(item.get("locked")),
                    )
                except (TypeError, ValueError, InvalidOperation) as exc:
                    raise ValueError(f"Malformed balance item: {item}") from exc
        return Balance(asset=wanted)

    def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Decimal | None = None,
        time_in_force: str | None = None,
        timestamp_ms: int | None = None,
    ) -> str:
        pair = normalize_symbol(symbol)
        params: dict[str, object] = {
            "symbol": pair,
            "side": OrderSide(side).value,
            "type": OrderType(order_type).value,
        }
        if order_type == OrderType.LIMIT:
            if price is None or price <= 0:
                raise ValueError(f"LIMIT order requires a positive price; observed={price}")
            params["timeInForce"] = time_in_force or "GTC"
        params["quantity"] = _fmt_decimal(quantity)
        if order_type == OrderType.LIMIT and price is not None:
            params["price"] = _fmt_decimal(price)

        try:
            payload = self._signed_request(
                "POST", "/api/v3/order", params=params, timestamp_ms=timestamp_ms
            )
        except ExchangeError as exc:
            logger.error(
                "binance_place_order_failed",
                extra={
                    "extra": {
                        "status_code": exc.status_code,
                        "error_code": exc.error_code,
                        "error_message": exc.error_message,
                        "response_body": exc.response_body,
                        "symbol": pair,
                        "side": params["side"],
                        "type": params["type"],
                        "quantity": params["quantity"],
                        "price": params.get("price"),
                    }
                },
            )
            raise
        if not isinstance(payload, dict) or payload.get("orderId") is None:
            raise ExchangeError("Place order response missing orderId", request_path="/api/v3/order")
        return str(payload["orderId"])

    def get_open_orders(self, symbol: str | None = None) -> list[ExchangeOrder]:
        params = {"symbol": normalize_symbol(symbol)} if symbol else None
        payload = self._signed_request("GET", "/api/v3/openOrders", params=params)
        return self._to_exchange_orders(payload, path="/api/v3/openOrders")

    def get_all_orders(self, symbol: str) -> list[ExchangeOrder]:
        payload = self._signed_request(
            "GET", "/api/v3/allOrders", params={"symbol": normalize_symbol(symbol)}
        )
        return self._to_exchange_orders(payload, path="/api/v3/allOrders")

    def get_my_trades(self, symbol: str) -> list[AccountTrade]:
        payload = self._signed_request(
            "GET", "/api/v3/myTrades", params={"symbol": normalize_symbol(symbol)}
        )
        if not isinstance(payload, list):
            raise ValueError("Malformed myTrades payload: expected a list")
        trades: list[AccountTrade] = []
        for row in payload:
            if not isinstance(row, dict):
                raise ValueError(f"Malformed item in myTrades payload: {row!r}")
            try:
                trades.append(
                    AccountTrade(
                        trade_id=str(row["id"]),
                        order_id=str(row["orderId"]),
                        symbol=str(row.get("symbol", symbol)),
                        price=parse_decimal(row.get("price")),
                        qty=parse_decimal(row.get("qty")),
                        quote_qty=parse_decimal(row.get("quoteQty")),
                        commission=parse_decimal(row.get("commission")),
                        commission_asset=str(row.get("commissionAsset") or ""),
                        is_buyer=bool(row.get("isBuyer", False)),
                        time=int(row.get("time") or 0),
                    )
                )
            except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
                raise ValueError(f"Malformed myTrades item: {row}") from exc
        return trades

    def _to_exchange_orders(self, payload: object, *, path: str) -> list[ExchangeOrder]:
        if not isinstance(payload, list):
            raise ValueError(f"Malformed order list payload for {path}")
        return [self._to_exchange_order(item) for item in payload]

    def _to_exchange_order(self, item: object) -> ExchangeOrder:
        if not isinstance(item, dict):
            raise ValueError(f"Malformed order item: {item!r}")
        try:
            side_raw = str(item.get("side", "")).upper()
            return ExchangeOrder(
                order_id=str(item["orderId"]),
                symbol=str(item.get("symbol", "")),
                side=OrderSide(side_raw) if side_raw in {"BUY", "SELL"} else None,
                status=ExchangeOrderStatus.parse(item.get("status")),
                price=parse_decimal(item.get("price")),
                stop_price=parse_decimal(item.get("stopPrice")),
                orig_qty=parse_decimal(item.get("origQty")),
                executed_qty=parse_decimal(item.get("executedQty")),
                cumulative_quote_qty=parse_decimal(item.get("cummulativeQuoteQty")),
                type=str(item.get("type") or "UNKNOWN"),
                time=int(item.get("time") or 0),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise ValueError(f"Malformed order item: {item}") from exc

    def close(self) -> None:
        self.client.close()
