from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from gridbot.adapters.binance_http import ConfigurationError
from gridbot.domain.strategy import STRATEGY_CONFIG_VERSION, StrategyConfig
from gridbot.domain.symbols import canonical_symbol


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    binance_api_key: SecretStr | None = Field(default=None, alias="BINANCE_API_KEY")
    binance_api_secret: SecretStr | None = Field(default=None, alias="BINANCE_API_SECRET")
    binance_base_url: str = Field(default="https://api.binance.com", alias="BINANCE_BASE_URL")
    binance_recv_window_ms: int | None = Field(default=None, alias="BINANCE_RECV_WINDOW_MS")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    state_db_path: str = Field(default="gridbot_state.db", alias="STATE_DB_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    fee_rate: Decimal = Field(default=Decimal("0.001"), alias="FEE_RATE")
    sell_offsets: Annotated[list[Decimal], NoDecode] = Field(
        default_factory=lambda: [Decimal("0.05"), Decimal("0.10"), Decimal("0.15")],
        alias="SELL_OFFSETS",
    )
    buy_offsets: Annotated[list[Decimal], NoDecode] = Field(
        default_factory=lambda: [Decimal("-0.05"), Decimal("-0.10")],
        alias="BUY_OFFSETS",
    )
    initial_buy_count: int = Field(default=3, alias="INITIAL_BUY_COUNT")
    order_notional: Decimal = Field(default=Decimal("10"), alias="ORDER_NOTIONAL")
    reinvest_margin: Decimal = Field(default=Decimal("0.05"), alias="REINVEST_MARGIN")
    rebuy_discount: Decimal = Field(default=Decimal("0.05"), alias="REBUY_DISCOUNT")
    resell_markup: Decimal = Field(default=Decimal("0.05"), alias="RESELL_MARKUP")
    balance_poll_attempts: int = Field(default=5, alias="BALANCE_POLL_ATTEMPTS")
    balance_poll_interval_seconds: float = Field(
        default=2.0, alias="BALANCE_POLL_INTERVAL_SECONDS"
    )
    monitor_interval_seconds: float = Field(default=60.0, alias="MONITOR_INTERVAL_SECONDS")
    lot_size_fallback_min_qty: Decimal = Field(
        default=Decimal("0.01"), alias="LOT_SIZE_FALLBACK_MIN_QTY"
    )
    lot_size_fallback_step_size: Decimal = Field(
        default=Decimal("0.01"), alias="LOT_SIZE_FALLBACK_STEP_SIZE"
    )
    lot_size_cache_ttl_sec: int = Field(default=300, alias="LOT_SIZE_CACHE_TTL_SEC")
    price_decimals: int = Field(default=2, alias="PRICE_DECIMALS")
    max_active_orders: int = Field(default=5, alias="MAX_ACTIVE_ORDERS")
    strategy_config_version: str = Field(
        default=STRATEGY_CONFIG_VERSION, alias="STRATEGY_CONFIG_VERSION"
    )

    symbols: Annotated[list[str], NoDecode] = Field(default_factory=list, alias="SYMBOLS")

    @field_validator("sell_offsets", "buy_offsets", mode="before")
    def parse_offsets(cls, value: str | list[object]) -> list[Decimal]:
        items: list[object]
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                parsed = json.loads(raw)
                if not isinstance(parsed, list):
                    raise ValueError("offset JSON value must be a list")
                items = parsed
            else:
                items = raw.split(",")
        else:
            items = list(value)
        try:
            return [Decimal(str(item).strip()) for item in items if str(item).strip()]
        except InvalidOperation as exc:
            raise ValueError(f"offsets must be decimals; observed={value!r}") from exc

    @field_validator("symbols", mode="before")
    def parse_symbols(cls, value: str | list[str]) -> list[str]:
        items: list[object]
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                parsed = json.loads(raw)
                if not isinstance(parsed, list):
                    raise ValueError("SYMBOLS JSON value must be a list")
                items = parsed
            else:
                items = raw.split(",")
        else:
            items = value

        normalized: list[str] = []
        seen: set[str] = set()
        for item in items:
            candidate = canonical_symbol(str(item).strip().strip('"').strip("'"))
            if not candidate or candidate in seen:
                continue
            seen.add(candidate)
            normalized.append(candidate)
        return normalized

    @field_validator("fee_rate")
    def validate_fee_rate(cls, value: Decimal) -> Decimal:
        if not Decimal("0") <= value < Decimal("1"):
            raise ValueError("FEE_RATE must be >= 0 and < 1")
        return value

    @field_validator("order_notional")
    def validate_order_notional(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("ORDER_NOTIONAL must be > 0")
        return value

    @field_validator("rebuy_discount")
    def validate_rebuy_discount(cls, value: Decimal) -> Decimal:
        if not Decimal("0") <= value < Decimal("1"):
            raise ValueError("REBUY_DISCOUNT must be >= 0 and < 1")
        return value

    @field_validator("reinvest_margin", "resell_markup")
    def validate_non_negative_ratio(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("REINVEST_MARGIN and RESELL_MARKUP must be >= 0")
        return value

    @field_validator("initial_buy_count")
    def validate_initial_buy_count(cls, value: int) -> int:
        if value < 0:
            raise ValueError("INITIAL_BUY_COUNT must be >= 0")
        return value

    @field_validator("balance_poll_attempts")
    def validate_balance_poll_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("BALANCE_POLL_ATTEMPTS must be >= 1")
        return value

    @field_validator("balance_poll_interval_seconds", "monitor_interval_seconds")
    def validate_intervals(cls, value: float) -> float:
        if value < 0:
            raise ValueError("poll intervals must be >= 0")
        return value

    @field_validator("lot_size_fallback_min_qty", "lot_size_fallback_step_size")
    def validate_lot_size_fallback(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("LOT_SIZE_FALLBACK values must be > 0")
        return value

    @field_validator("price_decimals")
    def validate_price_decimals(cls, value: int) -> int:
        if value < 0:
            raise ValueError("PRICE_DECIMALS must be >= 0")
        return value

    @field_validator("max_active_orders")
    def validate_max_active_orders(cls, value: int) -> int:
        if value < 1:
            raise ValueError("MAX_ACTIVE_ORDERS must be >= 1")
        return value

    @field_validator("http_timeout_seconds")
    def validate_http_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("HTTP_TIMEOUT_SECONDS must be > 0")
        return value

    def strategy_config(self) -> StrategyConfig:
        return StrategyConfig(
            fee_rate=self.fee_rate,
            sell_offsets=tuple(self.sell_offsets),
            buy_offsets=tuple(self.buy_offsets),
            initial_buy_count=self.initial_buy_count,
            order_notional=self.order_notional,
            reinvest_margin=self.reinvest_margin,
            rebuy_discount=self.rebuy_discount,
            resell_markup=self.resell_markup,
            balance_poll_attempts=self.balance_poll_attempts,
            balance_poll_interval_seconds=self.balance_poll_interval_seconds,
            monitor_interval_seconds=self.monitor_interval_seconds,
            lot_size_fallback_min_qty=self.lot_size_fallback_min_qty,
            lot_size_fallback_step_size=self.lot_size_fallback_step_size,
            price_decimals=self.price_decimals,
            max_active_orders=self.max_active_orders,
            version=self.strategy_config_version,
        )

    def require_credentials(self) -> tuple[str, str]:
        key = self.binance_api_key.get_secret_value() if self.binance_api_key else ""
        secret = self.binance_api_secret.get_secret_value() if self.binance_api_secret else ""
        if not key.strip() or not secret.strip():
            raise ConfigurationError(
                "BINANCE_API_KEY and BINANCE_API_SECRET must be set to trade"
            )
        return key.strip(), secret.strip()
