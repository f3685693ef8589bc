from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal

from gridbot.adapters.gateway import ExchangeGateway
from gridbot.domain.models import LotSize, normalize_symbol
from gridbot.domain.strategy import StrategyConfig

logger = logging.getLogger(__name__)


@dataclass
class _CachedLotSize:
    lot_size: LotSize
    cached_at: datetime


@dataclass(frozen=True)
class LotSizeResolution:
    symbol: str
    status: Literal["ok", "fallback"]
    lot_size: LotSize
    reason: str | None = None


class LotSizeService:
    """Resolves LOT_SIZE rules per symbol, degrading to configured defaults on failure."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        config: StrategyConfig,
        *,
        cache_ttl_sec: int = 300,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.cache_ttl_sec = max(1, cache_ttl_sec)
        self._now = now_fn or (lambda: datetime.now(UTC))
        self._cache: dict[str, _CachedLotSize] = {}

    def _fallback(self) -> LotSize:
        return LotSize(
            min_qty=self.config.lot_size_fallback_min_qty,
            step_size=self.config.lot_size_fallback_step_size,
        )

    def resolve(self, symbol: str) -> LotSizeResolution:
        key = normalize_symbol(symbol)
        now = self._now()
        cached = self._cache.get(key)
        if cached and (now - cached.cached_at) < timedelta(seconds=self.cache_ttl_sec):
            return LotSizeResolution(symbol=key, status="ok", lot_size=cached.lot_size)

        result = self.gateway.lot_size(key)
        if result.ok and result.value is not None and result.value.step_size > 0:
            self._cache[key] = _CachedLotSize(lot_size=result.value, cached_at=now)
            return LotSizeResolution(symbol=key, status="ok", lot_size=result.value)

        fallback = self._fallback()
        reason = result.reason or "non_positive_step_size"
        # not cached so the next call retries the exchange
        logger.warning(
            "lot_size_fallback_used",
            extra={
                "extra": {
                    "symbol": key,
                    "reason": reason,
                    "min_qty": str(fallback.min_qty),
                    "step_size": str(fallback.step_size),
                }
            },
        )
        return LotSizeResolution(symbol=key, status="fallback", lot_size=fallback, reason=reason)

    def get_lot_size(self, symbol: str) -> LotSize:
        return self.resolve(symbol).lot_size
