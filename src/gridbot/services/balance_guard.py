from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from decimal import Decimal

from gridbot.adapters.gateway import ExchangeGateway

logger = logging.getLogger(__name__)


class BalanceGuard:
    """Waits for a free balance to settle before a sell is placed."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        *,
        max_attempts: int = 5,
        poll_interval_seconds: float = 2.0,
        sleep_fn: Callable[[float], None] | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self.stop_event = stop_event
        self._sleep = sleep_fn

    def _pause(self, interval: float) -> bool:
        """Sleep one poll interval; False when the stop event interrupted it."""
        if self._sleep is not None:
            self._sleep(interval)
            return not (self.stop_event is not None and self.stop_event.is_set())
        if self.stop_event is not None:
            return not self.stop_event.wait(interval)
        time.sleep(interval)
        return True

    def await_balance(
        self,
        asset: str,
        min_required: Decimal,
        *,
        max_attempts: int | None = None,
        poll_interval_seconds: float | None = None,
    ) -> bool:
        attempts = self.max_attempts if max_attempts is None else max_attempts
        interval = (
            self.poll_interval_seconds if poll_interval_seconds is None else poll_interval_seconds
        )
        asset_code = asset.upper()
        last_free: Decimal | None = None
        for attempt in range(1, attempts + 1):
            result = self.gateway.balance(asset_code)
            if result.ok and result.value is not None:
                last_free = result.value.free
                if last_free >= min_required:
                    return True
            logger.info(
                "balance_not_settled",
                extra={
                    "extra": {
                        "asset": asset_code,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "free": str(last_free) if last_free is not None else None,
                        "required": str(min_required),
                        "query_failed": not result.ok,
                    }
                },
            )
            if attempt < attempts and not self._pause(interval):
                break
        logger.warning(
            "balance_guard_exhausted",
            extra={
                "extra": {
                    "asset": asset_code,
                    "required": str(min_required),
                    "free": str(last_free) if last_free is not None else None,
                }
            },
        )
        return False
