from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from gridbot.adapters.gateway import ExchangeGateway
from gridbot.domain.grid import GridLadder, GridRung, SkippedRung, build_grid_ladder
from gridbot.domain.models import LotSize, ValidationError, normalize_symbol
from gridbot.domain.strategy import StrategyConfig
from gridbot.logging_context import with_logging_context
from gridbot.persistence.uow import UnitOfWorkFactory
from gridbot.services.lot_size_service import LotSizeService
from gridbot.services.order_submission import OrderSubmissionCoordinator, SubmissionResult

logger = logging.getLogger(__name__)


class GridLaunchError(RuntimeError):
    """Raised when a grid launch is refused before any order is placed."""

    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"grid launch refused for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


@dataclass
class LaunchReport:
    symbol: str
    reference_price: Decimal
    lot_size: LotSize
    results: list[tuple[GridRung, SubmissionResult]] = field(default_factory=list)
    skipped: list[SkippedRung] = field(default_factory=list)

    @property
    def placed(self) -> list[SubmissionResult]:
        return [result for _, result in self.results if result.ok]

    @property
    def failed(self) -> list[SubmissionResult]:
        return [result for _, result in self.results if not result.ok]

    @property
    def any_accepted(self) -> bool:
        return any(result.accepted for _, result in self.results)


class GridLaunchService:
    def __init__(
        self,
        gateway: ExchangeGateway,
        uow_factory: UnitOfWorkFactory,
        lot_sizes: LotSizeService,
        coordinator: OrderSubmissionCoordinator,
        config: StrategyConfig,
    ) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory
        self.lot_sizes = lot_sizes
        self.coordinator = coordinator
        self.config = config

    def _activate(self, symbol: str) -> None:
        with self.uow_factory() as uow:
            allocation = uow.capital.get(symbol)
            if allocation is None:
                raise GridLaunchError(symbol, "no_capital_allocation")
            if not uow.capital.try_activate(symbol):
                raise GridLaunchError(symbol, "grid_already_active")

    def _rollback_activation(self, symbol: str, reason: str) -> None:
        with self.uow_factory() as uow:
            uow.capital.deactivate(symbol)
        logger.warning("grid_activation_rolled_back", extra={"extra": {"reason": reason}})

    def launch(self, symbol: str, order_notional: Decimal | None = None) -> LaunchReport:
        pair = normalize_symbol(symbol)
        notional = self.config.order_notional if order_notional is None else order_notional
        with with_logging_context(symbol=pair):
            self._activate(pair)

            price = self.gateway.price(pair)
            if not price.ok or price.value is None:
                self._rollback_activation(pair, "price_unavailable")
                raise GridLaunchError(pair, f"price_unavailable: {price.reason}")

            lot_size = self.lot_sizes.get_lot_size(pair)
            try:
                ladder = build_grid_ladder(pair, price.value, notional, lot_size, self.config)
            except ValidationError as exc:
                self._rollback_activation(pair, "invalid_ladder")
                raise GridLaunchError(pair, f"invalid_ladder: {exc}") from exc

            report = self._submit_ladder(ladder)
            if not report.any_accepted:
                self._rollback_activation(pair, "no_order_accepted")

            logger.info(
                "grid_launched",
                extra={
                    "extra": {
                        "reference_price": str(ladder.reference_price),
                        "order_notional": str(notional),
                        "placed": len(report.placed),
                        "failed": len(report.failed),
                        "skipped": len(report.skipped),
                        "config_version": self.config.version,
                    }
                },
            )
            return report

    def _submit_ladder(self, ladder: GridLadder) -> LaunchReport:
        report = LaunchReport(
            symbol=ladder.symbol,
            reference_price=ladder.reference_price,
            lot_size=ladder.lot_size,
            skipped=list(ladder.skipped),
        )

        filled_pairs: list[int] = []
        for rung in ladder.initial_buys:
            result = self._submit(ladder, rung)
            report.results.append((rung, result))
            if result.accepted and rung.pair_index is not None:
                filled_pairs.append(rung.pair_index)

        for pair_index in filled_pairs:
            sell = ladder.paired_sell_for(pair_index)
            if sell is not None:
                report.results.append((sell, self._submit(ladder, sell)))

        for rung in ladder.extra_buys:
            report.results.append((rung, self._submit(ladder, rung)))
        return report

    def _submit(self, ladder: GridLadder, rung: GridRung) -> SubmissionResult:
        result = self.coordinator.submit(
            ladder.symbol,
            rung.side,
            rung.price,
            rung.quantity,
            rung.is_market,
            lot_size=ladder.lot_size,
        )
        if not result.ok:
            logger.warning(
                "grid_rung_failed",
                extra={
                    "extra": {
                        "role": rung.role.value,
                        "price": str(rung.price),
                        "quantity": str(rung.quantity),
                        "reason": result.reason,
                    }
                },
            )
        return result
