from __future__ import annotations

import argparse
import logging
import os
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from pydantic import ValidationError as SettingsValidationError

from gridbot.adapters.binance_http import BinanceHttpClient, ConfigurationError
from gridbot.adapters.exchange import ExchangeClient
from gridbot.adapters.gateway import ExchangeGateway
from gridbot.config import Settings
from gridbot.domain.models import ValidationError
from gridbot.domain.strategy import StrategyConfig
from gridbot.logging_utils import setup_logging
from gridbot.persistence.uow import UnitOfWorkFactory
from gridbot.services.balance_guard import BalanceGuard
from gridbot.services.capital_service import CapitalService
from gridbot.services.grid_service import GridLaunchError, GridLaunchService, LaunchReport
from gridbot.services.lot_size_service import LotSizeService
from gridbot.services.order_mirror_service import OrderMirrorService
from gridbot.services.order_submission import OrderSubmissionCoordinator
from gridbot.services.reinvestment_monitor import ReinvestmentMonitor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

_EXCHANGE_COMMANDS = {"launch", "monitor", "run", "orders", "fills"}


@dataclass
class Runtime:
    settings: Settings
    config: StrategyConfig
    uow_factory: UnitOfWorkFactory
    gateway: ExchangeGateway
    stop_event: threading.Event
    lot_sizes: LotSizeService
    coordinator: OrderSubmissionCoordinator
    launcher: GridLaunchService
    monitor: ReinvestmentMonitor
    mirror: OrderMirrorService

    def close(self) -> None:
        self.gateway.close()


def build_runtime(
    settings: Settings,
    *,
    client: ExchangeClient | None = None,
    sleep_fn: Callable[[float], None] | None = None,
) -> Runtime:
    config = settings.strategy_config()
    if client is None:
        api_key, api_secret = settings.require_credentials()
        client = BinanceHttpClient(
            api_key=api_key,
            api_secret=api_secret,
            timeout=settings.http_timeout_seconds,
            base_url=settings.binance_base_url,
            recv_window_ms=settings.binance_recv_window_ms,
        )
    uow_factory = UnitOfWorkFactory(settings.state_db_path)
    gateway = ExchangeGateway(client)
    stop_event = threading.Event()
    lot_sizes = LotSizeService(gateway, config, cache_ttl_sec=settings.lot_size_cache_ttl_sec)
    guard = BalanceGuard(
        gateway,
        max_attempts=config.balance_poll_attempts,
        poll_interval_seconds=config.balance_poll_interval_seconds,
        sleep_fn=sleep_fn,
        stop_event=stop_event,
    )
    coordinator = OrderSubmissionCoordinator(gateway, uow_factory, lot_sizes, guard, config)
    return Runtime(
        settings=settings,
        config=config,
        uow_factory=uow_factory,
        gateway=gateway,
        stop_event=stop_event,
        lot_sizes=lot_sizes,
        coordinator=coordinator,
        launcher=GridLaunchService(gateway, uow_factory, lot_sizes, coordinator, config),
        monitor=ReinvestmentMonitor(
            gateway, uow_factory, lot_sizes, coordinator, config, stop_event=stop_event
        ),
        mirror=OrderMirrorService(gateway, uow_factory),
    )


def _decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value.strip().replace(",", "."))
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a decimal: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gridbot",
        epilog=(
            "Credentials come from BINANCE_API_KEY / BINANCE_API_SECRET; "
            "strategy knobs from FEE_RATE, SELL_OFFSETS, BUY_OFFSETS, ORDER_NOTIONAL, ..."
        ),
    )
    parser.add_argument("--db", default=None, help="State sqlite DB path (defaults to STATE_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    set_capital = subparsers.add_parser("set-capital", help="Create or replace a capital allocation")
    set_capital.add_argument("symbol")
    set_capital.add_argument("amount", type=_decimal_arg)
    set_capital.add_argument("--min-price", type=_decimal_arg, default=Decimal("0"))
    set_capital.add_argument("--max-price", type=_decimal_arg, default=Decimal("0"))

    subparsers.add_parser("capital", help="List capital allocations")

    deactivate = subparsers.add_parser("deactivate", help="Mark a grid inactive so it can be relaunched")
    deactivate.add_argument("symbol")

    positions = subparsers.add_parser("positions", help="List recorded trades, newest first")
    positions.add_argument("--symbol", default=None)
    positions.add_argument("--last", type=int, default=None)

    remaining = subparsers.add_parser("remaining-capital", help="Show remaining capital for a symbol")
    remaining.add_argument("symbol")

    subparsers.add_parser("active-orders", help="Report recorded orders against MAX_ACTIVE_ORDERS")

    orders = subparsers.add_parser("orders", help="Refresh and print the open-order mirror")
    orders.add_argument("--symbol", default=None)

    fills = subparsers.add_parser("fills", help="Print recent account trades for a symbol")
    fills.add_argument("symbol")
    fills.add_argument("--last", type=int, default=20)

    launch = subparsers.add_parser("launch", help="Launch a grid for a symbol with an allocation")
    launch.add_argument("symbol")
    launch.add_argument("--notional", type=_decimal_arg, default=None)

    subparsers.add_parser("monitor", help="Run the reinvestment monitor in the foreground")

    run = subparsers.add_parser("run", help="Start the monitor thread, optionally launching grids")
    run.add_argument(
        "--launch",
        nargs="*",
        default=None,
        help="Symbols to launch before waiting (defaults to SYMBOLS when given without values)",
    )
    return parser


def _load_settings(db_override: str | None) -> Settings:
    settings = Settings()
    if db_override:
        settings = settings.model_copy(update={"state_db_path": db_override})
    return settings


def main(
    argv: list[str] | None = None,
    *,
    client: ExchangeClient | None = None,
    sleep_fn: Callable[[float], None] | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args.db)
    except SettingsValidationError as exc:
        print(f"Configuration error: {exc}")
        return EXIT_CONFIG
    setup_logging(settings.log_level)
    logger.info(
        "runtime_prepared",
        extra={
            "extra": {
                "command": args.command,
                "db_path": settings.state_db_path,
                "pid": os.getpid(),
            }
        },
    )

    try:
        capital = CapitalService(
            UnitOfWorkFactory(settings.state_db_path),
            max_active_orders=settings.max_active_orders,
        )
        if args.command not in _EXCHANGE_COMMANDS:
            return _run_local_command(args, capital)

        runtime = build_runtime(settings, client=client, sleep_fn=sleep_fn)
        try:
            return _run_exchange_command(args, runtime)
        finally:
            runtime.close()
    except ConfigurationError as exc:
        logger.error("configuration_error", extra={"extra": {"error": str(exc)}})
        print(f"Configuration error: {exc}")
        return EXIT_CONFIG
    except ValueError as exc:
        # invalid strategy combination surfaced by StrategyConfig
        if isinstance(exc, ValidationError):
            print(f"Invalid input: {exc}")
            return EXIT_FAILED
        print(f"Configuration error: {exc}")
        return EXIT_CONFIG
    except sqlite3.Error as exc:
        logger.error(
            "state_db_unavailable",
            extra={"extra": {"db_path": settings.state_db_path, "error_type": type(exc).__name__}},
        )
        print(f"State DB error ({settings.state_db_path}): {exc}")
        return EXIT_CONFIG


def _run_local_command(args: argparse.Namespace, capital: CapitalService) -> int:
    if args.command == "set-capital":
        allocation = capital.set_allocation(
            args.symbol, args.amount, args.min_price, args.max_price
        )
        print(
            f"{allocation.symbol} amount={allocation.amount} min_price={allocation.min_price} "
            f"max_price={allocation.max_price} active={allocation.is_active}"
        )
        return EXIT_OK

    if args.command == "capital":
        allocations = capital.list_allocations()
        if not allocations:
            print("No capital allocations.")
        for allocation in allocations:
            print(
                f"{allocation.symbol} amount={allocation.amount} "
                f"min_price={allocation.min_price} max_price={allocation.max_price} "
                f"active={allocation.is_active}"
            )
        return EXIT_OK

    if args.command == "deactivate":
        changed = capital.deactivate(args.symbol)
        print(f"{args.symbol.upper()} deactivated" if changed else f"{args.symbol.upper()} was not active")
        return EXIT_OK if changed else EXIT_FAILED

    if args.command == "positions":
        trades = capital.positions(args.symbol, limit=args.last)
        if not trades:
            print("No recorded trades.")
        for trade in trades:
            print(
                f"{trade.timestamp.isoformat()} {trade.symbol} {trade.side.ledger_label} "
                f"qty={trade.quantity} price={trade.price} "
                f"profit={trade.profit if trade.profit is not None else '-'} order_id={trade.order_id}"
            )
        return EXIT_OK

    if args.command == "remaining-capital":
        remaining = capital.remaining_capital(args.symbol)
        if remaining is None:
            print(f"No capital allocation or trades for {args.symbol.upper()}")
            return EXIT_FAILED
        print(f"{remaining.symbol} remaining={remaining.amount} source={remaining.source}")
        return EXIT_OK

    if args.command == "active-orders":
        report = capital.active_orders()
        print(
            f"buy={report.buy_count} sell={report.sell_count} total={report.total} "
            f"cap={report.max_active_orders} cap_reached={report.cap_reached}"
        )
        return EXIT_OK

    raise ValueError(f"unknown command: {args.command}")


def _print_launch_report(report: LaunchReport) -> None:
    print(
        f"{report.symbol} reference_price={report.reference_price} "
        f"step_size={report.lot_size.step_size} min_qty={report.lot_size.min_qty}"
    )
    for rung, result in report.results:
        status = "OK" if result.ok else f"FAILED ({result.reason})"
        print(
            f"  {rung.role.value:<12} {rung.side.value:<4} price={rung.price} "
            f"qty={result.quantity} order_id={result.order_id or '-'} {status}"
        )
    for skipped in report.skipped:
        print(
            f"  {skipped.role.value:<12} SKIPPED price={skipped.price} "
            f"qty={skipped.quantity} ({skipped.reason})"
        )


def _launch(runtime: Runtime, symbol: str, notional: Decimal | None = None) -> bool:
    try:
        report = runtime.launcher.launch(symbol, order_notional=notional)
    except GridLaunchError as exc:
        print(f"Launch refused for {exc.symbol}: {exc.reason}")
        return False
    _print_launch_report(report)
    return report.any_accepted


def _run_exchange_command(args: argparse.Namespace, runtime: Runtime) -> int:
    if args.command == "launch":
        return EXIT_OK if _launch(runtime, args.symbol, args.notional) else EXIT_FAILED

    if args.command == "orders":
        mirrored = runtime.mirror.refresh(args.symbol)
        if mirrored is None:
            print("Open orders could not be fetched.")
            return EXIT_FAILED
        if not mirrored:
            print("No open orders.")
        for order in mirrored:
            print(
                f"{order.timestamp.isoformat()} {order.symbol} {order.type} {order.status} "
                f"price={order.price} stop_price={order.stop_price} qty={order.quantity} "
                f"order_id={order.order_id}"
            )
        return EXIT_OK

    if args.command == "fills":
        fills = runtime.mirror.recent_fills(args.symbol)
        if fills is None:
            print("Account trades could not be fetched.")
            return EXIT_FAILED
        for fill in fills[: args.last]:
            side = "BUY" if fill.is_buyer else "SELL"
            print(
                f"{fill.time} {fill.symbol} {side} price={fill.price} qty={fill.qty} "
                f"commission={fill.commission} {fill.commission_asset} order_id={fill.order_id}"
            )
        return EXIT_OK

    if args.command == "monitor":
        try:
            runtime.monitor.run_forever(runtime.stop_event)
        except KeyboardInterrupt:
            runtime.stop_event.set()
        return EXIT_OK

    if args.command == "run":
        thread = runtime.monitor.start()
        try:
            symbols = args.launch
            if symbols is not None and not symbols:
                symbols = list(runtime.settings.symbols)
            for symbol in symbols or []:
                _launch(runtime, symbol)
            while thread.is_alive():
                thread.join(1.0)
        except KeyboardInterrupt:
            logger.info("shutdown_requested")
        finally:
            runtime.monitor.stop(timeout=runtime.config.monitor_interval_seconds)
        return EXIT_OK

    raise ValueError(f"unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
