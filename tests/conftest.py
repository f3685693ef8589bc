from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

import pytest

from gridbot.adapters.gateway import ExchangeGateway
from gridbot.config import Settings
from gridbot.domain.models import LotSize
from gridbot.domain.strategy import StrategyConfig
from gridbot.persistence.uow import UnitOfWorkFactory
from gridbot.services.balance_guard import BalanceGuard
from gridbot.services.lot_size_service import LotSizeService
from gridbot.services.order_submission import OrderSubmissionCoordinator
from fakes import FakeExchange


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys or key in {"HTTPX_LOG_LEVEL", "HTTPCORE_LOG_LEVEL"}:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def isolate_default_state_db_per_test(
    isolate_settings_from_host_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    del isolate_settings_from_host_env
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "gridbot_state.sqlite"))


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange(
        prices={"LTCUSDC": Decimal("80")},
        lot_sizes={"LTCUSDC": LotSize(min_qty=Decimal("0.01"), step_size=Decimal("0.01"))},
    )


@pytest.fixture
def strategy_config() -> StrategyConfig:
    return StrategyConfig(balance_poll_interval_seconds=0.0, monitor_interval_seconds=0.0)


@pytest.fixture
def uow_factory(tmp_path: Path) -> UnitOfWorkFactory:
    return UnitOfWorkFactory(str(tmp_path / "state.sqlite"))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def gateway(fake_exchange: FakeExchange) -> ExchangeGateway:
    return ExchangeGateway(fake_exchange)


@pytest.fixture
def lot_sizes(gateway: ExchangeGateway, strategy_config: StrategyConfig) -> LotSizeService:
    return LotSizeService(gateway, strategy_config)


@pytest.fixture
def balance_guard(
    gateway: ExchangeGateway, strategy_config: StrategyConfig, sleeps: list[float]
) -> BalanceGuard:
    return BalanceGuard(
        gateway,
        max_attempts=strategy_config.balance_poll_attempts,
        poll_interval_seconds=strategy_config.balance_poll_interval_seconds,
        sleep_fn=sleeps.append,
    )


@pytest.fixture
def coordinator(
    gateway: ExchangeGateway,
    uow_factory: UnitOfWorkFactory,
    lot_sizes: LotSizeService,
    balance_guard: BalanceGuard,
    strategy_config: StrategyConfig,
) -> OrderSubmissionCoordinator:
    return OrderSubmissionCoordinator(
        gateway, uow_factory, lot_sizes, balance_guard, strategy_config
    )
