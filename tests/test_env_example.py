from __future__ import annotations

from decimal import Decimal
from pathlib import Path

from gridbot.config import Settings

ENV_EXAMPLE = Path(__file__).resolve().parents[1] / ".env.example"

EXPECTED_KEYS = {
    "BINANCE_API_KEY",
    "BINANCE_API_SECRET",
    "BINANCE_BASE_URL",
    "STATE_DB_PATH",
    "LOG_LEVEL",
    "FEE_RATE",
    "SELL_OFFSETS",
    "BUY_OFFSETS",
    "INITIAL_BUY_COUNT",
    "ORDER_NOTIONAL",
    "REINVEST_MARGIN",
    "REBUY_DISCOUNT",
    "RESELL_MARKUP",
    "BALANCE_POLL_ATTEMPTS",
    "BALANCE_POLL_INTERVAL_SECONDS",
    "MONITOR_INTERVAL_SECONDS",
    "MAX_ACTIVE_ORDERS",
    "SYMBOLS",
}


def _env_lines() -> list[str]:
    return [
        line.strip()
        for line in ENV_EXAMPLE.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


def test_env_example_is_multiline_and_key_value() -> None:
    lines = _env_lines()

    assert len(lines) > 1
    assert all("=" in line for line in lines)
    keys = {line.split("=", 1)[0] for line in lines}
    assert EXPECTED_KEYS.issubset(keys)


def test_env_example_values_load_into_settings(monkeypatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env.live"
    env_file.write_text(ENV_EXAMPLE.read_text(encoding="utf-8"), encoding="utf-8")

    monkeypatch.chdir(tmp_path)
    for key in EXPECTED_KEYS:
        monkeypatch.delenv(key, raising=False)

    settings = Settings(_env_file=str(env_file))

    assert settings.binance_base_url == "https://api.binance.com"
    assert settings.state_db_path == "gridbot_state.db"
    assert settings.sell_offsets == [Decimal("0.05"), Decimal("0.10"), Decimal("0.15")]
    assert settings.buy_offsets == [Decimal("-0.05"), Decimal("-0.10")]
    assert settings.symbols == ["LTCUSDC"]
    assert settings.log_level == "INFO"
    assert settings.strategy_config().initial_buy_count == 3
