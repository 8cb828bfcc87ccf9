"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from token_migrator.config import MigratorSettings

ENV_VARS = [
    "LOG_LEVEL",
    "MIGRATOR_TOKEN_STATE_PATH",
    "FIXED_FEE",
    "PRIMARY_LOCK_PERCENTAGE",
    "SECONDARY_LOCK_PERCENTAGE",
    "MANAGER_MULTISIG_ADDRESS",
    "ACCOUNT_FEE_MULTISIG",
    "MIGRATOR_MAX_ATTEMPTS",
    "MIGRATOR_INSTANCE_ID",
]


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults() -> None:
    settings = MigratorSettings()

    assert settings.token_state_path == Path("migrator_state/tokens.json")
    assert settings.step_retries == 3
    assert settings.step_retry_delay_seconds == 2.0
    assert settings.reschedule_delay_seconds == 10.0
    assert settings.max_attempts == 25
    assert settings.primary_lock_percentage == 90
    assert settings.secondary_lock_percentage == 10
    assert settings.fixed_fee_lamports == 6_000_000_000
    assert settings.instance_id.startswith("migrator-")


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "FIXED_FEE=0.5",
                "MANAGER_MULTISIG_ADDRESS=Manager111",
                "ACCOUNT_FEE_MULTISIG=FeeMs111",
                "MIGRATOR_MAX_ATTEMPTS=0",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = MigratorSettings()

    assert settings.log_level == "DEBUG"
    assert settings.fixed_fee_lamports == 500_000_000
    assert settings.manager_multisig_address == "Manager111"
    assert settings.fee_multisig_address == "FeeMs111"
    assert settings.max_attempts == 0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIGRATOR_INSTANCE_ID", "worker-7")
    monkeypatch.setenv("FIXED_FEE", "0")

    settings = MigratorSettings()

    assert settings.instance_id == "worker-7"
    assert settings.fixed_fee_lamports == 0


def test_lock_percentages_must_sum_to_100(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PRIMARY_LOCK_PERCENTAGE", "80")
    monkeypatch.setenv("SECONDARY_LOCK_PERCENTAGE", "10")

    with pytest.raises(ValidationError, match="sum to 100"):
        MigratorSettings()


def test_parsed_cors_origins() -> None:
    settings = MigratorSettings(cors_origins=" http://a.local, ,http://b.local ")

    assert settings.parsed_cors_origins() == ["http://a.local", "http://b.local"]
