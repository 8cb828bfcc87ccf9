"""Unit tests for transaction confirmation handling."""

from __future__ import annotations

import pytest

from token_migrator.chain.outcomes import (
    AmbiguousOutcomeError,
    TransactionFailedError,
    confirm_transaction,
    is_ambiguous_error,
)
from token_migrator.chain.simulated import SimulatedLedger
from token_migrator.migration.steps import MigrationError

AMBIGUOUS = {"InstructionError": [0, "ProgramFailedToComplete"]}


def test_is_ambiguous_error() -> None:
    assert is_ambiguous_error("ProgramFailedToComplete")
    assert is_ambiguous_error(AMBIGUOUS)
    assert not is_ambiguous_error({"InstructionError": [0, {"Custom": 6001}]})


@pytest.mark.asyncio
async def test_clean_confirmation_returns_logs() -> None:
    ledger = SimulatedLedger()
    signature = await ledger.submit_withdraw("MintA")

    logs = await confirm_transaction(ledger, signature)

    assert logs[-1] == "Program success"


@pytest.mark.asyncio
async def test_ambiguous_error_with_success_marker_is_success() -> None:
    ledger = SimulatedLedger()
    signature = await ledger.submit_withdraw("MintA")
    ledger.confirmation_errors[signature] = AMBIGUOUS

    logs = await confirm_transaction(ledger, signature)

    assert any("withdraw lamports" in line for line in logs)


@pytest.mark.asyncio
async def test_ambiguous_error_without_success_marker_fails() -> None:
    ledger = SimulatedLedger()
    signature = await ledger.submit_withdraw("MintA")
    ledger.confirmation_errors[signature] = AMBIGUOUS
    ledger.logs[signature] = ["Program log: withdraw lamports: 1"]

    with pytest.raises(AmbiguousOutcomeError) as excinfo:
        await confirm_transaction(ledger, signature)

    assert excinfo.value.signature == signature
    assert isinstance(excinfo.value, MigrationError)


@pytest.mark.asyncio
async def test_other_errors_fail() -> None:
    ledger = SimulatedLedger()
    signature = await ledger.submit_withdraw("MintA")
    ledger.confirmation_errors[signature] = {"InstructionError": [0, {"Custom": 6001}]}

    with pytest.raises(TransactionFailedError) as excinfo:
        await confirm_transaction(ledger, signature)

    assert not isinstance(excinfo.value, AmbiguousOutcomeError)
    assert "6001" in str(excinfo.value)
