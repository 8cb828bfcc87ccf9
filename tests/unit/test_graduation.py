"""Unit tests for the graduation step implementations against the simulated chain."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock

import pytest

from token_migrator.chain.graduation import GraduationSteps, parse_withdraw_logs
from token_migrator.chain.simulated import SimulatedAmm, SimulatedLedger
from token_migrator.config import MigratorSettings
from token_migrator.migration.models import TokenRecord, WithdrawnAmounts

SOL = 1_000_000_000


@pytest.fixture
def ledger() -> SimulatedLedger:
    return SimulatedLedger(reserve_lamports=85 * SOL, reserve_tokens=200_000_000_000_000)


@pytest.fixture
def amm(ledger: SimulatedLedger) -> SimulatedAmm:
    return SimulatedAmm(ledger)


@pytest.fixture
def reporter() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def steps(
    ledger: SimulatedLedger, amm: SimulatedAmm, settings: MigratorSettings, reporter: AsyncMock
) -> GraduationSteps:
    return GraduationSteps(
        ledger=ledger,
        amm=amm,
        settings=settings,
        reporter=reporter,
        amm_init_backoff_seconds=0,
        pool_lookup_delay_seconds=0,
        lock_retry_delay_seconds=0,
    )


def _apply(token: TokenRecord, result) -> None:
    if result.extra_data is not None:
        for name, value in result.extra_data.fields().items():
            setattr(token, name, value)


def test_parse_withdraw_logs() -> None:
    amounts = parse_withdraw_logs(
        [
            "Program invoke [1]",
            "Program log: withdraw lamports: 85000000000",
            "Program log: withdraw token: 200000000000000",
            "Program success",
        ]
    )
    assert amounts == WithdrawnAmounts(
        withdrawn_sol=85_000_000_000, withdrawn_tokens=200_000_000_000_000
    )
    assert parse_withdraw_logs([]) == WithdrawnAmounts()


@pytest.mark.asyncio
async def test_withdraw_records_amounts_and_reports(
    steps: GraduationSteps, ledger: SimulatedLedger, token: TokenRecord, reporter: AsyncMock
) -> None:
    result = await steps.withdraw(token)

    assert result.tx_id == ledger.withdrawals[token.mint]
    assert result.extra_data.withdrawn_amounts == WithdrawnAmounts(
        withdrawn_sol=85 * SOL, withdrawn_tokens=200_000_000_000_000
    )
    reporter.report.assert_awaited_once()
    assert reporter.report.await_args.kwargs["step"] == "withdraw"


@pytest.mark.asyncio
async def test_withdraw_is_not_resubmitted(
    steps: GraduationSteps, ledger: SimulatedLedger, token: TokenRecord
) -> None:
    first = await steps.withdraw(token)
    second = await steps.withdraw(token)

    assert first.tx_id == second.tx_id
    assert ledger.balances[ledger.wallet_address] == 85 * SOL


@pytest.mark.asyncio
async def test_create_pool_requires_withdrawn_amounts(
    steps: GraduationSteps, token: TokenRecord
) -> None:
    with pytest.raises(ValueError, match="No withdrawn amounts"):
        await steps.create_pool(token)


@pytest.mark.asyncio
async def test_create_pool_keeps_fixed_fee_out_of_liquidity(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord, settings: MigratorSettings
) -> None:
    _apply(token, await steps.withdraw(token))

    result = await steps.create_pool(token)

    pool = amm.pools[token.mint]
    assert result.extra_data.market_id == pool.id
    assert result.extra_data.pool_info == pool
    expected_sol = 85 * SOL - settings.fixed_fee_lamports
    assert amm.lp_balances[pool.lp_mint] == math.isqrt(200_000_000_000_000 * expected_sol)


@pytest.mark.asyncio
async def test_create_pool_reuses_existing_pool(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord
) -> None:
    _apply(token, await steps.withdraw(token))
    first = await steps.create_pool(token)

    second = await steps.create_pool(token)

    assert len(amm.pools) == 1
    assert second.tx_id == f"existing:{first.extra_data.market_id}"
    assert second.extra_data.market_id == first.extra_data.market_id


@pytest.mark.asyncio
async def test_create_pool_rejects_reserves_below_fee(
    steps: GraduationSteps, token: TokenRecord
) -> None:
    token.withdrawn_amounts = WithdrawnAmounts(withdrawn_sol=SOL, withdrawn_tokens=1_000)

    with pytest.raises(ValueError, match="does not cover the fixed fee"):
        await steps.create_pool(token)


@pytest.mark.asyncio
async def test_create_pool_retries_amm_initialisation(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord
) -> None:
    _apply(token, await steps.withdraw(token))
    amm.failures.fail("initialize", 2)

    await steps.create_pool(token)

    assert amm.initialized is True


async def _through_pool(steps: GraduationSteps, token: TokenRecord) -> None:
    _apply(token, await steps.withdraw(token))
    _apply(token, await steps.create_pool(token))


@pytest.mark.asyncio
async def test_lock_lp_splits_balance_into_two_locks(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord
) -> None:
    await _through_pool(steps, token)
    total = amm.lp_balances[token.pool_info.lp_mint]

    result = await steps.lock_lp(token)

    primary, secondary = amm.locks[token.market_id]
    assert primary.amount == total * 90 // 100
    assert secondary.amount == total * 10 // 100
    assert result.tx_id == f"{primary.tx_id},{secondary.tx_id}"
    assert result.extra_data.lock_lp_tx_id == result.tx_id
    assert result.extra_data.nft_minted == f"{primary.nft_mint},{secondary.nft_mint}"
    assert result.extra_data.locked_amount == str(total)


@pytest.mark.asyncio
async def test_lock_lp_survives_transient_failures(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord
) -> None:
    await _through_pool(steps, token)
    amm.failures.fail("get_pool", 2)
    amm.failures.fail("lock_lp", 3)

    await steps.lock_lp(token)

    assert len(amm.locks[token.market_id]) == 2


@pytest.mark.asyncio
async def test_lock_lp_after_partial_lock_only_adds_secondary(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord
) -> None:
    await _through_pool(steps, token)
    total = amm.lp_balances[token.pool_info.lp_mint]
    first = await amm.lock_lp(token.market_id, total * 90 // 100)

    result = await steps.lock_lp(token)

    locks = amm.locks[token.market_id]
    assert len(locks) == 2
    assert locks[0] == first
    assert locks[1].amount == total - first.amount
    assert result.extra_data.locked_amount == str(total)


@pytest.mark.asyncio
async def test_lock_lp_reuses_complete_locks(
    steps: GraduationSteps, amm: SimulatedAmm, token: TokenRecord
) -> None:
    await _through_pool(steps, token)
    first = await steps.lock_lp(token)

    second = await steps.lock_lp(token)

    assert len(amm.locks[token.market_id]) == 2
    assert second.tx_id == first.tx_id
    assert second.extra_data.nft_minted == first.extra_data.nft_minted


@pytest.mark.asyncio
async def test_lock_lp_requires_pool(steps: GraduationSteps, token: TokenRecord) -> None:
    with pytest.raises(ValueError, match="No pool id"):
        await steps.lock_lp(token)


@pytest.mark.asyncio
async def test_custody_tokens_are_distributed(
    steps: GraduationSteps,
    ledger: SimulatedLedger,
    token: TokenRecord,
    settings: MigratorSettings,
) -> None:
    await _through_pool(steps, token)
    _apply(token, await steps.lock_lp(token))
    primary, secondary = token.custody_tokens()

    sent = await steps.send_nft(token)
    deposited = await steps.deposit_nft(token)

    assert ledger.owners[secondary] == settings.manager_multisig_address
    assert ledger.vault[primary] == token.creator
    assert sent.tx_id in ledger.logs
    assert deposited.tx_id in ledger.logs

    assert (await steps.send_nft(token)).tx_id == "already_sent"
    assert (await steps.deposit_nft(token)).tx_id == "already_deposited"


@pytest.mark.asyncio
async def test_send_nft_requires_multisig(
    ledger: SimulatedLedger, amm: SimulatedAmm, token: TokenRecord, settings: MigratorSettings
) -> None:
    steps = GraduationSteps(
        ledger=ledger,
        amm=amm,
        settings=settings.model_copy(update={"manager_multisig_address": ""}),
        reporter=AsyncMock(),
    )
    token.nft_minted = "nft-a,nft-b"

    with pytest.raises(ValueError, match="MANAGER_MULTISIG_ADDRESS"):
        await steps.send_nft(token)


@pytest.mark.asyncio
async def test_finalize(steps: GraduationSteps, token: TokenRecord, reporter: AsyncMock) -> None:
    result = await steps.finalize(token)

    assert result.tx_id == "finalized"
    assert result.extra_data is None
    assert reporter.report.await_args.kwargs["step"] == "finalize"


@pytest.mark.asyncio
async def test_collect_fees_transfers_once(
    steps: GraduationSteps, ledger: SimulatedLedger, token: TokenRecord, settings: MigratorSettings
) -> None:
    first = await steps.collect_fees(token)
    second = await steps.collect_fees(token)

    assert first.tx_id == second.tx_id
    assert ledger.balances[settings.fee_multisig_address] == 6 * SOL


@pytest.mark.asyncio
async def test_collect_fees_without_fee(
    ledger: SimulatedLedger, amm: SimulatedAmm, token: TokenRecord, settings: MigratorSettings
) -> None:
    steps = GraduationSteps(
        ledger=ledger,
        amm=amm,
        settings=settings.model_copy(update={"fixed_fee_sol": 0}),
        reporter=AsyncMock(),
    )

    result = await steps.collect_fees(token)

    assert result.tx_id == "no_fee"
    assert ledger.transfers == {}
