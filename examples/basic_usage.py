#!/usr/bin/env python3
"""Programmatic dry-run migration example.

This demonstrates using the migration engine directly:

* load settings from `.env`
* register a token in the local JSON store
* inject a transient AMM failure
* drive the token through every graduation step on the simulated chain

The injected failure makes the first `createPool` invocation fail; the
orchestrator records the attempt, reschedules itself and resumes from the
checkpoint without repeating the withdraw.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Sequence

from token_migrator.chain.simulated import SimulatedAmm, SimulatedLedger
from token_migrator.config import MigratorSettings
from token_migrator.logging import configure_logging
from token_migrator.migration.factory import build_token_migrator
from token_migrator.migration.models import TokenRecord
from token_migrator.migration.scheduler import AsyncioScheduler


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Dry-run a token graduation (programmatic example)."
    )
    parser.add_argument("--mint", default="DemoMint1111111111111111111111111111111111", help="Mint")
    parser.add_argument(
        "--creator", default="DemoCreator11111111111111111111111111111111", help="Creator wallet"
    )
    parser.add_argument(
        "--fail-pool-creations",
        type=int,
        default=3,
        help="Number of injected AMM pool-creation failures (one full invocation is 3)",
    )
    return parser.parse_args(argv)


async def _run(settings: MigratorSettings, args: argparse.Namespace) -> TokenRecord | None:
    ledger = SimulatedLedger()
    amm = SimulatedAmm(ledger)
    amm.failures.fail("create_pool", args.fail_pool_creations)

    scheduler = AsyncioScheduler()
    migrator = build_token_migrator(settings, ledger=ledger, amm=amm, scheduler=scheduler)
    try:
        if migrator.store.get(args.mint) is None:
            migrator.store.create(TokenRecord(mint=args.mint, creator=args.creator))

        await migrator.handle_curve_completed(args.mint)
        await scheduler.join()
        return migrator.store.get(args.mint)
    finally:
        migrator.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = MigratorSettings()
    settings = settings.model_copy(
        update={
            "step_retry_delay_seconds": 0.1,
            "reschedule_delay_seconds": 0.1,
            "manager_multisig_address": settings.manager_multisig_address or "DemoManager111",
            "fee_multisig_address": settings.fee_multisig_address or "DemoFeeMultisig111",
        }
    )
    configure_logging(settings.log_level)

    record = asyncio.run(_run(settings, args))
    if record is None:
        return 1

    print(json.dumps(record.model_dump(mode="json"), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
