"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from token_migrator.config import MigratorSettings
from token_migrator.migration.lock import MigrationLockManager
from token_migrator.migration.models import TokenPatch, TokenRecord, WithdrawnAmounts
from token_migrator.migration.orchestrator import TokenMigrator
from token_migrator.migration.scheduler import ScheduledFn, Scheduler
from token_migrator.migration.steps import StepRegistry, StepResult, build_migration_steps
from token_migrator.notify.publisher import Publisher
from token_migrator.notify.registration import Registrar
from token_migrator.store.token_store import JsonTokenStore

MINT = "Mint1111111111111111111111111111111111111111"
CREATOR = "Creator111111111111111111111111111111111111"
MANAGER_MULTISIG = "Manager11111111111111111111111111111111111"
FEE_MULTISIG = "FeeMs111111111111111111111111111111111111111"


@dataclass
class RecordingScheduler(Scheduler):
    """Scheduler that queues callbacks until the test runs them."""

    scheduled: list[tuple[float, ScheduledFn, str]] = field(default_factory=list)
    history: list[str] = field(default_factory=list)

    def schedule_once(self, delay_seconds: float, fn: ScheduledFn, *, name: str = "") -> None:
        self.scheduled.append((delay_seconds, fn, name))
        self.history.append(name)

    async def run_all(self, max_runs: int = 50) -> int:
        runs = 0
        while self.scheduled:
            if runs >= max_runs:
                raise AssertionError("scheduler did not settle")
            _, fn, _ = self.scheduled.pop(0)
            await fn()
            runs += 1
        return runs


class RecordingPublisher(Publisher):
    def __init__(self, *, fail: bool = False) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []
        self.fail = fail

    async def publish(self, room: str, event_name: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("publisher down")
        self.events.append((room, event_name, payload))

    @property
    def event_names(self) -> list[str]:
        return [name for _, name, _ in self.events]


class RecordingRegistrar(Registrar):
    def __init__(self, *, fail: bool = False) -> None:
        self.registered: list[str] = []
        self.fail = fail

    async def register(self, mint: str) -> None:
        if self.fail:
            raise ValueError("missing CODEX_WEBHOOK_AUTH_TOKEN")
        self.registered.append(mint)


class FakeSteps:
    """Step bodies that record calls and fail on demand."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failures: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.yield_control = False

    def fail(self, step: str, times: int) -> None:
        self.failures[step] = times

    async def _run(self, step: str) -> None:
        self.calls.append(step)
        if step in self.hooks:
            self.hooks[step]()
        if self.yield_control or step in self.delays:
            await asyncio.sleep(self.delays.get(step, 0))
        if self.failures.get(step, 0) > 0:
            self.failures[step] -= 1
            raise RuntimeError(f"{step} failed")

    async def withdraw(self, token: TokenRecord) -> StepResult:
        await self._run("withdraw")
        return StepResult(
            tx_id="tx-withdraw",
            extra_data=TokenPatch(
                withdrawn_amounts=WithdrawnAmounts(withdrawn_sol=85, withdrawn_tokens=200)
            ),
        )

    async def create_pool(self, token: TokenRecord) -> StepResult:
        await self._run("createPool")
        return StepResult(tx_id="tx-pool", extra_data=TokenPatch(market_id="pool-1"))

    async def lock_lp(self, token: TokenRecord) -> StepResult:
        await self._run("lockLP")
        return StepResult(
            tx_id="tx-lock-a,tx-lock-b",
            extra_data=TokenPatch(
                lock_lp_tx_id="tx-lock-a,tx-lock-b", nft_minted="nft-a,nft-b", locked_amount="100"
            ),
        )

    async def send_nft(self, token: TokenRecord) -> StepResult:
        await self._run("sendNft")
        return StepResult(tx_id="tx-send")

    async def deposit_nft(self, token: TokenRecord) -> StepResult:
        await self._run("depositNft")
        return StepResult(tx_id="tx-deposit")

    async def finalize(self, token: TokenRecord) -> StepResult:
        await self._run("finalize")
        return StepResult(tx_id="finalized")

    async def collect_fees(self, token: TokenRecord) -> StepResult:
        await self._run("collectFees")
        return StepResult(tx_id="tx-fee")


@pytest.fixture
def settings(tmp_path: Path) -> MigratorSettings:
    return MigratorSettings(
        _env_file=None,
        token_state_path=tmp_path / "state" / "tokens.json",
        step_retries=3,
        step_retry_delay_seconds=0,
        reschedule_delay_seconds=0,
        max_attempts=0,
        instance_id="test-worker",
        sweep_interval_seconds=0,
        manager_multisig_address=MANAGER_MULTISIG,
        fee_multisig_address=FEE_MULTISIG,
    )


@pytest.fixture
def store(settings: MigratorSettings) -> JsonTokenStore:
    return JsonTokenStore(settings.token_state_path)


@pytest.fixture
def token(store: JsonTokenStore) -> TokenRecord:
    return store.create(TokenRecord(mint=MINT, creator=CREATOR))


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def registrar() -> RecordingRegistrar:
    return RecordingRegistrar()


@pytest.fixture
def fake_steps() -> FakeSteps:
    return FakeSteps()


@pytest.fixture
def migrator(
    store: JsonTokenStore,
    scheduler: RecordingScheduler,
    publisher: RecordingPublisher,
    registrar: RecordingRegistrar,
    fake_steps: FakeSteps,
) -> TokenMigrator:
    return TokenMigrator(
        store=store,
        registry=StepRegistry(build_migration_steps(fake_steps)),
        lock_manager=MigrationLockManager(store, owner="test-worker", lease_seconds=600),
        publisher=publisher,
        registrar=registrar,
        scheduler=scheduler,
        step_retries=3,
        step_retry_delay_seconds=0,
        reschedule_delay_seconds=0,
    )
