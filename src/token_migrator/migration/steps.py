"""The fixed graduation step sequence.

The sequence is linear and compiled in: a pool cannot be locked before it
exists and custody tokens cannot be distributed before the lock mints them.
Changing it means redeploying the migrator.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from token_migrator.migration.models import DONE, TokenPatch, TokenRecord


class MigrationError(Exception):
    """Base class for migration engine errors."""


class UnknownStepError(MigrationError, ValueError):
    """The persisted checkpoint names a step the registry does not have."""


@dataclass(frozen=True, slots=True)
class StepResult:
    tx_id: str
    extra_data: TokenPatch | None = None


MigrationStepFn = Callable[[TokenRecord], Awaitable[StepResult]]


@dataclass(frozen=True, slots=True)
class MigrationStep:
    name: str
    fn: MigrationStepFn
    event_name: str | None = None
    description: str = ""


class StepImplementations(Protocol):
    """External-call adapters backing each step.

    Every method must be safe to call again after a crash: check externally
    observable state before re-submitting a transaction.
    """

    async def withdraw(self, token: TokenRecord) -> StepResult: ...

    async def create_pool(self, token: TokenRecord) -> StepResult: ...

    async def lock_lp(self, token: TokenRecord) -> StepResult: ...

    async def send_nft(self, token: TokenRecord) -> StepResult: ...

    async def deposit_nft(self, token: TokenRecord) -> StepResult: ...

    async def finalize(self, token: TokenRecord) -> StepResult: ...

    async def collect_fees(self, token: TokenRecord) -> StepResult: ...


def build_migration_steps(impl: StepImplementations) -> list[MigrationStep]:
    return [
        MigrationStep(
            name="withdraw",
            event_name="migrationStarted",
            fn=impl.withdraw,
            description="Withdraw curve reserves",
        ),
        MigrationStep(
            name="createPool",
            event_name="poolCreated",
            fn=impl.create_pool,
            description="Create the AMM pool",
        ),
        MigrationStep(
            name="lockLP",
            event_name="lpLocked",
            fn=impl.lock_lp,
            description="Lock LP tokens into two custody tokens",
        ),
        MigrationStep(
            name="sendNft",
            fn=impl.send_nft,
            description="Send the secondary custody token to the manager multisig",
        ),
        MigrationStep(
            name="depositNft",
            event_name="nftDeposited",
            fn=impl.deposit_nft,
            description="Deposit the primary custody token into the vault for the creator",
        ),
        MigrationStep(
            name="finalize",
            fn=impl.finalize,
            description="Report the migration as finalized",
        ),
        MigrationStep(
            name="collectFees",
            event_name="feesCollected",
            fn=impl.collect_fees,
            description="Collect the protocol fee",
        ),
    ]


class StepRegistry:
    """Ordered, immutable view over the migration steps.

    Transitions are an explicit ``name -> next step`` table built once from the
    sequence; the last step maps to None (terminal).
    """

    def __init__(self, steps: Sequence[MigrationStep]) -> None:
        if not steps:
            raise ValueError("At least one migration step is required")
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names: {names}")
        if DONE in names:
            raise ValueError(f"{DONE!r} is reserved for the terminal checkpoint")

        self._steps: tuple[MigrationStep, ...] = tuple(steps)
        self._by_name: dict[str, MigrationStep] = {s.name: s for s in self._steps}
        self._next: dict[str, MigrationStep | None] = {
            s.name: (self._steps[i + 1] if i + 1 < len(self._steps) else None)
            for i, s in enumerate(self._steps)
        }

    @property
    def steps(self) -> tuple[MigrationStep, ...]:
        return self._steps

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._steps]

    @property
    def first(self) -> MigrationStep:
        return self._steps[0]

    def get(self, name: str) -> MigrationStep:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownStepError(f"Unknown migration step: {name!r}") from None

    def next_after(self, step: MigrationStep) -> MigrationStep | None:
        return self._next[step.name]

    def is_last(self, step: MigrationStep) -> bool:
        return self._next[step.name] is None

    def position(self, checkpoint: str | None) -> int:
        """Registry position of a checkpoint; DONE sorts after every step."""

        if checkpoint is None:
            return 0
        if checkpoint == DONE:
            return len(self._steps)
        return self.names.index(self.get(checkpoint).name)

    def resume(self, checkpoint: str | None) -> MigrationStep | None:
        """Resolve the step to run next from a persisted checkpoint.

        Returns None when the checkpoint is terminal.
        """

        if checkpoint is None:
            return self.first
        if checkpoint == DONE:
            return None
        return self.get(checkpoint)
