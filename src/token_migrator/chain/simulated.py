"""In-memory ledger and AMM for dry runs.

State lives in the process: signatures are random, every submitted transaction
confirms immediately, and withdraws return the configured reserves. Failures can
be injected per operation to rehearse recovery paths.
"""

from __future__ import annotations

import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field

from token_migrator.chain.ledger import AmmClient, Confirmation, LedgerClient, LockReceipt
from token_migrator.migration.models import PoolInfo


def _sig() -> str:
    return uuid.uuid4().hex


@dataclass
class FailureInjector:
    """Make the next N calls of an operation raise ``ConnectionError``."""

    remaining: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def fail(self, operation: str, times: int = 1) -> None:
        self.remaining[operation] += times

    def check(self, operation: str) -> None:
        if self.remaining[operation] > 0:
            self.remaining[operation] -= 1
            raise ConnectionError(f"Simulated failure: {operation}")


class SimulatedLedger(LedgerClient):
    def __init__(
        self,
        *,
        wallet: str = "SimWallet1111111111111111111111111111111111",
        reserve_lamports: int = 85_000_000_000,
        reserve_tokens: int = 200_000_000_000_000,
    ) -> None:
        self._wallet = wallet
        self.reserve_lamports = reserve_lamports
        self.reserve_tokens = reserve_tokens
        self.failures = FailureInjector()

        self.logs: dict[str, list[str]] = {}
        self.confirmation_errors: dict[str, object] = {}
        self.withdrawals: dict[str, str] = {}
        self.owners: dict[str, str] = {}
        self.vault: dict[str, str] = {}
        self.transfers: dict[str, str] = {}
        self.balances: dict[str, int] = defaultdict(int)

    @property
    def wallet_address(self) -> str:
        return self._wallet

    def _record(self, logs: list[str]) -> str:
        signature = _sig()
        self.logs[signature] = [*logs, "Program success"]
        return signature

    async def submit_withdraw(self, mint: str) -> str:
        self.failures.check("submit_withdraw")
        signature = self._record(
            [
                f"Program log: withdraw lamports: {self.reserve_lamports}",
                f"Program log: withdraw token: {self.reserve_tokens}",
            ]
        )
        self.withdrawals[mint] = signature
        self.balances[self._wallet] += self.reserve_lamports
        return signature

    async def find_withdrawal(self, mint: str) -> str | None:
        return self.withdrawals.get(mint)

    async def confirm(self, signature: str) -> Confirmation:
        self.failures.check("confirm")
        return Confirmation(signature=signature, err=self.confirmation_errors.get(signature))

    async def get_transaction_logs(self, signature: str) -> list[str] | None:
        return self.logs.get(signature)

    def mint_nft(self, owner: str) -> str:
        nft = f"nft{uuid.uuid4().hex[:20]}"
        self.owners[nft] = owner
        return nft

    async def token_owner(self, mint: str) -> str | None:
        return self.owners.get(mint)

    async def transfer_nft(self, nft_mint: str, recipient: str) -> str:
        self.failures.check("transfer_nft")
        if self.owners.get(nft_mint) != self._wallet:
            raise ValueError(f"Wallet does not own {nft_mint}")
        self.owners[nft_mint] = recipient
        return self._record([f"Program log: transfer {nft_mint}"])

    async def vault_claimer(self, nft_mint: str) -> str | None:
        return self.vault.get(nft_mint)

    async def deposit_to_vault(self, nft_mint: str, claimer: str) -> str:
        self.failures.check("deposit_to_vault")
        if self.owners.get(nft_mint) != self._wallet:
            raise ValueError(f"Wallet does not own {nft_mint}")
        self.owners[nft_mint] = "vault"
        self.vault[nft_mint] = claimer
        return self._record([f"Program log: deposit {nft_mint}"])

    async def find_transfer(self, reference: str) -> str | None:
        return self.transfers.get(reference)

    async def transfer_sol(self, lamports: int, recipient: str, *, reference: str) -> str:
        self.failures.check("transfer_sol")
        self.balances[self._wallet] -= lamports
        self.balances[recipient] += lamports
        signature = self._record([f"Program log: transfer {lamports}"])
        self.transfers[reference] = signature
        return signature


class SimulatedAmm(AmmClient):
    """AMM whose custody tokens are minted on the paired :class:`SimulatedLedger`."""

    def __init__(self, ledger: SimulatedLedger) -> None:
        self._ledger = ledger
        self.failures = FailureInjector()
        self.initialized = False
        self.pools: dict[str, PoolInfo] = {}
        self.lp_balances: dict[str, int] = defaultdict(int)
        self.locks: dict[str, list[LockReceipt]] = defaultdict(list)

    async def initialize(self) -> None:
        self.failures.check("initialize")
        self.initialized = True

    async def find_pool(self, mint: str) -> PoolInfo | None:
        return self.pools.get(mint)

    async def create_pool(
        self, mint: str, *, token_amount: int, sol_amount: int
    ) -> tuple[str, PoolInfo]:
        self.failures.check("create_pool")
        suffix = uuid.uuid4().hex[:16]
        pool = PoolInfo(
            id=f"pool{suffix}",
            lp_mint=f"lp{suffix}",
            base_vault=f"vaultA{suffix}",
            quote_vault=f"vaultB{suffix}",
        )
        self.pools[mint] = pool
        # Constant-product LP supply, rounded down.
        self.lp_balances[pool.lp_mint] = math.isqrt(token_amount * sol_amount)
        return _sig(), pool

    def _pool_by_id(self, pool_id: str) -> PoolInfo:
        for pool in self.pools.values():
            if pool.id == pool_id:
                return pool
        raise LookupError("Pool info not found")

    async def get_pool(self, pool_id: str) -> PoolInfo:
        self.failures.check("get_pool")
        return self._pool_by_id(pool_id)

    async def lp_balance(self, lp_mint: str) -> int:
        return self.lp_balances[lp_mint]

    async def lock_lp(self, pool_id: str, amount: int) -> LockReceipt:
        self.failures.check("lock_lp")
        pool = self._pool_by_id(pool_id)
        if amount <= 0 or amount > self.lp_balances[pool.lp_mint]:
            raise ValueError(f"Cannot lock {amount} LP from pool {pool_id}")
        self.lp_balances[pool.lp_mint] -= amount
        receipt = LockReceipt(
            tx_id=_sig(), nft_mint=self._ledger.mint_nft(self._ledger.wallet_address), amount=amount
        )
        self.locks[pool_id].append(receipt)
        return receipt

    async def find_locks(self, pool_id: str) -> list[LockReceipt]:
        return list(self.locks.get(pool_id, []))
