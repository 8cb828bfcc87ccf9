"""Collaborator contracts for the ledger and the AMM.

The migrator never builds transactions itself. Concrete clients wrap an RPC
node and the AMM SDK; the engine and step implementations only depend on these
abstract bases.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from token_migrator.migration.models import PoolInfo


@dataclass(frozen=True, slots=True)
class Confirmation:
    """Result of waiting for a transaction to confirm.

    ``err`` is None on success, otherwise the error as reported by the node
    (a string code or a structured value).
    """

    signature: str
    err: object | None = None


@dataclass(frozen=True, slots=True)
class LockReceipt:
    tx_id: str
    nft_mint: str
    amount: int = 0


class LedgerClient(ABC):
    """Ledger operations used by the graduation steps."""

    @property
    @abstractmethod
    def wallet_address(self) -> str:
        """Address of the migrator's signing wallet."""

    @abstractmethod
    async def submit_withdraw(self, mint: str) -> str:
        """Sign and send the curve withdraw transaction; return its signature."""

    @abstractmethod
    async def find_withdrawal(self, mint: str) -> str | None:
        """Signature of a withdraw that already landed for ``mint``, if any."""

    @abstractmethod
    async def confirm(self, signature: str) -> Confirmation:
        """Wait (bounded) for ``signature`` to reach confirmed commitment."""

    @abstractmethod
    async def get_transaction_logs(self, signature: str) -> list[str] | None:
        """Program log lines recorded for ``signature``, or None if unknown."""

    @abstractmethod
    async def token_owner(self, mint: str) -> str | None:
        """Current owner of a single-supply token (custody token)."""

    @abstractmethod
    async def transfer_nft(self, nft_mint: str, recipient: str) -> str:
        """Transfer a custody token; return the signature."""

    @abstractmethod
    async def vault_claimer(self, nft_mint: str) -> str | None:
        """Claimer recorded by the vault for a deposited custody token, if deposited."""

    @abstractmethod
    async def deposit_to_vault(self, nft_mint: str, claimer: str) -> str:
        """Deposit a custody token into the fee vault on behalf of ``claimer``."""

    @abstractmethod
    async def find_transfer(self, reference: str) -> str | None:
        """Signature of a SOL transfer previously sent with ``reference``, if any."""

    @abstractmethod
    async def transfer_sol(self, lamports: int, recipient: str, *, reference: str) -> str:
        """Send ``lamports`` to ``recipient`` tagged with ``reference``; return the signature."""


class AmmClient(ABC):
    """AMM operations used by the graduation steps."""

    @abstractmethod
    async def initialize(self) -> None:
        """Load SDK state (fee configs, wallet token accounts). Safe to call repeatedly."""

    @abstractmethod
    async def find_pool(self, mint: str) -> PoolInfo | None:
        """Pool pairing ``mint`` with the native mint, if it exists."""

    @abstractmethod
    async def create_pool(
        self, mint: str, *, token_amount: int, sol_amount: int
    ) -> tuple[str, PoolInfo]:
        """Create and seed the pool; return (tx id, pool addresses)."""

    @abstractmethod
    async def get_pool(self, pool_id: str) -> PoolInfo:
        """Fetch pool addresses. Raises LookupError if the pool is not visible yet."""

    @abstractmethod
    async def lp_balance(self, lp_mint: str) -> int:
        """LP token balance held by the migrator wallet."""

    @abstractmethod
    async def lock_lp(self, pool_id: str, amount: int) -> LockReceipt:
        """Lock ``amount`` LP tokens; the receipt carries the minted custody token."""

    @abstractmethod
    async def find_locks(self, pool_id: str) -> list[LockReceipt]:
        """Locks the migrator wallet already created for ``pool_id``, oldest first."""
