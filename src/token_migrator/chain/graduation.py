"""Graduation step implementations.

Each method is a thin adapter over the ledger/AMM clients and follows the same
shape: check whether the effect is already visible on chain, submit only if it
is not, confirm, report, and return the tx id plus a typed patch.
"""

from __future__ import annotations

import logging

from token_migrator.chain.ledger import AmmClient, LedgerClient, LockReceipt
from token_migrator.chain.outcomes import confirm_transaction
from token_migrator.config import MigratorSettings
from token_migrator.migration.models import PoolInfo, TokenPatch, TokenRecord, WithdrawnAmounts
from token_migrator.migration.retry import retry_operation, retry_with_timeout
from token_migrator.migration.steps import StepResult
from token_migrator.notify.status import MigrationStatusReporter

logger = logging.getLogger(__name__)

WITHDRAW_LAMPORTS_PREFIX = "Program log: withdraw lamports:"
WITHDRAW_TOKEN_PREFIX = "Program log: withdraw token:"


def parse_withdraw_logs(logs: list[str]) -> WithdrawnAmounts:
    """Extract withdrawn SOL (lamports) and tokens from withdraw program logs.

    Later lines win; missing lines leave the amount at 0.
    """
    withdrawn_sol = 0
    withdrawn_tokens = 0
    for line in logs:
        if "withdraw lamports:" in line:
            withdrawn_sol = int(line.replace(WITHDRAW_LAMPORTS_PREFIX, "").strip())
        if "withdraw token:" in line:
            withdrawn_tokens = int(line.replace(WITHDRAW_TOKEN_PREFIX, "").strip())
    return WithdrawnAmounts(withdrawn_sol=withdrawn_sol, withdrawn_tokens=withdrawn_tokens)


class GraduationSteps:
    """Concrete bodies of the seven graduation steps."""

    def __init__(
        self,
        *,
        ledger: LedgerClient,
        amm: AmmClient,
        settings: MigratorSettings,
        reporter: MigrationStatusReporter,
        amm_init_attempts: int = 5,
        amm_init_timeout_seconds: float = 60.0,
        amm_init_backoff_seconds: float = 10.0,
        pool_lookup_retries: int = 3,
        pool_lookup_delay_seconds: float = 10.0,
        lock_retries: int = 5,
        lock_retry_delay_seconds: float = 4.0,
    ) -> None:
        self.ledger = ledger
        self.amm = amm
        self.settings = settings
        self.reporter = reporter
        self.amm_init_attempts = amm_init_attempts
        self.amm_init_timeout_seconds = amm_init_timeout_seconds
        self.amm_init_backoff_seconds = amm_init_backoff_seconds
        self.pool_lookup_retries = pool_lookup_retries
        self.pool_lookup_delay_seconds = pool_lookup_delay_seconds
        self.lock_retries = lock_retries
        self.lock_retry_delay_seconds = lock_retry_delay_seconds

    async def _init_amm(self) -> None:
        await retry_with_timeout(
            self.amm.initialize,
            max_attempts=self.amm_init_attempts,
            timeout_seconds=self.amm_init_timeout_seconds,
            backoff_seconds=self.amm_init_backoff_seconds,
        )

    async def withdraw(self, token: TokenRecord) -> StepResult:
        signature = await self.ledger.find_withdrawal(token.mint)
        if signature is not None:
            logger.info(
                "Withdraw already landed; reusing it",
                extra={"mint": token.mint, "tx_id": signature},
            )
        else:
            signature = await self.ledger.submit_withdraw(token.mint)
            if not signature:
                raise RuntimeError("Failed to send withdraw transaction")

        logs = await confirm_transaction(self.ledger, signature)
        amounts = parse_withdraw_logs(logs)
        logger.info(
            "Reserves withdrawn",
            extra={
                "mint": token.mint,
                "tx_id": signature,
                "withdrawn_sol": amounts.withdrawn_sol,
                "withdrawn_tokens": amounts.withdrawn_tokens,
            },
        )

        await self.reporter.report(
            token,
            step="withdraw",
            txId=signature,
            withdrawnAmounts=amounts.model_dump(mode="json"),
        )
        return StepResult(tx_id=signature, extra_data=TokenPatch(withdrawn_amounts=amounts))

    async def create_pool(self, token: TokenRecord) -> StepResult:
        amounts = token.withdrawn_amounts
        if amounts is None:
            raise ValueError("No withdrawn amounts found for pool creation")

        await self._init_amm()

        existing = await self.amm.find_pool(token.mint)
        if existing is not None:
            logger.info(
                "Pool already exists; reusing it",
                extra={"mint": token.mint, "pool_id": existing.id},
            )
            return StepResult(
                tx_id=f"existing:{existing.id}",
                extra_data=TokenPatch(market_id=existing.id, pool_info=existing),
            )

        remaining_sol = amounts.withdrawn_sol - self.settings.fixed_fee_lamports
        if remaining_sol <= 0:
            raise ValueError(
                f"Withdrawn SOL ({amounts.withdrawn_sol}) does not cover the fixed fee "
                f"({self.settings.fixed_fee_lamports})"
            )

        logger.info(
            "Creating pool",
            extra={
                "mint": token.mint,
                "token_amount": amounts.withdrawn_tokens,
                "sol_amount": remaining_sol,
            },
        )
        tx_id, pool = await self.amm.create_pool(
            token.mint, token_amount=amounts.withdrawn_tokens, sol_amount=remaining_sol
        )

        await self.reporter.report(
            token,
            step="createPool",
            txId=tx_id,
            marketId=pool.id,
            poolInfo=pool.model_dump(mode="json"),
        )
        return StepResult(tx_id=tx_id, extra_data=TokenPatch(market_id=pool.id, pool_info=pool))

    async def _fetch_pool(self, pool_id: str) -> PoolInfo:
        return await retry_operation(
            lambda: self.amm.get_pool(pool_id),
            self.pool_lookup_retries,
            self.pool_lookup_delay_seconds,
        )

    async def _lock(self, pool_id: str, amount: int, label: str) -> LockReceipt:
        logger.info("Locking LP", extra={"pool_id": pool_id, "amount": amount, "lock": label})
        receipt = await retry_operation(
            lambda: self.amm.lock_lp(pool_id, amount),
            self.lock_retries,
            self.lock_retry_delay_seconds,
        )
        logger.info(
            "LP locked",
            extra={
                "pool_id": pool_id,
                "lock": label,
                "tx_id": receipt.tx_id,
                "nft": receipt.nft_mint,
            },
        )
        return receipt

    async def lock_lp(self, token: TokenRecord) -> StepResult:
        if not token.market_id:
            raise ValueError("No pool id found for LP lock")

        await self._init_amm()
        pool = await self._fetch_pool(token.market_id)

        locks = await self.amm.find_locks(pool.id)
        balance = await self.amm.lp_balance(pool.lp_mint)

        if len(locks) >= 2:
            primary, secondary = locks[0], locks[1]
            total = primary.amount + secondary.amount
            logger.info("LP already locked; reusing locks", extra={"mint": token.mint})
        elif len(locks) == 1:
            # Crashed between the two locks: the remaining balance is the secondary share.
            primary = locks[0]
            if balance <= 0:
                raise ValueError(f"No LP balance left for secondary lock in pool {pool.id}")
            secondary = await self._lock(pool.id, balance, "secondary")
            total = primary.amount + balance
        else:
            if balance <= 0:
                raise ValueError(f"No LP balance found for pool: {pool.id}")
            total = balance
            primary_amount = total * self.settings.primary_lock_percentage // 100
            secondary_amount = total * self.settings.secondary_lock_percentage // 100
            primary = await self._lock(pool.id, primary_amount, "primary")
            secondary = await self._lock(pool.id, secondary_amount, "secondary")

        aggregated_tx_id = f"{primary.tx_id},{secondary.tx_id}"
        aggregated_nft = f"{primary.nft_mint},{secondary.nft_mint}"

        await self.reporter.report(
            token,
            step="lockLP",
            txId=aggregated_tx_id,
            lockLpTxId=aggregated_tx_id,
            nftMinted=aggregated_nft,
        )
        return StepResult(
            tx_id=aggregated_tx_id,
            extra_data=TokenPatch(
                lock_lp_tx_id=aggregated_tx_id,
                nft_minted=aggregated_nft,
                locked_amount=str(total),
            ),
        )

    async def send_nft(self, token: TokenRecord) -> StepResult:
        """Send the secondary custody token to the manager multisig."""

        _, secondary = token.custody_tokens()
        if not secondary:
            raise ValueError("No secondary custody token recorded")
        multisig = self.settings.manager_multisig_address
        if not multisig:
            raise ValueError("MANAGER_MULTISIG_ADDRESS is required")

        if await self.ledger.token_owner(secondary) == multisig:
            logger.info("Custody token already with multisig", extra={"mint": token.mint})
            return StepResult(tx_id="already_sent")

        signature = await self.ledger.transfer_nft(secondary, multisig)
        await confirm_transaction(self.ledger, signature)

        await self.reporter.report(token, step="sendNft", txId=signature)
        return StepResult(tx_id=signature)

    async def deposit_nft(self, token: TokenRecord) -> StepResult:
        """Deposit the primary custody token into the vault, claimable by the creator."""

        primary, _ = token.custody_tokens()
        if not primary:
            raise ValueError("No primary custody token recorded")
        if not token.creator:
            raise ValueError("Token creator is required to deposit the custody token")

        if await self.ledger.vault_claimer(primary) == token.creator:
            logger.info("Custody token already deposited", extra={"mint": token.mint})
            return StepResult(tx_id="already_deposited")

        signature = await self.ledger.deposit_to_vault(primary, token.creator)
        await confirm_transaction(self.ledger, signature)

        await self.reporter.report(token, step="depositNft", txId=signature)
        return StepResult(tx_id=signature)

    async def finalize(self, token: TokenRecord) -> StepResult:
        await self.reporter.report(token, step="finalize")
        return StepResult(tx_id="finalized")

    async def collect_fees(self, token: TokenRecord) -> StepResult:
        lamports = self.settings.fixed_fee_lamports
        if lamports == 0:
            logger.info("No fee to collect", extra={"mint": token.mint})
            return StepResult(tx_id="no_fee")

        recipient = self.settings.fee_multisig_address
        if not recipient:
            raise ValueError("ACCOUNT_FEE_MULTISIG is required to collect the fee")

        reference = f"fee:{token.mint}"
        existing = await self.ledger.find_transfer(reference)
        if existing is not None:
            logger.info("Fee already collected", extra={"mint": token.mint, "tx_id": existing})
            return StepResult(tx_id=existing)

        signature = await self.ledger.transfer_sol(lamports, recipient, reference=reference)
        await confirm_transaction(self.ledger, signature)
        return StepResult(tx_id=signature)
