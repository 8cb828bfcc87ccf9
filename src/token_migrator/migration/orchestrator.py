"""Migration orchestrator.

Each invocation of :meth:`TokenMigrator.migrate_token` runs at most one step
for one token:

1. bail out if another worker holds the token's lock (or it is already done)
2. take the lock and keep its lease alive while working
3. resolve the step to run from the persisted checkpoint
4. run it (with retry) and checkpoint the result
5. release the lock and schedule the next invocation, or complete the token

Any failure reverts the token to ``migrating`` and schedules another attempt.
After ``max_attempts`` consecutive failures the token is parked in
``migration_failed`` for an operator instead of looping forever. An invocation
that finds its lock reclaimed by another worker stops without writing.
"""

from __future__ import annotations

import asyncio
import logging

from token_migrator.migration.executor import execute_step
from token_migrator.migration.lock import LockLostError, MigrationLockManager
from token_migrator.migration.models import DONE, TokenRecord, TokenStatus, utc_now_iso
from token_migrator.migration.scheduler import Scheduler
from token_migrator.migration.steps import StepRegistry
from token_migrator.notify.publisher import Publisher
from token_migrator.notify.registration import Registrar
from token_migrator.notify.status import MigrationStatusReporter
from token_migrator.store.token_store import TokenStore

logger = logging.getLogger(__name__)


class TokenMigrator:
    """Drives tokens through the graduation steps, one step per invocation."""

    def __init__(
        self,
        *,
        store: TokenStore,
        registry: StepRegistry,
        lock_manager: MigrationLockManager,
        publisher: Publisher,
        registrar: Registrar,
        scheduler: Scheduler,
        reporter: MigrationStatusReporter | None = None,
        step_retries: int = 3,
        step_retry_delay_seconds: float = 2.0,
        reschedule_delay_seconds: float = 10.0,
        max_attempts: int = 0,
    ) -> None:
        self.store = store
        self.registry = registry
        self.locks = lock_manager
        self.publisher = publisher
        self.registrar = registrar
        self.scheduler = scheduler
        self.reporter = reporter
        self.step_retries = step_retries
        self.step_retry_delay_seconds = step_retry_delay_seconds
        self.reschedule_delay_seconds = reschedule_delay_seconds
        self.max_attempts = max_attempts

    def close(self) -> None:
        self.publisher.close()
        self.registrar.close()
        if self.reporter is not None:
            self.reporter.close()

    async def migrate_token(self, token: TokenRecord) -> None:
        """Advance ``token`` by one step. Never raises."""

        logger.info(
            "Starting migration invocation",
            extra={"mint": token.mint, "checkpoint": token.migration.last_step},
        )

        # Cheap check on the caller's copy before touching the store.
        if token.migration.is_held():
            logger.info(
                "Migration already in progress; deferring", extra={"mint": token.mint}
            )
            return

        if token.status == TokenStatus.LOCKED and token.migration.last_step == DONE:
            logger.info("Migration already complete", extra={"mint": token.mint})
            return

        try:
            if not self.locks.acquire(token):
                logger.info(
                    "Could not acquire migration lock; deferring", extra={"mint": token.mint}
                )
                return

            async with self.locks.keep_alive(token):
                await self._run_locked(token)
        except LockLostError:
            logger.warning(
                "Migration lock was reclaimed mid-invocation; leaving the token to its holder",
                extra={"mint": token.mint},
            )
        except Exception as e:
            logger.exception("Migration invocation failed", extra={"mint": token.mint})
            self._handle_failure(token, e)

    async def _run_locked(self, token: TokenRecord) -> None:
        step = self.registry.resume(token.migration.last_step)
        if step is None:
            await self._complete(token)
            return

        next_step = self.registry.next_after(step)
        await execute_step(
            store=self.store,
            publisher=self.publisher,
            token=token,
            step=step,
            next_step=next_step,
            retries=self.step_retries,
            delay_seconds=self.step_retry_delay_seconds,
            lock_manager=self.locks,
        )

        if self.registry.is_last(step):
            await self._complete(token)
            return

        logger.info(
            "Scheduling next invocation",
            extra={"mint": token.mint, "next_step": token.migration.last_step},
        )
        self._schedule_next_invocation(token)

    async def resume(self, mint: str) -> None:
        """Reload ``mint`` from the store and run one invocation for it."""

        token = self.store.get(mint)
        if token is None:
            logger.error("Token not found; dropping scheduled migration", extra={"mint": mint})
            return
        await self.migrate_token(token)

    async def handle_curve_completed(self, mint: str) -> TokenRecord | None:
        """Trigger for a detected curve completion: mark the token and start migrating it."""

        token = self.store.get(mint)
        if token is None:
            logger.error("Curve completed for unknown token", extra={"mint": mint})
            return None

        if token.status == TokenStatus.LOCKED:
            logger.info("Curve completion ignored; token already graduated", extra={"mint": mint})
            return token

        logger.info("Curve completion detected", extra={"mint": mint})
        if token.status != TokenStatus.MIGRATING:
            token.refresh_from(self.store.update(mint, status=TokenStatus.MIGRATING))
        await self.migrate_token(token)
        return self.store.get(mint)

    async def sweep_migrating_tokens(self, limit: int = 10) -> list[str]:
        """Nudge tokens stuck in ``migrating`` whose lock is free or expired."""

        candidates = [
            t for t in self.store.list(status=TokenStatus.MIGRATING) if not t.migration.is_held()
        ][:limit]
        for token in candidates:
            await self.migrate_token(token)
        if candidates:
            logger.info("Sweep resumed tokens", extra={"count": len(candidates)})
        return [t.mint for t in candidates]

    async def run_sweeper(
        self, *, interval_seconds: float, limit: int, stop: asyncio.Event
    ) -> None:
        """Run :meth:`sweep_migrating_tokens` every ``interval_seconds`` until ``stop`` is set."""

        logger.info("Sweeper started", extra={"interval_seconds": interval_seconds})
        while not stop.is_set():
            try:
                await self.sweep_migrating_tokens(limit)
            except Exception:
                logger.exception("Sweep failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except TimeoutError:
                pass
        logger.info("Sweeper stopped")

    async def _complete(self, token: TokenRecord) -> None:
        locked_at = utc_now_iso()
        token.refresh_from(
            self.locks.commit(token, status=TokenStatus.LOCKED, locked_at=locked_at)
        )

        try:
            await self.registrar.register(token.mint)
        except Exception:
            logger.exception("Failed to register token for monitoring", extra={"mint": token.mint})

        self.locks.release(token)
        logger.info("Migration finalized", extra={"mint": token.mint})

    def _schedule_next_invocation(self, token: TokenRecord) -> None:
        self.locks.release(token)
        mint = token.mint
        self.scheduler.schedule_once(
            self.reschedule_delay_seconds,
            lambda: self.resume(mint),
            name=f"migrate-{mint}",
        )

    def _handle_failure(self, token: TokenRecord, error: Exception) -> None:
        try:
            current = self.store.get(token.mint)
            if current is None:
                logger.error("Token not found; not rescheduling", extra={"mint": token.mint})
                return

            if current.migration.lock and not current.migration.holds(token.migration.lock_id):
                logger.warning(
                    "Another worker holds the migration lock; not recording failure",
                    extra={"mint": token.mint, "lock_owner": current.migration.lock_owner},
                )
                return

            attempts = current.migration.attempts + 1
            migration = current.migration.model_copy(
                update={"attempts": attempts, "last_error": f"{type(error).__name__}: {error}"}
            )

            if self.max_attempts and attempts >= self.max_attempts:
                updated = self.store.compare_and_update(
                    token.mint,
                    current.version,
                    status=TokenStatus.MIGRATION_FAILED,
                    migration=migration.without_lock(),
                )
                if updated is None:
                    logger.warning(
                        "Token changed while recording failure; not dead-lettering",
                        extra={"mint": token.mint},
                    )
                    return
                token.refresh_from(updated)
                logger.error(
                    "Migration abandoned after repeated failures",
                    extra={
                        "mint": token.mint,
                        "attempts": attempts,
                        "checkpoint": migration.last_step,
                    },
                )
                return

            updated = self.store.compare_and_update(
                token.mint, current.version, status=TokenStatus.MIGRATING, migration=migration
            )
            if updated is None:
                logger.warning(
                    "Token changed while recording failure; not rescheduling",
                    extra={"mint": token.mint},
                )
                return
            token.refresh_from(updated)
            self._schedule_next_invocation(token)
        except Exception:
            logger.exception("Failed to record migration failure", extra={"mint": token.mint})
