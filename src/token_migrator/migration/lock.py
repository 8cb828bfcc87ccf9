"""Per-token migration lock.

The lock lives in the token's migration record so it is visible to every
migrator process sharing the store. Acquisition is a compare-and-swap on the
record version, and each lock carries a lease: a worker that crashes while
holding it blocks the token only until the lease runs out.

A live worker keeps its lease fresh with :meth:`MigrationLockManager.keep_alive`
for as long as it runs a step. Every write made under the lock (checkpoint,
completion, release) is conditional on the acquisition id, so a worker whose
lease was reclaimed cannot overwrite the new holder's state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable

from token_migrator.migration.models import TokenRecord
from token_migrator.migration.steps import MigrationError
from token_migrator.store.token_store import TokenNotFound, TokenStore

logger = logging.getLogger(__name__)

# Conditional writes retried when an unrelated writer bumps the version.
_CAS_ATTEMPTS = 5


class LockLostError(MigrationError):
    """This invocation no longer holds the token's migration lock."""

    def __init__(self, mint: str) -> None:
        super().__init__(f"Migration lock lost for {mint}")
        self.mint = mint


class MigrationLockManager:
    def __init__(
        self,
        store: TokenStore,
        *,
        owner: str,
        lease_seconds: float = 600.0,
        renew_interval_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._owner = owner
        self._lease_seconds = lease_seconds
        self._renew_interval = (
            renew_interval_seconds if renew_interval_seconds is not None else lease_seconds / 3
        )

    @property
    def owner(self) -> str:
        return self._owner

    def acquire(self, token: TokenRecord) -> bool:
        """Try to take the lock for ``token``.

        Reads the persisted record; returns False without writing anything when
        a live lock is held or when another writer changed the record between
        the read and the conditional write. On success the in-memory ``token``
        is refreshed from the locked record, so the caller resumes from the
        persisted checkpoint even if its copy was stale.
        """
        current = self._store.get(token.mint)
        if current is None:
            raise TokenNotFound(token.mint)

        if current.migration.is_held():
            logger.info(
                "Migration lock already held",
                extra={"mint": token.mint, "lock_owner": current.migration.lock_owner},
            )
            return False

        if current.migration.lease_expired():
            logger.warning(
                "Reclaiming expired migration lock",
                extra={
                    "mint": token.mint,
                    "lock_owner": current.migration.lock_owner,
                    "lock_expires_at": current.migration.lock_expires_at,
                },
            )

        locked = current.migration.with_lock(owner=self._owner, lease_seconds=self._lease_seconds)
        updated = self._store.compare_and_update(token.mint, current.version, migration=locked)
        if updated is None:
            logger.info("Lost migration lock race", extra={"mint": token.mint})
            return False

        token.refresh_from(updated)
        logger.debug("Migration lock acquired", extra={"mint": token.mint, "owner": self._owner})
        return True

    def _write_if_held(
        self,
        mint: str,
        lock_id: str | None,
        fields_for: Callable[[TokenRecord], dict[str, object]],
    ) -> TokenRecord | None:
        for _ in range(_CAS_ATTEMPTS):
            current = self._store.get(mint)
            if current is None:
                raise TokenNotFound(mint)
            if not current.migration.holds(lock_id):
                return None
            updated = self._store.compare_and_update(mint, current.version, **fields_for(current))
            if updated is not None:
                return updated
        return None

    def commit(self, token: TokenRecord, **fields: object) -> TokenRecord:
        """Persist ``fields`` only while ``token``'s acquisition still holds the lock.

        A ``migration`` field keeps the stored lock fields, so a renewed lease
        is not rolled back by the caller's older copy.

        Raises:
            LockLostError: If the lock was released or reclaimed by another worker.
        """

        def fields_for(current: TokenRecord) -> dict[str, object]:
            migration = fields.get("migration")
            if migration is None:
                return dict(fields)
            return {**fields, "migration": migration.with_lock_of(current.migration)}

        updated = self._write_if_held(token.mint, token.migration.lock_id, fields_for)
        if updated is None:
            raise LockLostError(token.mint)
        return updated

    def renew(self, token: TokenRecord) -> bool:
        """Push the lease out by another ``lease_seconds``. False if the lock is gone."""

        updated = self._write_if_held(
            token.mint,
            token.migration.lock_id,
            lambda current: {"migration": current.migration.with_lease(self._lease_seconds)},
        )
        if updated is None:
            return False
        logger.debug(
            "Migration lease renewed",
            extra={"mint": token.mint, "lock_expires_at": updated.migration.lock_expires_at},
        )
        return True

    async def _heartbeat(self, token: TokenRecord) -> None:
        while True:
            await asyncio.sleep(self._renew_interval)
            try:
                if not self.renew(token):
                    logger.warning("Migration lock lost while running", extra={"mint": token.mint})
                    return
            except Exception:
                logger.exception("Failed to renew migration lease", extra={"mint": token.mint})

    @contextlib.asynccontextmanager
    async def keep_alive(self, token: TokenRecord) -> AsyncIterator[None]:
        """Renew ``token``'s lease in the background until the block exits."""

        task = asyncio.create_task(self._heartbeat(token), name=f"lease-{token.mint}")
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def release(self, token: TokenRecord) -> None:
        """Clear the lock if ``token``'s acquisition still holds it, and persist.

        A lock that was reclaimed by another worker is left alone.
        """

        updated = self._write_if_held(
            token.mint,
            token.migration.lock_id,
            lambda current: {"migration": current.migration.without_lock()},
        )
        if updated is None:
            logger.warning(
                "Migration lock no longer held; not releasing", extra={"mint": token.mint}
            )
            return

        token.migration.lock = False
        token.migration.lock_owner = None
        token.migration.lock_id = None
        token.migration.lock_expires_at = None
        token.version = updated.version
        logger.debug("Migration lock released", extra={"mint": token.mint})
