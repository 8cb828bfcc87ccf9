"""Persisted token and migration records.

A token row owns its migration record. The record is the checkpoint the engine
resumes from and the audit trail operators read when a token looks stuck.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

# Checkpoint value written once every step has committed.
DONE = "done"


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _dt_from_iso(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class TokenStatus(str, Enum):
    ACTIVE = "active"
    MIGRATING = "migrating"
    LOCKED = "locked"
    MIGRATION_FAILED = "migration_failed"


class StepOutcome(BaseModel):
    """Write-once record of a committed step."""

    status: str = "success"
    tx_id: str
    updated_at: str = Field(default_factory=utc_now_iso)


class MigrationRecord(BaseModel):
    lock: bool = False
    lock_owner: str | None = None
    # Fresh per acquisition; writes under the lock must present it.
    lock_id: str | None = None
    lock_expires_at: str | None = None

    # Name of the step to run next, DONE, or None before the first step.
    last_step: str | None = None
    steps: dict[str, StepOutcome] = Field(default_factory=dict)

    attempts: int = 0
    last_error: str | None = None

    def lease_expired(self, now: datetime | None = None) -> bool:
        """True when a held lock is past its lease and may be reclaimed.

        Locks written without a lease (older records) never expire on their own.
        """

        if not self.lock or not self.lock_expires_at:
            return False
        expires = _dt_from_iso(self.lock_expires_at)
        if expires is None:
            return True
        return (now or datetime.now(tz=UTC)) >= expires

    def is_held(self, now: datetime | None = None) -> bool:
        return self.lock and not self.lease_expired(now)

    def holds(self, lock_id: str | None) -> bool:
        """True when the lock is taken and belongs to the acquisition ``lock_id``."""

        return self.lock and lock_id is not None and self.lock_id == lock_id

    def with_lock(self, *, owner: str, lease_seconds: float) -> MigrationRecord:
        expires = datetime.now(tz=UTC) + timedelta(seconds=lease_seconds)
        return self.model_copy(
            update={
                "lock": True,
                "lock_owner": owner,
                "lock_id": uuid.uuid4().hex,
                "lock_expires_at": expires.isoformat(),
            }
        )

    def with_lease(self, lease_seconds: float) -> MigrationRecord:
        expires = datetime.now(tz=UTC) + timedelta(seconds=lease_seconds)
        return self.model_copy(update={"lock_expires_at": expires.isoformat()})

    def with_lock_of(self, other: MigrationRecord) -> MigrationRecord:
        """Copy of this record carrying ``other``'s lock fields."""

        return self.model_copy(
            update={
                "lock": other.lock,
                "lock_owner": other.lock_owner,
                "lock_id": other.lock_id,
                "lock_expires_at": other.lock_expires_at,
            }
        )

    def without_lock(self) -> MigrationRecord:
        return self.model_copy(
            update={"lock": False, "lock_owner": None, "lock_id": None, "lock_expires_at": None}
        )


class WithdrawnAmounts(BaseModel):
    withdrawn_sol: int = 0
    withdrawn_tokens: int = 0


class PoolInfo(BaseModel):
    id: str
    lp_mint: str
    base_vault: str
    quote_vault: str


class TokenPatch(BaseModel):
    """Typed set of token fields a step may write back.

    Only fields explicitly set on the patch are merged, so a step cannot clear
    another step's output by omission.
    """

    withdrawn_amounts: WithdrawnAmounts | None = None
    market_id: str | None = None
    pool_info: PoolInfo | None = None
    lock_lp_tx_id: str | None = None
    nft_minted: str | None = None
    locked_amount: str | None = None

    def fields(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class TokenRecord(BaseModel):
    """A token graduating from the bonding curve."""

    mint: str
    creator: str = ""
    status: TokenStatus = TokenStatus.ACTIVE
    migration: MigrationRecord = Field(default_factory=MigrationRecord)

    withdrawn_amounts: WithdrawnAmounts | None = None
    market_id: str | None = None
    pool_info: PoolInfo | None = None
    lock_lp_tx_id: str | None = None
    # Comma-separated custody token mints: "<primary>,<secondary>".
    nft_minted: str | None = None
    locked_amount: str | None = None
    locked_at: str | None = None

    last_updated: str = Field(default_factory=utc_now_iso)
    version: int = 0

    def refresh_from(self, other: TokenRecord) -> None:
        """Overwrite this in-memory record with a persisted copy."""

        for name in type(self).model_fields:
            setattr(self, name, getattr(other, name))

    @property
    def room(self) -> str:
        """Notification room scoped to this token."""

        return f"token-{self.mint}"

    def custody_tokens(self) -> tuple[str, str]:
        """Return the (primary, secondary) custody token mints."""

        parts = (self.nft_minted or "").split(",")
        primary = parts[0].strip() if parts else ""
        secondary = parts[1].strip() if len(parts) > 1 else ""
        return primary, secondary
