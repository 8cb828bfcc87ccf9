"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field

from token_migrator.migration.models import TokenRecord


class ApiMigration(BaseModel):
    lock: bool
    lock_owner: str | None = None
    lock_expires_at: str | None = None
    last_step: str | None = None
    steps: dict[str, dict[str, str]] = Field(default_factory=dict)
    attempts: int = 0
    last_error: str | None = None


class ApiToken(BaseModel):
    mint: str
    creator: str
    status: str
    migration: ApiMigration

    market_id: str | None = None
    lock_lp_tx_id: str | None = None
    nft_minted: str | None = None
    locked_amount: str | None = None
    locked_at: str | None = None
    last_updated: str
    version: int

    @classmethod
    def from_record(cls, record: TokenRecord) -> ApiToken:
        return cls.model_validate(record.model_dump(mode="json"))


class SweepRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1)


class SweepResult(BaseModel):
    resumed: list[str]
