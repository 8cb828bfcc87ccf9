"""Configuration for the token migrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Addresses and credentials are optional at load time so that read-only commands
(`status`, the REST health check) work without them. Steps that need a value
validate it when they run.
"""

from __future__ import annotations

import uuid
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigratorSettings(BaseSettings):
    """Settings for the migration engine, its collaborators and the REST server.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `MigratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    token_state_path: Path = Field(
        default=Path("migrator_state/tokens.json"),
        validation_alias="MIGRATOR_TOKEN_STATE_PATH",
        description="Path where token records (including migration progress) are persisted",
    )

    # Engine behaviour
    step_retries: int = Field(
        default=3,
        ge=1,
        validation_alias="MIGRATOR_STEP_RETRIES",
        description="Attempts per step before the failure propagates to the orchestrator",
    )
    step_retry_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        validation_alias="MIGRATOR_STEP_RETRY_DELAY_SECONDS",
        description="Fixed delay between attempts of a single step",
    )
    reschedule_delay_seconds: float = Field(
        default=10.0,
        ge=0,
        validation_alias="MIGRATOR_RESCHEDULE_DELAY_SECONDS",
        description="Delay before the orchestrator re-invokes itself for the same token",
    )
    lock_lease_seconds: float = Field(
        default=600.0,
        gt=0,
        validation_alias="MIGRATOR_LOCK_LEASE_SECONDS",
        description="How long a migration lock is honoured before another worker may reclaim it",
    )
    max_attempts: int = Field(
        default=25,
        ge=0,
        validation_alias="MIGRATOR_MAX_ATTEMPTS",
        description=(
            "Consecutive failed invocations before a token is moved to 'migration_failed'. "
            "0 retries forever."
        ),
    )
    instance_id: str = Field(
        default_factory=lambda: f"migrator-{uuid.uuid4().hex[:12]}",
        validation_alias="MIGRATOR_INSTANCE_ID",
        description="Identifier written into lock leases held by this process",
    )

    # Sweep
    sweep_interval_seconds: float = Field(
        default=60.0,
        ge=0,
        validation_alias="MIGRATOR_SWEEP_INTERVAL_SECONDS",
        description="Interval of the background sweep over 'migrating' tokens. 0 disables it.",
    )
    sweep_limit: int = Field(
        default=10,
        ge=1,
        validation_alias="MIGRATOR_SWEEP_LIMIT",
        description="Maximum number of tokens resumed per sweep",
    )

    # Economics
    fixed_fee_sol: float = Field(
        default=6.0,
        ge=0,
        validation_alias="FIXED_FEE",
        description="Protocol fee (SOL) kept from the withdrawn reserves. 0 disables collection.",
    )
    primary_lock_percentage: int = Field(
        default=90,
        ge=0,
        le=100,
        validation_alias="PRIMARY_LOCK_PERCENTAGE",
        description="Share of LP tokens locked into the custody token deposited for the creator",
    )
    secondary_lock_percentage: int = Field(
        default=10,
        ge=0,
        le=100,
        validation_alias="SECONDARY_LOCK_PERCENTAGE",
        description="Share of LP tokens locked into the custody token sent to the manager multisig",
    )

    # Addresses
    manager_multisig_address: str = Field(
        default="",
        validation_alias="MANAGER_MULTISIG_ADDRESS",
        description="Recipient of the secondary custody token",
    )
    fee_multisig_address: str = Field(
        default="",
        validation_alias="ACCOUNT_FEE_MULTISIG",
        description="Recipient of the collected protocol fee",
    )

    # Collaborators
    api_url: str = Field(
        default="",
        validation_alias="API_URL",
        description="Base URL of the backend that receives migration status updates",
    )
    api_auth_token: str = Field(
        default="",
        validation_alias="JWT_SECRET",
        description="Bearer token for migration status updates",
    )
    publisher_url: str = Field(
        default="",
        validation_alias="MIGRATOR_PUBLISHER_URL",
        description="Endpoint receiving room/event notifications. Empty logs them instead.",
    )
    webhook_url: str = Field(
        default="",
        validation_alias="MIGRATOR_WEBHOOK_URL",
        description="Endpoint used to register trade monitoring for graduated tokens",
    )
    webhook_auth_token: str = Field(
        default="",
        validation_alias="CODEX_WEBHOOK_AUTH_TOKEN",
        description="Security token attached to registered monitoring webhooks",
    )

    backend_factory: str = Field(
        default="",
        validation_alias="MIGRATOR_BACKEND",
        description=(
            "Import path 'module:callable' of a zero-argument factory returning "
            "(LedgerClient, AmmClient)"
        ),
    )

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="MIGRATOR_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _lock_percentages_sum_to_100(self) -> MigratorSettings:
        if self.primary_lock_percentage + self.secondary_lock_percentage != 100:
            raise ValueError("Lock percentages must sum to 100")
        return self

    @property
    def fixed_fee_lamports(self) -> int:
        """Protocol fee expressed in lamports."""

        return int(round(self.fixed_fee_sol * 1_000_000_000))

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
