"""Wiring for the migration engine."""

from __future__ import annotations

import importlib
import logging

from token_migrator.chain.graduation import GraduationSteps
from token_migrator.chain.ledger import AmmClient, LedgerClient
from token_migrator.chain.simulated import SimulatedAmm, SimulatedLedger
from token_migrator.config import MigratorSettings
from token_migrator.migration.lock import MigrationLockManager
from token_migrator.migration.orchestrator import TokenMigrator
from token_migrator.migration.scheduler import Scheduler
from token_migrator.migration.steps import StepRegistry, build_migration_steps
from token_migrator.notify.publisher import Publisher, build_publisher
from token_migrator.notify.registration import Registrar, build_registrar
from token_migrator.notify.status import MigrationStatusReporter
from token_migrator.store.token_store import JsonTokenStore, TokenStore

logger = logging.getLogger(__name__)


def build_simulated_backends() -> tuple[LedgerClient, AmmClient]:
    """In-memory ledger and AMM pair for dry runs."""

    ledger = SimulatedLedger()
    return ledger, SimulatedAmm(ledger)


def load_backends(
    settings: MigratorSettings, *, simulate: bool = False
) -> tuple[LedgerClient, AmmClient]:
    """Resolve the ledger/AMM clients.

    Args:
        settings: Loaded settings; ``backend_factory`` names a ``module:callable``.
        simulate: Use the in-memory backends regardless of configuration.

    Raises:
        ValueError: If no backend is configured or the import path is malformed.
    """
    if simulate:
        logger.info("Using simulated ledger and AMM")
        return build_simulated_backends()

    path = settings.backend_factory.strip()
    if not path:
        raise ValueError("MIGRATOR_BACKEND is not set (use --simulate for a dry run)")

    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"MIGRATOR_BACKEND must look like 'module:callable', got {path!r}")

    logger.info("Loading backends", extra={"backend": path})
    factory = getattr(importlib.import_module(module_name), attr)
    ledger, amm = factory()
    return ledger, amm


def build_token_migrator(
    settings: MigratorSettings,
    *,
    ledger: LedgerClient,
    amm: AmmClient,
    scheduler: Scheduler,
    store: TokenStore | None = None,
    publisher: Publisher | None = None,
    registrar: Registrar | None = None,
) -> TokenMigrator:
    """Create a :class:`TokenMigrator` running the graduation steps."""

    store = store or JsonTokenStore(settings.token_state_path)
    reporter = MigrationStatusReporter(api_url=settings.api_url, auth_token=settings.api_auth_token)
    graduation = GraduationSteps(ledger=ledger, amm=amm, settings=settings, reporter=reporter)

    return TokenMigrator(
        store=store,
        registry=StepRegistry(build_migration_steps(graduation)),
        lock_manager=MigrationLockManager(
            store, owner=settings.instance_id, lease_seconds=settings.lock_lease_seconds
        ),
        publisher=publisher or build_publisher(settings),
        registrar=registrar or build_registrar(settings),
        scheduler=scheduler,
        reporter=reporter,
        step_retries=settings.step_retries,
        step_retry_delay_seconds=settings.step_retry_delay_seconds,
        reschedule_delay_seconds=settings.reschedule_delay_seconds,
        max_attempts=settings.max_attempts,
    )
