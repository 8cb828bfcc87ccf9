"""Run a single migration step and checkpoint its result."""

from __future__ import annotations

import logging

from token_migrator.migration.lock import MigrationLockManager
from token_migrator.migration.models import DONE, StepOutcome, TokenRecord, TokenStatus
from token_migrator.migration.retry import retry_operation
from token_migrator.migration.steps import MigrationStep, StepResult
from token_migrator.notify.publisher import Publisher
from token_migrator.store.token_store import TokenStore

logger = logging.getLogger(__name__)


async def execute_step(
    *,
    store: TokenStore,
    publisher: Publisher,
    token: TokenRecord,
    step: MigrationStep,
    next_step: MigrationStep | None,
    retries: int = 3,
    delay_seconds: float = 2.0,
    lock_manager: MigrationLockManager | None = None,
) -> StepResult:
    """Execute ``step`` for ``token`` and advance the checkpoint to ``next_step``.

    ``token`` is updated in place: the step outcome is recorded, the step's
    patch is merged into the top-level fields and ``migration.last_step`` moves
    to ``next_step`` (or DONE). The record is persisted before the step's event
    is published and before this function returns, so the checkpoint always
    lands before the next step can run.

    If the step still fails after ``retries`` attempts the error propagates and
    nothing is written; the checkpoint stays on ``step``.

    With a ``lock_manager`` the checkpoint is written only while the caller's
    lock is still held; otherwise :class:`LockLostError` propagates.
    """
    logger.info(
        "Starting step",
        extra={"mint": token.mint, "step": step.name, "description": step.description},
    )

    result = await retry_operation(lambda: step.fn(token), retries, delay_seconds)

    token.migration.steps[step.name] = StepOutcome(status="success", tx_id=result.tx_id)
    patch = result.extra_data.fields() if result.extra_data is not None else {}
    for name, value in patch.items():
        setattr(token, name, value)
    token.migration.last_step = next_step.name if next_step is not None else DONE
    token.migration.attempts = 0
    token.migration.last_error = None

    terminal = next_step is None
    fields: dict[str, object] = {"migration": token.migration, **patch}
    if not terminal:
        token.status = TokenStatus.MIGRATING
        fields["status"] = token.status

    if lock_manager is not None:
        persisted = lock_manager.commit(token, **fields)
    else:
        persisted = store.update(token.mint, **fields)
    token.version = persisted.version
    token.last_updated = persisted.last_updated

    if step.event_name:
        try:
            await publisher.publish(token.room, step.event_name, token.model_dump(mode="json"))
        except Exception:
            logger.exception(
                "Failed to publish step event",
                extra={"mint": token.mint, "step": step.name, "event": step.event_name},
            )

    logger.info(
        "Step succeeded",
        extra={
            "mint": token.mint,
            "step": step.name,
            "tx_id": result.tx_id,
            "checkpoint": token.migration.last_step,
        },
    )
    return result
