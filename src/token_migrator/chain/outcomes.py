"""Interpreting transaction confirmations.

Some confirmation errors do not mean the transaction failed: a
``ProgramFailedToComplete`` result can be reported for a transaction whose
program actually ran to completion. Every step that confirms a transaction goes
through :func:`confirm_transaction`, which re-reads the recorded logs in that
case and treats a ``Program success`` line as success.
"""

from __future__ import annotations

import json
import logging

from token_migrator.chain.ledger import LedgerClient
from token_migrator.migration.steps import MigrationError

logger = logging.getLogger(__name__)

AMBIGUOUS_ERROR_CODE = "ProgramFailedToComplete"
SUCCESS_MARKER = "Program success"


class TransactionFailedError(MigrationError):
    def __init__(self, signature: str, err: object) -> None:
        super().__init__(f"Transaction {signature} failed: {_describe(err)}")
        self.signature = signature
        self.err = err


class AmbiguousOutcomeError(TransactionFailedError):
    """An ambiguous confirmation error with no success marker in the logs."""


def _describe(err: object) -> str:
    if isinstance(err, str):
        return err
    try:
        return json.dumps(err, default=str)
    except (TypeError, ValueError):
        return repr(err)


def is_ambiguous_error(err: object) -> bool:
    return err == AMBIGUOUS_ERROR_CODE or AMBIGUOUS_ERROR_CODE in _describe(err)


def has_success_marker(logs: list[str] | None) -> bool:
    return bool(logs) and any(SUCCESS_MARKER in line for line in logs or [])


async def confirm_transaction(ledger: LedgerClient, signature: str) -> list[str]:
    """Confirm ``signature`` and return its program logs.

    Raises:
        AmbiguousOutcomeError: Ambiguous error and no success marker.
        TransactionFailedError: Any other confirmation error.
    """
    confirmation = await ledger.confirm(signature)

    if confirmation.err is None:
        return await ledger.get_transaction_logs(signature) or []

    if is_ambiguous_error(confirmation.err):
        logs = await ledger.get_transaction_logs(signature)
        if has_success_marker(logs):
            logger.warning(
                "Transaction succeeded despite ambiguous confirmation error",
                extra={"signature": signature, "error": _describe(confirmation.err)},
            )
            return list(logs or [])
        raise AmbiguousOutcomeError(signature, confirmation.err)

    raise TransactionFailedError(signature, confirmation.err)
