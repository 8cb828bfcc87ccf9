"""Best-effort migration status reports to the backend API.

Step implementations call :meth:`MigrationStatusReporter.report` after their
on-chain effect is confirmed so the backend can mirror progress without
polling the migrator's store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import requests

from token_migrator.migration.models import TokenRecord

logger = logging.getLogger(__name__)


class MigrationStatusReporter:
    """POST ``/api/migration/update`` with a bearer token. Never raises."""

    def __init__(self, *, api_url: str, auth_token: str, timeout_seconds: float = 15.0) -> None:
        self._endpoint = f"{api_url.rstrip('/')}/api/migration/update" if api_url else ""
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {auth_token}",
                "User-Agent": "token-migrator",
            }
        )

    @property
    def enabled(self) -> bool:
        return bool(self._endpoint)

    def _post(self, body: dict[str, Any]) -> None:
        resp = self._session.post(self._endpoint, json=body, timeout=self._timeout)
        resp.raise_for_status()

    async def report(self, token: TokenRecord, *, step: str, **fields: Any) -> None:
        if not self.enabled:
            return
        body: dict[str, Any] = {
            "mint": token.mint,
            "step": step,
            "status": token.status.value,
            "migration": token.migration.model_dump(mode="json"),
            **fields,
        }
        try:
            await asyncio.to_thread(self._post, body)
            logger.debug("Migration update posted", extra={"mint": token.mint, "step": step})
        except Exception:
            logger.exception(
                "Failed to post migration update", extra={"mint": token.mint, "step": step}
            )

    def close(self) -> None:
        self._session.close()
