"""Persistent token store.

The engine only depends on the :class:`TokenStore` contract: point reads,
partial updates that leave untouched fields alone, and an atomic conditional
update used by the lock manager.

:class:`JsonTokenStore` persists to a single JSON file so a migration survives
process restarts. It is atomic within one process; deployments running several
migrator processes need a store whose ``compare_and_update`` is atomic across
them (e.g. a SQL ``UPDATE ... WHERE version = ?``).
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from token_migrator.migration.models import TokenRecord, TokenStatus, utc_now_iso

logger = logging.getLogger(__name__)


class TokenNotFound(KeyError):
    """Raised when an update targets a mint the store does not know."""

    def __init__(self, mint: str) -> None:
        super().__init__(mint)
        self.mint = mint

    def __str__(self) -> str:
        return f"Token not found: {self.mint}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(v) for v in value]
    return value


class TokenStore(ABC):
    """Read/write contract the migration engine needs from persistence."""

    @abstractmethod
    def get(self, mint: str) -> TokenRecord | None:
        """Return the token, or None when unknown."""

    @abstractmethod
    def create(self, record: TokenRecord) -> TokenRecord:
        """Insert a new token. Raises ValueError if the mint already exists."""

    @abstractmethod
    def update(self, mint: str, **fields: object) -> TokenRecord:
        """Apply a partial update (last write wins on the touched fields).

        Bumps ``version`` and ``last_updated``.

        Raises:
            TokenNotFound: If the mint is unknown.
        """

    @abstractmethod
    def compare_and_update(
        self, mint: str, expected_version: int, **fields: object
    ) -> TokenRecord | None:
        """Apply ``fields`` only if the stored version still equals ``expected_version``.

        Returns:
            The updated record, or None if another writer got there first.
        """

    @abstractmethod
    def list(self, *, status: TokenStatus | None = None) -> list[TokenRecord]:  # noqa: A003
        """List tokens, optionally filtered by status."""


class JsonTokenStore(TokenStore):
    """JSON-file backed token store keyed by mint."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Token state file is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return {}
        if not isinstance(raw, dict):
            logger.warning(
                "Token state file has unexpected shape; treating as empty",
                extra={"path": str(self._path)},
            )
            return {}
        return {k: v for k, v in raw.items() if isinstance(v, dict)}

    def _save_unlocked(self, rows: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(rows, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self._path)

    def _apply_unlocked(
        self, rows: dict[str, dict[str, Any]], mint: str, fields: dict[str, object]
    ) -> TokenRecord:
        current = rows[mint]
        merged: dict[str, Any] = {**current, **_jsonable(fields)}
        merged["mint"] = mint
        merged["version"] = int(current.get("version", 0)) + 1
        merged["last_updated"] = utc_now_iso()
        record = TokenRecord.model_validate(merged)
        rows[mint] = record.model_dump(mode="json")
        self._save_unlocked(rows)
        return record

    def get(self, mint: str) -> TokenRecord | None:
        with self._lock:
            row = self._load_unlocked().get(mint)
        if row is None:
            return None
        return TokenRecord.model_validate(row)

    def create(self, record: TokenRecord) -> TokenRecord:
        with self._lock:
            rows = self._load_unlocked()
            if record.mint in rows:
                raise ValueError(f"Token already exists: {record.mint}")
            rows[record.mint] = record.model_dump(mode="json")
            self._save_unlocked(rows)
        logger.info("Token created", extra={"mint": record.mint, "status": record.status.value})
        return record

    def update(self, mint: str, **fields: object) -> TokenRecord:
        with self._lock:
            rows = self._load_unlocked()
            if mint not in rows:
                raise TokenNotFound(mint)
            return self._apply_unlocked(rows, mint, fields)

    def compare_and_update(
        self, mint: str, expected_version: int, **fields: object
    ) -> TokenRecord | None:
        with self._lock:
            rows = self._load_unlocked()
            if mint not in rows:
                raise TokenNotFound(mint)
            if int(rows[mint].get("version", 0)) != expected_version:
                return None
            return self._apply_unlocked(rows, mint, fields)

    def list(self, *, status: TokenStatus | None = None) -> list[TokenRecord]:  # noqa: A003
        with self._lock:
            rows = self._load_unlocked()
        records = [TokenRecord.model_validate(row) for row in rows.values()]
        if status is not None:
            records = [r for r in records if r.status == status]
        return records
