"""Post-graduation registration with the external trade monitor.

Registration happens once, best-effort, when a token reaches its terminal
state. Failures never undo the terminal transition.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import requests

from token_migrator.config import MigratorSettings

logger = logging.getLogger(__name__)

SOLANA_NETWORK_ID = 1399811149


class Registrar(ABC):
    @abstractmethod
    async def register(self, mint: str) -> None:
        """Start external monitoring for ``mint``."""

    def close(self) -> None:
        """Release transport resources."""


class NullRegistrar(Registrar):
    async def register(self, mint: str) -> None:
        logger.info("Monitoring registration skipped (not configured)", extra={"mint": mint})


class WebhookRegistrar(Registrar):
    """Register a buy/sell webhook for the token with the monitoring service.

    The webhook calls back into ``{api_url}/api/codex-webhook``.
    """

    def __init__(
        self,
        *,
        url: str,
        callback_base_url: str,
        security_token: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not url:
            raise ValueError("Webhook service URL is required")
        self._url = url
        self._callback_url = f"{callback_base_url.rstrip('/')}/api/codex-webhook"
        self._security_token = security_token
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {"Content-Type": "application/json", "User-Agent": "token-migrator"}
        )

    def _body(self, mint: str) -> dict[str, object]:
        return {
            "tokenPairEventWebhooksInput": {
                "webhooks": [
                    {
                        "alertRecurrence": "INDEFINITE",
                        "callbackUrl": self._callback_url,
                        "conditions": {
                            "tokenAddress": {"eq": mint},
                            "networkId": {"oneOf": [SOLANA_NETWORK_ID]},
                            "eventType": {"oneOf": ["BUY", "SELL"]},
                        },
                        "name": mint,
                        "securityToken": self._security_token,
                        "deduplicate": True,
                    }
                ]
            }
        }

    def _post(self, mint: str) -> None:
        resp = self._session.post(self._url, json=self._body(mint), timeout=self._timeout)
        resp.raise_for_status()

    async def register(self, mint: str) -> None:
        if not self._security_token:
            raise ValueError("missing CODEX_WEBHOOK_AUTH_TOKEN")
        await asyncio.to_thread(self._post, mint)
        logger.info("Monitoring webhook registered", extra={"mint": mint})

    def close(self) -> None:
        self._session.close()


def build_registrar(settings: MigratorSettings) -> Registrar:
    if settings.webhook_url:
        return WebhookRegistrar(
            url=settings.webhook_url,
            callback_base_url=settings.api_url,
            security_token=settings.webhook_auth_token,
        )
    return NullRegistrar()
