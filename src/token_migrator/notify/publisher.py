"""Notification publishers.

Observers (the web UI, trading views) subscribe to a per-token room. Publishing
is fire-and-forget from the engine's point of view: callers log failures and
carry on.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import requests

from token_migrator.config import MigratorSettings

logger = logging.getLogger(__name__)


class Publisher(ABC):
    """Abstract base class for room/event notification transports."""

    @abstractmethod
    async def publish(self, room: str, event_name: str, payload: dict[str, Any]) -> None:
        """Deliver ``payload`` as ``event_name`` to everyone in ``room``."""

    def close(self) -> None:
        """Release transport resources."""


class LoggingPublisher(Publisher):
    """Publisher that only records events in the log."""

    async def publish(self, room: str, event_name: str, payload: dict[str, Any]) -> None:
        logger.info("Event published", extra={"room": room, "event": event_name})


class HttpPublisher(Publisher):
    """POST events to a relay that fans them out to websocket rooms."""

    def __init__(self, *, url: str, auth_token: str = "", timeout_seconds: float = 10.0) -> None:
        if not url:
            raise ValueError("Publisher URL is required")
        self._url = url
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {"Content-Type": "application/json", "User-Agent": "token-migrator"}
        )
        if auth_token:
            self._session.headers["Authorization"] = f"Bearer {auth_token}"

    def _post(self, body: dict[str, Any]) -> None:
        resp = self._session.post(self._url, json=body, timeout=self._timeout)
        resp.raise_for_status()

    async def publish(self, room: str, event_name: str, payload: dict[str, Any]) -> None:
        await asyncio.to_thread(self._post, {"room": room, "event": event_name, "payload": payload})
        logger.debug("Event delivered", extra={"room": room, "event": event_name})

    def close(self) -> None:
        self._session.close()


def build_publisher(settings: MigratorSettings) -> Publisher:
    if settings.publisher_url:
        return HttpPublisher(url=settings.publisher_url, auth_token=settings.api_auth_token)
    return LoggingPublisher()
