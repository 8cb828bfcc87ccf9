"""FastAPI server adapter for the token migrator.

This module exposes a REST API over the migration engine.

Design intent:
- Keep migration logic in `token_migrator.migration.*`
- Keep server-specific concerns (routing, CORS, the background sweep) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from token_migrator.server.app import create_app
