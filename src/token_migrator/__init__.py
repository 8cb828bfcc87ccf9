"""Token Migrator.

Graduates tokens from the bonding curve into a public AMM pool through a
resumable, checkpointed sequence of on-chain steps:
- configuration loaded from `.env`
- structured logging
- a lock-guarded step engine with local JSON persistence
"""

__version__ = "0.1.0"

from token_migrator.config import MigratorSettings

__all__ = ["__version__", "MigratorSettings"]
