"""The migration engine.

This package holds the generic machinery for moving a token through an ordered
list of steps:
- persisted token/migration records (checkpoint, lock lease, step outcomes)
- the step registry and its explicit next-step table
- single-step execution with retry and checkpointing
- the lock manager, scheduler and orchestrator

Concrete step bodies live in :mod:`token_migrator.chain.graduation`.
"""

__all__: list[str] = []
