"""FastAPI app factory.

Endpoints are thin wrappers over :class:`TokenMigrator`. Triggered migrations
run their first step inside the request; later steps run on the server's event
loop through the scheduler.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from token_migrator import __version__
from token_migrator.config import MigratorSettings
from token_migrator.migration.factory import build_token_migrator, load_backends
from token_migrator.migration.models import TokenStatus
from token_migrator.migration.orchestrator import TokenMigrator
from token_migrator.migration.scheduler import AsyncioScheduler
from token_migrator.server.models import ApiToken, SweepRequest, SweepResult

logger = logging.getLogger(__name__)


def create_app(
    settings: MigratorSettings | None = None,
    migrator: TokenMigrator | None = None,
    *,
    simulate: bool = False,
) -> FastAPI:
    settings = settings or MigratorSettings()
    if migrator is None:
        ledger, amm = load_backends(settings, simulate=simulate)
        migrator = build_token_migrator(
            settings, ledger=ledger, amm=amm, scheduler=AsyncioScheduler()
        )
    engine = migrator

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        stop = asyncio.Event()
        sweeper: asyncio.Task[None] | None = None
        if settings.sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(
                engine.run_sweeper(
                    interval_seconds=settings.sweep_interval_seconds,
                    limit=settings.sweep_limit,
                    stop=stop,
                ),
                name="migration-sweeper",
            )
        try:
            yield
        finally:
            stop.set()
            if sweeper is not None:
                await sweeper
            if isinstance(engine.scheduler, AsyncioScheduler):
                await engine.scheduler.shutdown()
            engine.close()

    app = FastAPI(
        title="Token Migrator",
        version=__version__,
        description="REST API over the token graduation engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.migrator = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/tokens", response_model=list[ApiToken])
    def list_tokens(status: TokenStatus | None = None) -> list[ApiToken]:
        return [ApiToken.from_record(t) for t in engine.store.list(status=status)]

    @app.get("/api/v1/tokens/{mint}", response_model=ApiToken)
    def get_token(mint: str) -> ApiToken:
        record = engine.store.get(mint)
        if record is None:
            raise HTTPException(status_code=404, detail="Token not found")
        return ApiToken.from_record(record)

    @app.post("/api/v1/tokens/{mint}/migrate", response_model=ApiToken)
    async def migrate(mint: str) -> ApiToken:
        record = engine.store.get(mint)
        if record is None:
            raise HTTPException(status_code=404, detail="Token not found")
        await engine.migrate_token(record)
        updated = engine.store.get(mint)
        if updated is None:
            raise HTTPException(status_code=404, detail="Token not found")
        return ApiToken.from_record(updated)

    @app.post("/api/v1/tokens/{mint}/curve-complete", response_model=ApiToken)
    async def curve_complete(mint: str) -> ApiToken:
        record = await engine.handle_curve_completed(mint)
        if record is None:
            raise HTTPException(status_code=404, detail="Token not found")
        return ApiToken.from_record(record)

    @app.post("/api/v1/sweep", response_model=SweepResult)
    async def sweep(req: SweepRequest | None = None) -> SweepResult:
        limit = req.limit if req is not None and req.limit is not None else settings.sweep_limit
        resumed = await engine.sweep_migrating_tokens(limit)
        return SweepResult(resumed=resumed)

    return app
