"""CLI entrypoint for the token migrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from token_migrator import __version__
from token_migrator.config import MigratorSettings
from token_migrator.logging import configure_logging
from token_migrator.migration.factory import build_token_migrator, load_backends
from token_migrator.migration.models import TokenRecord, TokenStatus
from token_migrator.migration.orchestrator import TokenMigrator
from token_migrator.migration.scheduler import AsyncioScheduler
from token_migrator.store.token_store import JsonTokenStore

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 3
EXIT_INCOMPLETE = 4
EXIT_FAILED = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token-migrator",
        description="Graduate bonding-curve tokens into AMM pools",
    )
    parser.add_argument("--version", action="version", version=f"token-migrator {__version__}")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Run against the in-memory ledger and AMM instead of MIGRATOR_BACKEND",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", help="Run (or resume) the migration of a token")
    migrate.add_argument("mint", help="Token mint address")
    migrate.add_argument(
        "--once",
        action="store_true",
        help="Run a single step and exit instead of following the migration to the end",
    )

    curve_complete = subparsers.add_parser(
        "curve-complete",
        help="Mark a token's bonding curve as complete and start its migration",
    )
    curve_complete.add_argument("mint", help="Token mint address")

    sweep = subparsers.add_parser(
        "sweep", help="Resume tokens stuck in 'migrating' whose lock is free or expired"
    )
    sweep.add_argument(
        "--limit", type=int, default=None, help="Maximum tokens to resume (default: settings)"
    )

    status = subparsers.add_parser("status", help="Print a token's persisted record")
    status.add_argument("mint", help="Token mint address")

    add_token = subparsers.add_parser("add-token", help="Register a token in the local store")
    add_token.add_argument("mint", help="Token mint address")
    add_token.add_argument("--creator", required=True, help="Creator wallet address")

    serve = subparsers.add_parser("serve", help="Run the REST API and background sweeper")
    serve.add_argument("--host", default="127.0.0.1", help="Bind host")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")

    return parser


def _print_record(record: TokenRecord) -> None:
    print(json.dumps(record.model_dump(mode="json"), indent=2))


def _exit_code(record: TokenRecord | None) -> int:
    # Exit codes are designed to be CI-friendly.
    if record is None:
        return EXIT_NOT_FOUND
    if record.status == TokenStatus.LOCKED:
        return 0
    if record.status == TokenStatus.MIGRATION_FAILED:
        return EXIT_FAILED
    return EXIT_INCOMPLETE


def _run_engine(
    settings: MigratorSettings,
    *,
    store: JsonTokenStore,
    simulate: bool,
    work: Callable[[TokenMigrator], Awaitable[None]],
    follow: bool = True,
) -> None:
    """Run ``work`` on a fresh engine, then wait for (or cancel) scheduled steps."""

    ledger, amm = load_backends(settings, simulate=simulate)

    async def _main() -> None:
        scheduler = AsyncioScheduler()
        migrator = build_token_migrator(
            settings, ledger=ledger, amm=amm, scheduler=scheduler, store=store
        )
        try:
            await work(migrator)
            if follow:
                await scheduler.join()
            else:
                await scheduler.shutdown()
        finally:
            migrator.close()

    asyncio.run(_main())


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = MigratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    store = JsonTokenStore(settings.token_state_path)

    try:
        if args.command == "status":
            record = store.get(args.mint)
            if record is None:
                print(f"Token not found: {args.mint}", file=sys.stderr)
                return EXIT_NOT_FOUND
            _print_record(record)
            return 0

        if args.command == "add-token":
            record = store.create(TokenRecord(mint=args.mint, creator=args.creator))
            print(f"Added token {record.mint} (status={record.status.value})")
            return 0

        if args.command in {"migrate", "curve-complete"}:
            if store.get(args.mint) is None:
                print(f"Token not found: {args.mint}", file=sys.stderr)
                return EXIT_NOT_FOUND

            async def _trigger(migrator: TokenMigrator) -> None:
                if args.command == "curve-complete":
                    await migrator.handle_curve_completed(args.mint)
                else:
                    await migrator.resume(args.mint)

            _run_engine(
                settings,
                store=store,
                simulate=args.simulate,
                work=_trigger,
                follow=not getattr(args, "once", False),
            )
            record = store.get(args.mint)
            if record is not None:
                print(
                    f"Token {record.mint}: status={record.status.value} "
                    f"checkpoint={record.migration.last_step}"
                )
            return _exit_code(record)

        if args.command == "sweep":
            limit = args.limit if args.limit is not None else settings.sweep_limit
            resumed: list[str] = []

            async def _sweep(migrator: TokenMigrator) -> None:
                resumed.extend(await migrator.sweep_migrating_tokens(limit))

            _run_engine(settings, store=store, simulate=args.simulate, work=_sweep)
            print(f"Resumed {len(resumed)} token(s): {', '.join(resumed) or 'none'}")
            return 0

        if args.command == "serve":
            import uvicorn

            from token_migrator.server.app import create_app

            app = create_app(settings, simulate=args.simulate)
            uvicorn.run(app, host=args.host, port=args.port, log_config=None)
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ValueError as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
