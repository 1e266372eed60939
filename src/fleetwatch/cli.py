"""CLI entry point: ``fleetwatch serve``, ``sweep`` and ``report``."""

from __future__ import annotations

# Phase 1: logging before any transitive litellm import
from fleetwatch.logging_config import setup_logging

setup_logging()

import argparse  # noqa: E402
import asyncio  # noqa: E402
import json  # noqa: E402
import sys  # noqa: E402
from collections.abc import Awaitable, Callable  # noqa: E402
from typing import TYPE_CHECKING, Any  # noqa: E402

from fleetwatch import __version__  # noqa: E402
from fleetwatch.config import Settings  # noqa: E402
from fleetwatch.logging_config import (  # noqa: E402
    cleanup_third_party_handlers,
)

if TYPE_CHECKING:
    from fleetwatch.api.app_state import AppState

# Phase 2: Clear litellm's duplicate handlers after all imports
cleanup_third_party_handlers()


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"fleetwatch {__version__}")
        return

    if args.command == "serve":
        _run_serve(args)
    elif args.command == "sweep":
        _run_sweep(args)
    elif args.command == "report":
        _run_report(args)
    else:
        parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="fleetwatch",
        description=(
            "Token, cost and liveness tracking for AI agent fleets."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument(
        "--host",
        default="127.0.0.1",
        help="Bind address (default: 127.0.0.1)",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port (default: 8000)",
    )

    sweep = sub.add_parser(
        "sweep",
        help="Run one heartbeat reconciliation pass and exit",
    )
    sweep.add_argument(
        "--prune",
        action="store_true",
        help="Also delete heartbeats older than the retention window",
    )

    report = sub.add_parser(
        "report",
        help="Print a cost trend, anomaly and forecast report",
    )
    report.add_argument(
        "--days",
        "-d",
        type=int,
        default=30,
        help="Window length in days (default: 30)",
    )
    report.add_argument(
        "--format",
        "-f",
        choices=["text", "json", "csv"],
        default="text",
        help="Output format (default: text)",
    )

    return parser


def _run_serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run(
        "fleetwatch.main:app",
        host=args.host,
        port=args.port,
        log_config=None,
    )


def _with_state[T](
    fn: Callable[[AppState], Awaitable[T]],
) -> T:
    """Build the engine components on the configured DB, run ``fn``."""

    async def _run() -> T:
        from sqlalchemy.ext.asyncio import async_sessionmaker

        from fleetwatch.api.app_state import build_state, sql_repos
        from fleetwatch.config import create_app_engine
        from fleetwatch.models.base import Base
        from fleetwatch.observability import initialize_telemetry

        settings = Settings()
        engine = create_app_engine(settings.database_url)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            session_factory = async_sessionmaker(
                engine, expire_on_commit=False
            )
            state = build_state(
                settings,
                sql_repos(session_factory),
                initialize_telemetry(settings),
                session_factory=session_factory,
            )
            return await fn(state)
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def _run_sweep(args: argparse.Namespace) -> None:
    async def sweep(state: AppState) -> tuple[list[str], int]:
        forced = await state.reconciler.sweep()
        pruned = (
            await state.reconciler.cleanup_old_heartbeats()
            if args.prune
            else 0
        )
        return forced, pruned

    forced, pruned = _with_state(sweep)
    if forced:
        print(f"Marked offline: {', '.join(forced)}")
    else:
        print("All agents within heartbeat threshold")
    if args.prune:
        print(f"Pruned {pruned} heartbeat rows")


def _run_report(args: argparse.Namespace) -> None:
    if args.days < 1:
        print("Error: --days must be at least 1", file=sys.stderr)
        sys.exit(1)

    async def build(state: AppState) -> dict[str, Any]:
        return await state.analytics.report(args.days)

    report = _with_state(build)

    if args.format == "json":
        print(json.dumps(report, indent=2))
    elif args.format == "csv":
        from fleetwatch.analytics.reductions import export_csv

        sys.stdout.write(export_csv(report["trends"]))
    else:
        print(_format_text(report))


def _format_text(report: dict[str, Any]) -> str:
    from fleetwatch.costing.calculator import format_cost

    window = report["window"]
    totals = report["totals"]
    forecast = report["forecast"]
    lines = [
        f"Cost report: last {window['days']} days",
        f"  Activities: {totals['activities']}",
        f"  Tokens:     {totals['total_tokens']:,}",
        f"  Cost:       {format_cost(totals['cost'])}",
        "",
        "Daily trend:",
    ]
    for point in report["trends"]:
        lines.append(
            f"  {point['date']}  {format_cost(point['cost']):>10}"
            f"  {point['tokens']:>10,} tokens"
        )
    if not report["trends"]:
        lines.append("  (no activity)")

    lines += ["", "Anomalies:"]
    for anomaly in report["anomalies"]:
        lines.append(
            f"  [{anomaly['severity']}] {anomaly['description']}"
        )
    if not report["anomalies"]:
        lines.append("  none")

    lines += [
        "",
        "Forecast:",
        f"  Month to date:     {format_cost(forecast['current_spend'])}",
        f"  Projected monthly: {format_cost(forecast['projected_monthly'])}",
        f"  Monthly budget:    {format_cost(forecast['monthly_budget'])}",
        f"  At risk:           {'yes' if forecast['at_risk'] else 'no'}",
    ]
    return "\n".join(lines)


if __name__ == "__main__":
    main()
