from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from typing import Any

from glocal.config import get_settings
from glocal.runtime import CoreServices, build_core_services, configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="glocal", description="Glocal cache and API budget maintenance")
    parser.add_argument("--config", "-c", help="Path to configuration file", default=None)
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("monitor-budgets", help="Check every monitored service and raise budget alerts")
    subcommands.add_parser("cache-stats", help="Print cache statistics")
    subcommands.add_parser("prune-tags", help="Remove tag index members whose entry is gone")

    invalidate = subcommands.add_parser("invalidate-tags", help="Invalidate every entry carrying the given tags")
    invalidate.add_argument("tags", nargs="+")
    return parser


async def run_command(services: CoreServices, args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "monitor-budgets":
        alerts = await services.budget_monitor.monitor_budget_alerts()
        return {"alerts": [alert.model_dump(mode="json") for alert in alerts]}
    if args.command == "cache-stats":
        return asdict(await services.cache.get_stats())
    if args.command == "prune-tags":
        return {"removed": await services.cache.prune_tag_index()}
    if args.command == "invalidate-tags":
        return {"removed": await services.cache.invalidate_by_tags(args.tags)}
    raise ValueError(f"unknown command: {args.command}")


async def _main(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    if args.config:
        settings = settings.model_copy(update={"config_path": args.config})
    configure_logging(settings.log_level)

    services = await build_core_services(settings)
    try:
        return await run_command(services, args)
    finally:
        await services.close()


def cli() -> None:
    args = build_parser().parse_args()
    result = asyncio.run(_main(args))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    cli()
