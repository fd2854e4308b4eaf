"""
Cache admin script.

    python -m market_cache health
    python -m market_cache stats
    python -m market_cache invalidate search:
    python -m market_cache user-changed 42
"""
import argparse
import asyncio
import json
import sys
from dataclasses import asdict

from market_cache.cache.service import cache_context
from market_cache.config.logging_config import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="market_cache", description="Inspect and invalidate the marketplace cache"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Write/read/delete a probe key")
    sub.add_parser("stats", help="Count cached keys per namespace")

    invalidate = sub.add_parser("invalidate", help="Delete every key under a prefix")
    invalidate.add_argument("prefix", help='Key prefix, e.g. "search:" or "category:"')

    user_changed = sub.add_parser("user-changed", help="Drop a user's cached profile")
    user_changed.add_argument("user_id", type=int)

    return parser


async def run(args: argparse.Namespace) -> dict:
    async with cache_context() as cache:
        if args.command == "health":
            return await cache.health_check()
        if args.command == "stats":
            return await cache.get_cache_stats()
        if args.command == "invalidate":
            report = await cache.coordinator.invalidator.invalidate_by_prefix(args.prefix)
            return asdict(report)
        return await cache.on_user_change(args.user_id)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    result = asyncio.run(run(args))
    print(json.dumps(result, indent=2, default=str))

    if args.command == "health" and result.get("status") != "ok":
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
