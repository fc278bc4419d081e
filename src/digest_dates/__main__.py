from __future__ import annotations

import argparse

from .commands import (
    cmd_cache_cleanup,
    cmd_cache_invalidate,
    cmd_cache_stats,
    cmd_estimate,
    cmd_ping,
    cmd_resolve,
    configure_logging,
)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="digest_dates")
    p.add_argument("--log_level", required=False, default="INFO")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("ping", help="Sanity check: configs, env wiring, cache file")

    r = sub.add_parser("resolve", help="Show which filtering strategy handles a source")
    r.add_argument("--source", required=True)

    e = sub.add_parser("estimate", help="Estimate the publish date of one article URL")
    e.add_argument("--url", required=True)
    e.add_argument("--source", required=True)
    e.add_argument("--title", required=False, default="")
    e.add_argument("--position", required=False, type=int, default=0, help="Index within the feed batch")
    e.add_argument("--total", required=False, type=int, default=1, help="Size of the feed batch")
    e.add_argument("--fetch", action="store_true", help="Download the page for the content scan")

    s = sub.add_parser("cache-stats", help="Extraction method stats for a source from the date cache")
    s.add_argument("--source", required=True)
    s.add_argument("--days", required=False, type=int, default=7)

    sub.add_parser("cache-cleanup", help="Delete cache entries older than the retention window")

    i = sub.add_parser("cache-invalidate", help="Invalidate low-confidence cache entries")
    i.add_argument("--min_conf", required=False, type=float, default=None, help="Defaults to invalidation_floor")

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging(args.log_level)

    if args.command == "ping":
        cmd_ping()
        return

    if args.command == "resolve":
        cmd_resolve(args.source)
        return

    if args.command == "estimate":
        cmd_estimate(
            args.url,
            args.source,
            title=args.title,
            position=args.position,
            total=args.total,
            fetch=args.fetch,
        )
        return

    if args.command == "cache-stats":
        cmd_cache_stats(args.source, days=args.days)
        return

    if args.command == "cache-cleanup":
        cmd_cache_cleanup()
        return

    if args.command == "cache-invalidate":
        cmd_cache_invalidate(args.min_conf)
        return

    parser.error(f"Unknown command: {args.command}")


if __name__ == "__main__":
    main()
