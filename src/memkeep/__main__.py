"""Entry point: python -m memkeep <command> [scope]

Maintenance commands for hosts and cron jobs. Output is the JSON form of the
operation result; the exit code is non-zero when the operation failed.
"""

from __future__ import annotations

import json
import logging
import sys

from memkeep.config import load_config

COMMANDS = ("health", "repair", "reindex", "list", "audit", "sync-links", "prune")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    cmd = args[0] if args else ""
    scope = args[1] if len(args) > 1 else None

    if cmd not in COMMANDS:
        print("Usage: python -m memkeep <command> [scope]")
        print("  health      Consistency report for a scope")
        print("  repair      Rebuild index, resync graph and links, refresh embeddings")
        print("  reindex     Rebuild index.json from the memory files")
        print("  list        List memories (all accessible scopes if none given)")
        print("  audit       Quality score for every memory in a scope")
        print("  sync-links  Rewrite links headers from the graph")
        print("  prune       Delete expired breadcrumbs (prune_ttl_days)")
        return 1

    config = load_config()
    _setup_logging(config.log_level)

    from memkeep.core import Memkeep

    service = Memkeep(config)
    result = {
        "health": lambda: service.health(scope),
        "repair": lambda: service.repair(scope),
        "reindex": lambda: service.reindex(scope),
        "list": lambda: service.list(scope=scope),
        "audit": lambda: service.audit(scope),
        "sync-links": lambda: service.sync_links(scope),
        "prune": lambda: service.prune(scope),
    }[cmd]()
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.ok else 2


if __name__ == "__main__":
    sys.exit(main())
