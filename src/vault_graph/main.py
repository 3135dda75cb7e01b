#!/usr/bin/env python
"""Command line entry point for the vault link graph."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from vault_graph import __version__
from vault_graph.config import config
from vault_graph.exceptions import VaultGraphError
from vault_graph.models.db_models import init_db
from vault_graph.observability import configure_logging
from vault_graph.services.graph_service import GraphService
from vault_graph.storage.index_cache import IndexCache


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="vault-graph",
        description="Bidirectional link graph for a markdown vault",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--vault-dir",
        help="Vault directory to index",
        type=str,
        default=os.environ.get("VAULT_GRAPH_VAULT_DIR")
    )
    parser.add_argument(
        "--cache-path",
        help="SQLite index cache file (omit to rebuild from scratch)",
        type=str,
        default=os.environ.get("VAULT_GRAPH_CACHE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("VAULT_GRAPH_LOG_LEVEL", "WARNING")
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("report", help="Broken links, ambiguities and orphans")
    backlinks = commands.add_parser("backlinks", help="Links into a note")
    backlinks.add_argument("note_id")
    outgoing = commands.add_parser("outgoing", help="Links out of a note")
    outgoing.add_argument("note_id")
    path = commands.add_parser("path", help="Shortest path between two notes")
    path.add_argument("source_id")
    path.add_argument("target_id")
    commands.add_parser("orphans", help="Notes without resolved links")
    resolve = commands.add_parser("resolve", help="Preview how link text resolves")
    resolve.add_argument("text")
    hubs = commands.add_parser("hubs", help="Most connected notes")
    hubs.add_argument("--limit", type=int, default=10)
    commands.add_parser("stats", help="Graph size, queue counters and operation timings")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.vault_dir:
        config.vault_dir = Path(args.vault_dir)
    if args.cache_path:
        config.cache_path = Path(args.cache_path)


def _edge_row(edge) -> dict:
    return {
        "source_id": edge.source_id,
        "target_id": edge.target_id,
        "raw": edge.token.raw,
        "alias": edge.alias,
        "anchor": edge.anchor,
        "span": list(edge.span),
    }


def run_command(service: GraphService, args) -> Any:
    """Execute one subcommand and return a JSON-compatible result."""
    if args.command == "report":
        return service.report().to_dict()
    if args.command == "backlinks":
        return [_edge_row(e) for e in service.backlinks(args.note_id)]
    if args.command == "outgoing":
        return [_edge_row(e) for e in service.outgoing(args.note_id)]
    if args.command == "path":
        return service.shortest_path(args.source_id, args.target_id)
    if args.command == "orphans":
        return service.orphans()
    if args.command == "resolve":
        return service.resolve(args.text).model_dump(mode="json")
    if args.command == "hubs":
        return [h.model_dump(mode="json") for h in service.hubs(args.limit)]
    if args.command == "stats":
        return service.get_stats()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Index the vault, run one query and print the result as JSON."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(level=log_level, console=True)
    except Exception as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
    logger = logging.getLogger(__name__)

    index_cache = None
    if config.cache_path is not None:
        try:
            index_cache = IndexCache(init_db())
        except Exception as e:
            logger.warning(f"Index cache unavailable, indexing from scratch: {e}")

    service = GraphService(config, index_cache=index_cache)
    try:
        service.load_vault()
        result = run_command(service, args)
    except VaultGraphError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        service.close()

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
