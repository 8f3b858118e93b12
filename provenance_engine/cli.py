"""
Provenance Engine - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line access to the provenance engine.

- Prints the ownership history of one asset
- Prints the recent activity feed
- Serves the HTTP API
- Runs against a live JSON-RPC endpoint or a built-in demo ledger

============================================================
USAGE
============================================================
python -m provenance_engine.cli history 7
python -m provenance_engine.cli --network u2u activity --limit 20
python -m provenance_engine.cli --demo --json history 1
python -m provenance_engine.cli serve --port 8000

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

from provenance_engine.config import ProvenanceConfig
from provenance_engine.exceptions import ConfigurationError, NotFoundError, ProvenanceError
from provenance_engine.logging_utils import mask_url, setup_logging
from provenance_engine.mock import build_demo_ledger
from provenance_engine.service import ProvenanceService, create_service


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="provenance",
        description="Reconstruct crop batch ownership history from ledger events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  success
  1  engine or configuration error
  2  asset not found

Examples:
  %(prog)s history 7                     # History of asset 7
  %(prog)s activity --limit 20           # 20 most recent events
  %(prog)s --demo history 1              # Use the built-in sample ledger
        """
    )

    # --------------------------------------------------------
    # Source Options
    # --------------------------------------------------------
    source_group = parser.add_argument_group("Source Options")

    source_group.add_argument(
        "--network", "-n",
        type=str,
        default=None,
        help="Network name (default: ACTIVE_NETWORK or lisk)",
    )

    source_group.add_argument(
        "--rpc-url",
        type=str,
        metavar="URL",
        help="Override the network's JSON-RPC endpoint",
    )

    source_group.add_argument(
        "--demo",
        action="store_true",
        help="Use an in-memory sample ledger instead of a live node",
    )

    # --------------------------------------------------------
    # Output Options
    # --------------------------------------------------------
    output_group = parser.add_argument_group("Output Options")

    output_group.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of a table",
    )

    output_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    commands = parser.add_subparsers(dest="command", required=True)

    history = commands.add_parser("history", help="Ownership history of one asset")
    history.add_argument("asset_id", type=int, help="Token id of the asset")

    activity = commands.add_parser("activity", help="Recent events across assets")
    activity.add_argument(
        "--limit", "-l",
        type=int,
        default=None,
        help="Maximum number of events (default: 10)",
    )

    serve = commands.add_parser("serve", help="Serve the HTTP API")
    serve.add_argument("--host", type=str, default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    return parser


# ============================================================
# SERVICE CONSTRUCTION
# ============================================================

def build_service(args: argparse.Namespace) -> ProvenanceService:
    """Build the service the arguments describe."""
    config = ProvenanceConfig.from_env()
    if args.network:
        config.network = args.network

    if args.demo:
        ledger = build_demo_ledger()
        return ProvenanceService(ledger, config, contract_address=ledger.contract)

    network = config.get_network()
    logger.info(
        f"Using network {network.name} (chain {network.chain_id}) "
        f"via {mask_url(args.rpc_url or network.rpc_url)}"
    )
    return create_service(config, rpc_url=args.rpc_url)


# ============================================================
# OUTPUT
# ============================================================

def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _print_events(events) -> None:
    for event in events:
        print(
            f"  {_format_time(event.timestamp)}  #{event.asset_id:<6d} "
            f"{event.kind.value:11s} {event.from_address} -> {event.to_address}  "
            f"(block {event.block_number})"
        )


def print_history(history) -> None:
    print()
    print("=" * 60)
    print(f"  ASSET #{history.asset_id}")
    print("=" * 60)
    print(f"  Minter:        {history.minter}")
    print(f"  Current owner: {history.current_owner}")
    print(f"  Transfers:     {history.transfer_count}")
    if history.dropped_events:
        print(f"  Dropped:       {history.dropped_events} (history may be incomplete)")
    mint = next((e for e in history.events if e.is_mint), None)
    if mint is not None and mint.metadata:
        print(f"  Crop type:     {mint.metadata.get('crop_type')}")
        print(f"  Quantity:      {mint.metadata.get('quantity')}")
    print("-" * 60)
    _print_events(history.events)
    print()


def print_feed(feed) -> None:
    print()
    print(f"Recent activity ({len(feed)} of limit {feed.limit})")
    print("-" * 60)
    _print_events(feed.events)
    if feed.excluded_assets:
        print(f"  Excluded assets: {', '.join(str(a) for a in feed.excluded_assets)}")
    print()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Run one query command.

    Returns:
        Exit code
    """
    try:
        service = build_service(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    async with service:
        try:
            if args.command == "history":
                history = await service.get_history(args.asset_id)
                if args.json:
                    print(json.dumps(history.to_dict(), indent=2))
                else:
                    print_history(history)
            else:
                feed = await service.get_recent_activity(limit=args.limit)
                if args.json:
                    print(json.dumps(feed.to_dict(), indent=2))
                else:
                    print_feed(feed)
        except NotFoundError as e:
            print(f"Not found: {e.message}", file=sys.stderr)
            return EXIT_NOT_FOUND
        except (ProvenanceError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_ERROR

    return EXIT_OK


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from provenance_engine.api import create_app

    try:
        service = build_service(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    uvicorn.run(create_app(service), host=args.host, port=args.port)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level)

    if args.command == "serve":
        return serve(args)
    return asyncio.run(async_main(args))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
