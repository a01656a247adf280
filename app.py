#!/usr/bin/env python3
"""
Ledger Block Indexer - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the indexer.

- Compatible with PM2 / systemd process management
- Safe to stop and restart at any point: progress is derived
  from the store, and replays are idempotent
- Wires chain client, store and ingestion pipeline together

============================================================
USAGE
============================================================
Follow the chain (bootstrap catch-up, then live mode):
    python app.py run

Fill a specific range:
    python app.py catch-up --start 1000 --end 2000

Process one block:
    python app.py process 123456

Create the store tables:
    python app.py init-db

Configuration comes from the environment (and .env); see
core/config.py.

============================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from chain_client.substrate import SubstrateChainClient
from core.config import IndexerConfig
from core.exceptions import ConfigurationError
from core.logging_setup import setup_logging
from storage.block_store import BlockStore
from storage.engine import create_store_engine
from block_ingestion.service import IndexerService


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-indexer",
        description="Finalized ledger block indexer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       - Bootstrap catch-up, then follow finalized heads (default)
  catch-up  - Process every unprocessed height in a range and exit
  process   - Process a single height and exit
  init-db   - Create the store tables and exit

Examples:
  %(prog)s run
  %(prog)s catch-up --start 1 --end 50000
  %(prog)s process 123456 --log-level DEBUG
        """
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Logging format (default: LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Bootstrap, then follow finalized heads")

    catch_up = subparsers.add_parser("catch-up", help="Process a height range")
    catch_up.add_argument("--start", type=int, required=True, metavar="HEIGHT")
    catch_up.add_argument("--end", type=int, required=True, metavar="HEIGHT")

    process = subparsers.add_parser("process", help="Process a single height")
    process.add_argument("height", type=int, metavar="HEIGHT")

    subparsers.add_parser("init-db", help="Create the store tables")

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if args.command == "catch-up":
        if args.start < 0:
            errors.append("--start must not be negative")
        if args.end < args.start:
            errors.append("--end must not be lower than --start")

    if args.command == "process" and args.height < 0:
        errors.append("HEIGHT must not be negative")

    return errors


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args: argparse.Namespace, config: IndexerConfig) -> int:
    """
    Run the selected command.

    Args:
        args: Parsed CLI arguments
        config: Validated configuration

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    store = BlockStore(create_store_engine(config), start_height=config.start_block)
    chain: Optional[SubstrateChainClient] = None

    try:
        await store.initialize()
        if args.command == "init-db":
            return 0

        chain = SubstrateChainClient(
            config.rpc_node,
            pool_size=config.chain_pool_size,
            ss58_format=config.ss58_format,
            type_registry_path=config.type_registry_path,
        )
        service = IndexerService.from_config(config, chain, store)

        if args.command == "catch-up":
            result = await service.catch_up(args.start, args.end)
            return 0 if result.completed else 1

        if args.command == "process":
            await service.process(args.height)
            return 0

        logger.info(f"Indexing {config.rpc_node} from block {config.start_block}")
        await service.run()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        if chain is not None:
            await chain.close()
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = IndexerConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2

    setup_logging(
        level=args.log_level or config.log_level,
        log_format=args.log_format or config.log_format,
    )

    try:
        return asyncio.run(run_application(args, config))
    except KeyboardInterrupt:
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
