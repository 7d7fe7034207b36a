#!/usr/bin/env python3
"""
=========================================================
     🚀 Backrun Bundle Executor - Multi-Relay Submission
=========================================================

Builds both trade-direction backrun bundles for a victim transaction and
races them to the primary relay plus the configured alternates.

Usage:
    python main.py <pair_a> <pair_b> <victim_tx_hash>
    python main.py <pair_a> <pair_b> <victim_tx_hash> --dry-run --debug
"""

import argparse
import asyncio
import logging
import sys

import aiohttp
import orjson

from backrun.config_loader import ConfigLoader, ConfigValidationError
from backrun.executor import BundleExecutor
from backrun.journal import SubmissionJournal
from backrun.network import ChainProvider

logger = logging.getLogger("backrun")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Backrun Bundle Executor - submit both direction bundles to every relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py 0xPairA 0xPairB 0xVictimTxHash
  python main.py 0xPairA 0xPairB 0xVictimTxHash --journal
  python main.py 0xPairA 0xPairB 0xVictimTxHash --dry-run
        """
    )
    parser.add_argument("pair_a", help="First pair address")
    parser.add_argument("pair_b", help="Second pair address")
    parser.add_argument("tx_hash", help="Victim transaction hash to backrun")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to relays.json (default: config/relays.json)")
    parser.add_argument("--env", type=str, default=None,
                        help="Path to .env file (default: project root .env)")
    parser.add_argument("--journal", action="store_true",
                        help="Append every relay outcome to logs/submission_history.csv")
    parser.add_argument("--dry-run", action="store_true",
                        help="Build and print both bundles without sending them")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


async def run(args: argparse.Namespace) -> int:
    loader = ConfigLoader(config_path=args.config, env_path=args.env)
    config = loader.get_executor_config()
    if config.debug_mode:
        logging.getLogger().setLevel(logging.DEBUG)

    hooks = [SubmissionJournal()] if args.journal else []

    async with ChainProvider(config) as provider:
        async with aiohttp.ClientSession() as session:
            executor = BundleExecutor.from_config(config, provider, session=session, outcome_hooks=hooks)
            async with executor:
                if args.dry_run:
                    bundles = await executor.build_bundles(args.pair_a, args.pair_b, args.tx_hash)
                    for bundle in bundles:
                        print(orjson.dumps(bundle.to_dict(), option=orjson.OPT_INDENT_2).decode())
                    return 0

                report = await executor.execute(args.pair_a, args.pair_b, args.tx_hash)

    for index, status in enumerate(report.bundle_statuses):
        print(f"  Bundle {index}: {status.value}")
    if report.all_primary_failed:
        print("\n❌ Primary relay rejected every bundle")
        return 1
    return 0


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.debug)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n\n⚠️ Cancelled by user")
        sys.exit(0)
    except ConfigValidationError as e:
        print(f"\n❌ Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        logger.exception(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
