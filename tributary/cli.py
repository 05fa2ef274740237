"""
cli.py - Command line entry point

    python -m tributary collect <asset> [--max-holders N] [--output holders.csv]
    python -m tributary simulate --asset <mint> --amount 1000 --holders holders.json
    python -m tributary distribute --asset <mint> --amount 1000 --holders holders.json --keypair id.json
    python -m tributary history [--limit 10]
    python -m tributary clear-cache

A .env file in the working directory is loaded before parameters are read.
On a TributaryError the process exits with the error's code.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from . import __version__
from .collector import CollectionOptions, WalletCollector, export_holders, load_holders
from .config import LOG_LEVELS, NETWORKS, TributaryParameters, load_parameters
from .core import (
    DistributionPolicy, DistributionRequest, ProgressUpdate, TributaryError,
)
from .executor import DistributionExecutor
from .history import DistributionLedger
from .holder_store import HolderStore
from .simulation import simulate
from .solana_client import KeypairSigner, SolanaLedgerClient
from .storage import FileStorage


logger = logging.getLogger(__name__)


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tributary", description="Distribute an asset to its holders")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="JSON parameters file")
    parser.add_argument("--network", choices=NETWORKS, help="Cluster to use (default from parameters)")
    parser.add_argument("--storage-dir", help="Directory for cache and run history")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Logging verbosity")
    sub = parser.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="Collect holders of a reference asset")
    collect.add_argument("asset", help="Mint address of the reference asset")
    collect.add_argument("--threshold", type=_decimal, default=Decimal("0"), help="Minimum balance")
    collect.add_argument("--max-holders", type=int, help="Keep only the N largest holders")
    collect.add_argument("--exclude", nargs="*", default=[], help="Owner addresses to exclude")
    collect.add_argument("--no-cache", action="store_true", help="Bypass the holder cache")
    collect.add_argument("--cache-ttl", type=int, help="Cache lifetime in seconds")
    collect.add_argument("--output", help="Export file (.json or .csv)")
    collect.add_argument("--format", choices=("json", "csv"), help="Export format (default: from extension)")

    for name, help_text in (("simulate", "Project cost, duration and risk"),
                            ("distribute", "Execute a distribution")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--asset", required=True, help="Mint address of the asset to distribute")
        cmd.add_argument("--amount", type=_decimal, required=True, help="Total amount to distribute")
        cmd.add_argument("--holders", required=True, help="Holders file written by 'collect'")
        cmd.add_argument("--policy", choices=[p.value for p in DistributionPolicy],
                         default=DistributionPolicy.PROPORTIONAL.value)
        cmd.add_argument("--min-balance", type=_decimal, default=Decimal("0"),
                         help="Holders below this balance receive nothing")
        cmd.add_argument("--batch-size", type=int, help="Recipients per batch")
        if name == "distribute":
            cmd.add_argument("--keypair", required=True, help="Solana CLI keypair file of the distributor")

    history = sub.add_parser("history", help="Show past runs")
    history.add_argument("--limit", type=int, help="Show only the N most recent runs")

    sub.add_parser("clear-cache", help="Delete cached holder snapshots")
    return parser


def _request(args: argparse.Namespace) -> DistributionRequest:
    return DistributionRequest(
        total_amount=args.amount,
        asset_address=args.asset,
        holders=tuple(load_holders(args.holders)),
        policy=DistributionPolicy(args.policy),
        minimum_holder_balance=args.min_balance,
        batch_size=args.batch_size,
    )


async def _collect(args: argparse.Namespace, params: TributaryParameters, storage: FileStorage) -> None:
    options = CollectionOptions(
        asset_address=args.asset,
        threshold=args.threshold,
        max_holders=args.max_holders,
        exclude_addresses=tuple(args.exclude),
        use_cache=not args.no_cache,
        cache_ttl_seconds=args.cache_ttl,
    )
    async with SolanaLedgerClient.for_network(params, args.network) as client:
        collector = WalletCollector(client, HolderStore(storage), params)
        holders = await collector.collect(options)

    print(f"Collected {len(holders)} holders of {args.asset}")
    for i, h in enumerate(holders[:10], 1):
        print(f"{i:3d}. {h.address}  {h.balance}  ({h.percentage:.4f}%)")
    if len(holders) > 10:
        print(f"     ... and {len(holders) - 10} more")
    if args.output:
        path = export_holders(holders, args.output, args.format)
        print(f"Exported to {path}")


def _simulate(args: argparse.Namespace, params: TributaryParameters) -> None:
    result = simulate(_request(args), params)
    b = result.breakdown
    print("Simulation")
    print(f"  Recipients:          {b.recipient_count}")
    print(f"  Total amount:        {b.total_amount}")
    print(f"  Average / min / max: {b.average_amount:.6f} / {b.min_amount} / {b.max_amount}")
    print(f"  Estimated cost:      {result.estimated_cost}")
    print(f"  Estimated duration:  {result.estimated_duration_seconds:.0f}s")
    for risk in result.risk_factors:
        print(f"  ! {risk}")


def _print_progress(update: ProgressUpdate) -> None:
    print(
        f"\r  {update.completed}/{update.total} "
        f"({update.successful} ok, {update.failed} failed, {update.rate:.1f}/s)",
        end="", flush=True,
    )


async def _distribute(args: argparse.Namespace, params: TributaryParameters, storage: FileStorage) -> int:
    request = _request(args)
    signer = KeypairSigner.from_file(args.keypair)
    async with SolanaLedgerClient.for_network(params, args.network) as client:
        executor = DistributionExecutor(client, signer, params, DistributionLedger(storage))
        report = await executor.validate(request)
        for warning in report.warnings:
            print(f"  warning: {warning}")
        if not report.is_valid:
            for error in report.errors:
                print(f"  error: {error}", file=sys.stderr)
            return 1
        run = await executor.execute(request, on_progress=_print_progress)

    print()
    print(f"Run {run.id}: {run.successful_count} confirmed, {run.failed_count} failed")
    print(f"  Distributed {run.total_distributed} of {request.total_amount}")
    failed = run.failed_recipients()
    if failed:
        print("  Failed recipients:")
        for outcome in failed:
            print(f"    {outcome.recipient}  {outcome.amount}  {outcome.error}")
        return 1
    return 0


def _history(args: argparse.Namespace, storage: FileStorage) -> None:
    runs = DistributionLedger(storage).history(args.limit)
    if not runs:
        print("No distributions recorded")
    for run in runs:
        print(
            f"{run.created_at:%Y-%m-%d %H:%M:%S}  {run.id}  {run.request.asset_address}  "
            f"{run.total_distributed}/{run.request.total_amount}  "
            f"{run.successful_count} ok  {run.failed_count} failed"
        )


def run(args: argparse.Namespace, params: TributaryParameters) -> int:
    storage = FileStorage(params.storage_dir)
    if args.command == "collect":
        asyncio.run(_collect(args, params, storage))
    elif args.command == "simulate":
        _simulate(args, params)
    elif args.command == "distribute":
        return asyncio.run(_distribute(args, params, storage))
    elif args.command == "history":
        _history(args, storage)
    elif args.command == "clear-cache":
        removed = HolderStore(storage).clear()
        print(f"Removed {removed} cache entries")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        params = load_parameters(args.config)
        overrides = {}
        if args.storage_dir:
            overrides['storage_dir'] = args.storage_dir
        if args.log_level:
            overrides['log_level'] = args.log_level
        if overrides:
            params = replace(params, **overrides)
        logging.basicConfig(
            level=params.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        return run(args, params)
    except TributaryError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return e.code


if __name__ == "__main__":
    sys.exit(main())
