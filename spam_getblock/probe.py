from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from typing import TextIO

from . import nodeapi
from .harness.config import ConfigError, parse_duration
from .harness.context import Context, ContextCancelled
from .main import setup_logging

LOGGER = logging.getLogger("spam_getblock.probe")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print a one-shot status report for an Oasis node")
    parser.add_argument("url", help="gRPC endpoint, e.g. grpc.oasiscloud.io:443")
    parser.add_argument(
        "--timeout",
        default=os.environ.get("SPAM_TIMEOUT", "60s"),
        help="Deadline for the whole probe (e.g. 30s, 1m)",
    )
    parser.add_argument(
        "--ca-cert",
        default=os.environ.get("SPAM_CA_CERT"),
        help="PEM file with root certificates (system roots by default)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Dial without TLS",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("SPAM_LOG_LEVEL", "WARNING"),
        help="Logging level",
    )
    args = parser.parse_args(argv)
    try:
        args.timeout_s = parse_duration(args.timeout)
    except ConfigError as exc:
        parser.error(str(exc))
    try:
        args.credentials = None if args.insecure else nodeapi.create_credentials(args.ca_cert)
    except OSError as exc:
        parser.error(f"--ca-cert: {exc}")
    return args


def report_node_status(ctx: Context, connection: nodeapi.NodeConnection, out: TextIO | None = None) -> bool:
    """Print epoch, height, runtimes and chain context; False if the probe had to stop early."""
    out = out or sys.stdout
    beacon = nodeapi.BeaconClient(connection)
    consensus = nodeapi.ConsensusClient(connection)
    registry = nodeapi.RegistryClient(connection)
    roothash = nodeapi.RootHashClient(connection)

    try:
        epoch = beacon.get_base_epoch(ctx)
    except (nodeapi.NodeAPIError, ContextCancelled) as exc:
        print(f"GetBaseEpoch error: {exc}", file=out)
        return False
    print(f"BaseEpoch: {epoch}", file=out)

    try:
        block = consensus.get_block(ctx, nodeapi.HEIGHT_LATEST)
    except (nodeapi.NodeAPIError, ContextCancelled) as exc:
        print(f"GetBlock error: {exc}", file=out)
        return False
    try:
        height = int(block["height"])
    except (KeyError, TypeError, ValueError) as exc:
        print(f"GetBlock error: unexpected response: {exc!r}", file=out)
        return False
    print(f"LatestHeight: {height}", file=out)

    try:
        runtimes = registry.get_runtimes(ctx, height, include_suspended=False)
    except (nodeapi.NodeAPIError, ContextCancelled) as exc:
        print(f"GetRuntimes error: {exc}", file=out)
        return False
    try:
        runtime_ids = _runtime_ids(runtimes)
    except (KeyError, TypeError) as exc:
        print(f"GetRuntimes error: unexpected response: {exc!r}", file=out)
        return False

    print("Runtimes:", file=out)
    for runtime_id in runtime_ids:
        try:
            state = roothash.get_runtime_state(ctx, runtime_id, height)
        except (nodeapi.NodeAPIError, ContextCancelled) as exc:
            print(f"\t{runtime_id.hex()}", file=out)
            print(f"GetRuntimeState error: {exc}", file=out)
            continue
        print(f"\t{runtime_id.hex()}\t{_block_time(state)}", file=out)

    try:
        chain_context = consensus.get_chain_context(ctx)
    except (nodeapi.NodeAPIError, ContextCancelled) as exc:
        print(f"GetChainContext error: {exc}", file=out)
        chain_context = ""
    print(f"ChainContext: {chain_context}", file=out)
    return True


def _runtime_ids(runtimes) -> list[bytes]:
    ids = []
    for runtime in runtimes:
        runtime_id = runtime["id"]
        if not isinstance(runtime_id, bytes):
            raise TypeError(f"runtime id is {type(runtime_id).__name__}, not bytes")
        ids.append(runtime_id)
    return ids


def _block_time(state: dict) -> str:
    if not isinstance(state, dict):
        return "<unknown>"
    block = state.get("current_block") or state.get("last_block") or {}
    timestamp = (block.get("header") or {}).get("timestamp")
    if timestamp is None:
        return "<unknown>"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    with Context.background().with_timeout(args.timeout_s) as ctx:
        try:
            connection = nodeapi.dial(ctx, args.url, args.credentials)
        except (nodeapi.NodeUnavailableError, ContextCancelled) as exc:
            print(f"Dial error: {exc}")
            return 1
        with connection:
            ok = report_node_status(ctx, connection)
    return 0 if ok else 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
