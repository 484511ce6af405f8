from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path

from . import nodeapi, sapphire
from .harness.collector import ResultCollector, format_run_summary, format_stage_summary
from .harness.config import (
    DEFAULT_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_URL,
    ConfigError,
    RunConfig,
    parse_duration,
)
from .harness.context import Context
from .harness.scheduler import run_load

LOGGER = logging.getLogger("spam_getblock.main")

REPORT_LEVELS = {
    "all": (True, True),
    "timing": (True, False),
    "blockdata": (False, True),
    "errors": (False, False),
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fire concurrent Sapphire GetBlock sequences at an Oasis node and time each stage"
    )
    parser.add_argument("--url", default=os.environ.get("SPAM_URL", DEFAULT_URL), help="gRPC endpoint")
    parser.add_argument(
        "-n",
        dest="requests",
        type=int,
        default=int(os.environ.get("SPAM_REQUESTS", "1")),
        help="Number of requests (one task each)",
    )
    parser.add_argument(
        "--delay",
        default=os.environ.get("SPAM_DELAY", DEFAULT_DELAY),
        help="Delay between request launches (e.g. 0s, 50ms)",
    )
    parser.add_argument(
        "--timeout",
        default=os.environ.get("SPAM_TIMEOUT", DEFAULT_TIMEOUT),
        help="Timeout for each request (e.g. 60s, 1m30s)",
    )
    parser.add_argument("--min-height", type=int, default=sapphire.MIN_HEIGHT)
    parser.add_argument("--max-height", type=int, default=sapphire.MAX_HEIGHT)
    parser.add_argument("--seed", type=int, help="Seed for reproducible heights")
    parser.add_argument(
        "--ca-cert",
        default=os.environ.get("SPAM_CA_CERT"),
        help="PEM file with root certificates (system roots by default)",
    )
    parser.add_argument("--insecure", action="store_true", help="Dial without TLS")
    parser.add_argument(
        "--report",
        choices=sorted(REPORT_LEVELS),
        default="all",
        help="Per-task output: stage timings, block data, both, or errors only",
    )
    parser.add_argument("--stats", action="store_true", help="Print per-stage latency percentiles")
    parser.add_argument("--chart", type=Path, help="Write a per-stage latency chart to this PNG path")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("SPAM_LOG_LEVEL", "WARNING"),
        help="Logging level",
    )
    args = parser.parse_args(argv)

    try:
        args.config = RunConfig(
            url=args.url,
            concurrency=args.requests,
            delay_s=parse_duration(args.delay),
            timeout_s=parse_duration(args.timeout),
        )
    except ConfigError as exc:
        parser.error(str(exc))
    if args.min_height > args.max_height:
        parser.error(f"--min-height {args.min_height} exceeds --max-height {args.max_height}")
    try:
        args.credentials = None if args.insecure else nodeapi.create_credentials(args.ca_cert)
    except OSError as exc:
        parser.error(f"--ca-cert: {exc}")
    return args


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    config: RunConfig = args.config

    pipeline = sapphire.build_pipeline(config.url, args.credentials)
    heights = sapphire.random_heights(args.min_height, args.max_height, seed=args.seed)
    show_timings, show_messages = REPORT_LEVELS[args.report]
    collector = ResultCollector(show_timings=show_timings, show_messages=show_messages)

    root = Context.background()

    def interrupt(signum, frame) -> None:
        print("stopping: cancelling in-flight requests", file=sys.stderr)
        root.cancel()

    previous_handler = signal.signal(signal.SIGINT, interrupt)
    try:
        stats = run_load(config, pipeline, heights, root=root, collector=collector)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(format_run_summary(stats))

    if args.stats:
        print()
        print(format_stage_summary(collector.stage_summary()))

    if args.chart:
        from .harness.charts import render_stage_chart

        render_stage_chart(collector.build_dataframe(), args.chart)

    # Task failures are reported above, never through the exit status.
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
