from __future__ import annotations

import contextlib
from typing import Iterator

import grpc

from . import nodeapi
from .decode import summarize_round
from .harness.context import Context
from .harness.params import RandomHeights
from .harness.pipeline import Stage, StagedPipeline

SAPPHIRE_RUNTIME_ID = "000000000000000000000000000000000000000000000000f80306c9858e7279"

# Rounds known to be retained by public archive nodes.
MIN_HEIGHT = 500_000
MAX_HEIGHT = 899_999


def random_heights(
    lo: int = MIN_HEIGHT,
    hi: int = MAX_HEIGHT,
    seed: int | None = None,
) -> RandomHeights:
    return RandomHeights(lo, hi, seed=seed)


def build_pipeline(
    url: str,
    credentials: grpc.ChannelCredentials | None,
    runtime_id: str = SAPPHIRE_RUNTIME_ID,
) -> StagedPipeline:
    """GetBlock, GetTransactionsWithResults and GetEvents for one round, on a fresh connection."""
    namespace = nodeapi.parse_namespace(runtime_id)

    @contextlib.contextmanager
    def connect(ctx: Context) -> Iterator[nodeapi.RuntimeClient]:
        with nodeapi.dial(ctx, url, credentials) as connection:
            yield nodeapi.RuntimeClient(connection)

    def get_block(ctx: Context, client: nodeapi.RuntimeClient, height: int) -> dict:
        return client.get_block(ctx, namespace, height)

    def get_transactions(ctx: Context, client: nodeapi.RuntimeClient, height: int) -> list:
        return client.get_transactions_with_results(ctx, namespace, height)

    def get_events(ctx: Context, client: nodeapi.RuntimeClient, height: int) -> list:
        return client.get_events(ctx, namespace, height)

    return StagedPipeline(
        connect=connect,
        stages=[
            Stage("get-block", get_block),
            Stage("get-transactions", get_transactions),
            Stage("get-events", get_events),
        ],
        decode=summarize_round,
    )


__all__ = [
    "MAX_HEIGHT",
    "MIN_HEIGHT",
    "SAPPHIRE_RUNTIME_ID",
    "build_pipeline",
    "random_heights",
]
