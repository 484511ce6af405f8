from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Sequence

import cbor2
import grpc

from .harness.context import Context, ContextCancelled, DeadlineExceeded

LOGGER = logging.getLogger("spam_getblock.nodeapi")

HEIGHT_LATEST = 0
NAMESPACE_SIZE = 32

RUNTIME_CLIENT_SERVICE = "oasis-core.RuntimeClient"
CONSENSUS_SERVICE = "oasis-core.Consensus"
BEACON_SERVICE = "oasis-core.Beacon"
REGISTRY_SERVICE = "oasis-core.Registry"
ROOTHASH_SERVICE = "oasis-core.RootHash"

_SETTLED_STATES = frozenset(
    {
        grpc.ChannelConnectivity.READY,
        grpc.ChannelConnectivity.TRANSIENT_FAILURE,
        grpc.ChannelConnectivity.SHUTDOWN,
    }
)


class NodeAPIError(Exception):
    """Raised when the node rejects or fails a method call."""

    def __init__(self, method: str, code: grpc.StatusCode | None, details: str | None) -> None:
        self.method = method
        self.code = code
        self.details = details
        name = code.name if code is not None else "UNKNOWN"
        super().__init__(f"{method}: {name}: {details or 'no details'}")


class NodeUnavailableError(Exception):
    """Raised when the channel to the node failed or shut down before becoming ready."""


def parse_namespace(value: str) -> bytes:
    """Decode a hex runtime identifier into its 32 raw bytes."""
    raw = bytes.fromhex(value)
    if len(raw) != NAMESPACE_SIZE:
        raise ValueError(f"namespace must be {NAMESPACE_SIZE} bytes, got {len(raw)}")
    return raw


def create_credentials(ca_cert: str | Path | None = None) -> grpc.ChannelCredentials:
    """TLS credentials trusting ``ca_cert`` (PEM) or the system roots when omitted."""
    root_certificates = Path(ca_cert).expanduser().read_bytes() if ca_cert else None
    return grpc.ssl_channel_credentials(root_certificates=root_certificates)


def dial(
    ctx: Context,
    target: str,
    credentials: grpc.ChannelCredentials | None,
    options: Sequence[tuple[str, Any]] | None = None,
) -> NodeConnection:
    """Open a channel to ``target`` and wait for its first settled connectivity state.

    READY yields a connection. TRANSIENT_FAILURE or SHUTDOWN raise
    :class:`NodeUnavailableError` straight away instead of retrying until
    ``ctx`` runs out. ``credentials=None`` dials without TLS.
    """
    if credentials is None:
        channel = grpc.insecure_channel(target, options=options)
    else:
        channel = grpc.secure_channel(target, credentials, options=options)

    settled = threading.Event()
    observed: list[grpc.ChannelConnectivity] = []

    def on_state(state: grpc.ChannelConnectivity) -> None:
        if state in _SETTLED_STATES and not settled.is_set():
            observed.append(state)
            settled.set()

    ctx.add_callback(settled.set)
    channel.subscribe(on_state, try_to_connect=True)
    try:
        while not settled.is_set() and not ctx.done():
            settled.wait(timeout=ctx.remaining())
    finally:
        channel.unsubscribe(on_state)
        ctx.remove_callback(settled.set)

    if observed and observed[0] is grpc.ChannelConnectivity.READY:
        LOGGER.debug("Connected to %s", target)
        return NodeConnection(target, channel)

    channel.close()
    if observed:
        LOGGER.debug("Channel to %s went %s", target, observed[0].name)
        raise NodeUnavailableError(f"dial {target}: {observed[0].name}")
    if ctx.deadline_exceeded():
        raise DeadlineExceeded(f"dial {target}: deadline exceeded")
    raise ContextCancelled(f"dial {target}: cancelled")


class NodeConnection:
    """An open channel to one node; closing it releases the transport."""

    def __init__(self, target: str, channel: grpc.Channel) -> None:
        self.target = target
        self._channel = channel

    def invoke(self, ctx: Context, service: str, method: str, request: Any = None) -> Any:
        """Call ``service/method`` with a CBOR body, bounded by ``ctx``."""
        ctx.check()
        path = f"/{service}/{method}"
        call = self._channel.unary_unary(
            path,
            request_serializer=cbor2.dumps,
            response_deserializer=cbor2.loads,
        )
        future = call.future(request, timeout=ctx.remaining())
        ctx.add_callback(future.cancel)
        try:
            return future.result()
        except grpc.FutureCancelledError as exc:
            raise ContextCancelled(f"{path}: cancelled") from exc
        except grpc.RpcError as exc:
            code = exc.code()
            if code == grpc.StatusCode.DEADLINE_EXCEEDED:
                raise DeadlineExceeded(f"{path}: deadline exceeded") from exc
            if code == grpc.StatusCode.CANCELLED and ctx.done():
                raise ContextCancelled(f"{path}: cancelled") from exc
            raise NodeAPIError(path, code, exc.details()) from exc
        finally:
            ctx.remove_callback(future.cancel)

    def close(self) -> None:
        self._channel.close()
        LOGGER.debug("Closed connection to %s", self.target)

    def __enter__(self) -> NodeConnection:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RuntimeClient:
    def __init__(self, connection: NodeConnection) -> None:
        self._connection = connection

    def get_block(self, ctx: Context, runtime_id: bytes, round_: int) -> dict:
        return self._connection.invoke(
            ctx, RUNTIME_CLIENT_SERVICE, "GetBlock", {"runtime_id": runtime_id, "round": round_}
        )

    def get_transactions_with_results(self, ctx: Context, runtime_id: bytes, round_: int) -> list:
        response = self._connection.invoke(
            ctx,
            RUNTIME_CLIENT_SERVICE,
            "GetTransactionsWithResults",
            {"runtime_id": runtime_id, "round": round_},
        )
        return list(response or [])

    def get_events(self, ctx: Context, runtime_id: bytes, round_: int) -> list:
        response = self._connection.invoke(
            ctx, RUNTIME_CLIENT_SERVICE, "GetEvents", {"runtime_id": runtime_id, "round": round_}
        )
        return list(response or [])


class ConsensusClient:
    def __init__(self, connection: NodeConnection) -> None:
        self._connection = connection

    def get_block(self, ctx: Context, height: int = HEIGHT_LATEST) -> dict:
        return self._connection.invoke(ctx, CONSENSUS_SERVICE, "GetBlock", height)

    def get_chain_context(self, ctx: Context) -> str:
        return self._connection.invoke(ctx, CONSENSUS_SERVICE, "GetChainContext")


class BeaconClient:
    def __init__(self, connection: NodeConnection) -> None:
        self._connection = connection

    def get_base_epoch(self, ctx: Context) -> int:
        return self._connection.invoke(ctx, BEACON_SERVICE, "GetBaseEpoch")


class RegistryClient:
    def __init__(self, connection: NodeConnection) -> None:
        self._connection = connection

    def get_runtimes(self, ctx: Context, height: int, include_suspended: bool = False) -> list:
        response = self._connection.invoke(
            ctx,
            REGISTRY_SERVICE,
            "GetRuntimes",
            {"height": height, "include_suspended": include_suspended},
        )
        return list(response or [])


class RootHashClient:
    def __init__(self, connection: NodeConnection) -> None:
        self._connection = connection

    def get_runtime_state(self, ctx: Context, runtime_id: bytes, height: int) -> dict:
        return self._connection.invoke(
            ctx, ROOTHASH_SERVICE, "GetRuntimeState", {"runtime_id": runtime_id, "height": height}
        )


__all__ = [
    "HEIGHT_LATEST",
    "NodeAPIError",
    "NodeUnavailableError",
    "NodeConnection",
    "BeaconClient",
    "ConsensusClient",
    "RegistryClient",
    "RootHashClient",
    "RuntimeClient",
    "create_credentials",
    "dial",
    "parse_namespace",
]
