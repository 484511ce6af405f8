from __future__ import annotations

import threading
import time

import cbor2
import grpc
import pytest

from spam_getblock import nodeapi
from spam_getblock.harness.context import Context, ContextCancelled, DeadlineExceeded


class FakeRpcError(grpc.RpcError):
    def __init__(self, code: grpc.StatusCode, details: str = "") -> None:
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class FakeFuture:
    def __init__(self, response=None, error: Exception | None = None, block: bool = False) -> None:
        self._response = response
        self._error = error
        self._block = block
        self._cancelled = threading.Event()

    def cancel(self) -> bool:
        self._cancelled.set()
        return True

    def result(self):
        if self._block:
            self._cancelled.wait(timeout=5)
            raise grpc.FutureCancelledError()
        if self._error is not None:
            raise self._error
        return self._response


class FakeChannel:
    """Records unary calls; ``responses`` maps method paths to fake futures."""

    def __init__(self, responses: dict[str, FakeFuture]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, object, float | None]] = []
        self.closed = False

    def unary_unary(self, path, request_serializer, response_deserializer):
        assert request_serializer is cbor2.dumps
        assert response_deserializer is cbor2.loads
        channel = self

        class _Callable:
            def future(self, request, timeout=None):
                channel.calls.append((path, request, timeout))
                return channel.responses[path]

        return _Callable()

    def close(self) -> None:
        self.closed = True


def _connection(responses: dict[str, FakeFuture]) -> tuple[nodeapi.NodeConnection, FakeChannel]:
    channel = FakeChannel(responses)
    return nodeapi.NodeConnection("node.test:443", channel), channel


def test_runtime_client_sends_namespace_and_round() -> None:
    connection, channel = _connection(
        {"/oasis-core.RuntimeClient/GetBlock": FakeFuture({"header": {"round": 5}})}
    )
    namespace = nodeapi.parse_namespace("00" * 31 + "01")

    with Context.background().with_timeout(2.0) as ctx:
        block = nodeapi.RuntimeClient(connection).get_block(ctx, namespace, 5)

    assert block == {"header": {"round": 5}}
    path, request, timeout = channel.calls[0]
    assert path == "/oasis-core.RuntimeClient/GetBlock"
    assert request == {"runtime_id": namespace, "round": 5}
    assert 0 < timeout <= 2.0


def test_list_methods_normalise_null_responses() -> None:
    connection, _ = _connection(
        {
            "/oasis-core.RuntimeClient/GetEvents": FakeFuture(None),
            "/oasis-core.RuntimeClient/GetTransactionsWithResults": FakeFuture([{"tx": b""}]),
        }
    )
    client = nodeapi.RuntimeClient(connection)
    ctx = Context.background()

    assert client.get_events(ctx, bytes(32), 1) == []
    assert client.get_transactions_with_results(ctx, bytes(32), 1) == [{"tx": b""}]


def test_deadline_exceeded_status_maps_to_deadline_exceeded() -> None:
    connection, _ = _connection(
        {
            "/oasis-core.Beacon/GetBaseEpoch": FakeFuture(
                error=FakeRpcError(grpc.StatusCode.DEADLINE_EXCEEDED, "too slow")
            )
        }
    )

    with pytest.raises(DeadlineExceeded):
        nodeapi.BeaconClient(connection).get_base_epoch(Context.background().with_timeout(1.0))


def test_other_status_codes_map_to_node_api_error() -> None:
    connection, _ = _connection(
        {
            "/oasis-core.Consensus/GetChainContext": FakeFuture(
                error=FakeRpcError(grpc.StatusCode.UNAVAILABLE, "connection reset")
            )
        }
    )

    with pytest.raises(nodeapi.NodeAPIError) as excinfo:
        nodeapi.ConsensusClient(connection).get_chain_context(Context.background())

    assert excinfo.value.code == grpc.StatusCode.UNAVAILABLE
    assert "connection reset" in str(excinfo.value)
    assert "/oasis-core.Consensus/GetChainContext" in str(excinfo.value)


def test_cancelling_the_context_cancels_the_call() -> None:
    future = FakeFuture(block=True)
    connection, _ = _connection({"/oasis-core.RootHash/GetRuntimeState": future})
    ctx = Context.background()
    threading.Timer(0.05, ctx.cancel).start()

    start = time.monotonic()
    with pytest.raises(ContextCancelled):
        nodeapi.RootHashClient(connection).get_runtime_state(ctx, bytes(32), 10)

    assert time.monotonic() - start < 2.0


def test_finished_context_fails_before_calling() -> None:
    connection, channel = _connection({})
    ctx = Context.background()
    ctx.cancel()

    with pytest.raises(ContextCancelled):
        nodeapi.RegistryClient(connection).get_runtimes(ctx, 1)

    assert channel.calls == []


def test_connection_closes_its_channel() -> None:
    connection, channel = _connection({})

    with connection:
        pass

    assert channel.closed


class FakeConnectivityChannel(FakeChannel):
    """Reports ``states`` to each subscriber as grpc would on a connect attempt."""

    def __init__(self, states: list[grpc.ChannelConnectivity]) -> None:
        super().__init__({})
        self.states = states
        self.subscribers: list = []
        self.try_to_connect = None

    def subscribe(self, callback, try_to_connect=False) -> None:
        self.subscribers.append(callback)
        self.try_to_connect = try_to_connect
        for state in self.states:
            callback(state)

    def unsubscribe(self, callback) -> None:
        self.subscribers.remove(callback)


def _patch_channel(monkeypatch, *states: grpc.ChannelConnectivity) -> FakeConnectivityChannel:
    channel = FakeConnectivityChannel(list(states))
    monkeypatch.setattr(nodeapi.grpc, "insecure_channel", lambda target, options=None: channel)
    return channel


def test_dial_returns_connection_once_ready(monkeypatch) -> None:
    channel = _patch_channel(
        monkeypatch, grpc.ChannelConnectivity.IDLE, grpc.ChannelConnectivity.CONNECTING, grpc.ChannelConnectivity.READY
    )

    with nodeapi.dial(Context.background().with_timeout(1.0), "node.test:443", None) as connection:
        assert connection.target == "node.test:443"
        assert not channel.closed

    assert channel.closed
    assert channel.try_to_connect is True
    assert channel.subscribers == []


@pytest.mark.parametrize(
    "state", [grpc.ChannelConnectivity.TRANSIENT_FAILURE, grpc.ChannelConnectivity.SHUTDOWN]
)
def test_dial_failure_state_is_unavailable_before_the_deadline(monkeypatch, state) -> None:
    channel = _patch_channel(monkeypatch, grpc.ChannelConnectivity.CONNECTING, state)

    start = time.monotonic()
    with pytest.raises(nodeapi.NodeUnavailableError) as excinfo:
        nodeapi.dial(Context.background().with_timeout(5.0), "node.test:443", None)

    assert time.monotonic() - start < 1.0
    assert state.name in str(excinfo.value)
    assert channel.closed
    assert channel.subscribers == []


def test_dial_keeps_the_first_settled_state(monkeypatch) -> None:
    _patch_channel(
        monkeypatch, grpc.ChannelConnectivity.TRANSIENT_FAILURE, grpc.ChannelConnectivity.READY
    )

    with pytest.raises(nodeapi.NodeUnavailableError):
        nodeapi.dial(Context.background().with_timeout(1.0), "node.test:443", None)


def test_dial_past_deadline_raises_deadline_exceeded_and_closes(monkeypatch) -> None:
    channel = _patch_channel(monkeypatch, grpc.ChannelConnectivity.CONNECTING)

    with pytest.raises(DeadlineExceeded):
        nodeapi.dial(Context.background().with_timeout(0.05), "node.test:443", None)

    assert channel.closed
    assert channel.subscribers == []


def test_cancelling_the_context_stops_the_dial(monkeypatch) -> None:
    channel = _patch_channel(monkeypatch, grpc.ChannelConnectivity.CONNECTING)
    ctx = Context.background()
    threading.Timer(0.05, ctx.cancel).start()

    start = time.monotonic()
    with pytest.raises(ContextCancelled) as excinfo:
        nodeapi.dial(ctx, "node.test:443", None)

    assert not isinstance(excinfo.value, DeadlineExceeded)
    assert time.monotonic() - start < 2.0
    assert channel.closed


def test_dial_refused_port_fails_fast() -> None:
    start = time.monotonic()
    with pytest.raises(nodeapi.NodeUnavailableError) as excinfo:
        nodeapi.dial(Context.background().with_timeout(5.0), "127.0.0.1:1", None)

    assert time.monotonic() - start < 2.5
    assert "TRANSIENT_FAILURE" in str(excinfo.value)


def test_parse_namespace_rejects_wrong_length() -> None:
    with pytest.raises(ValueError):
        nodeapi.parse_namespace("abcd")
