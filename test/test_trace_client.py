"""
Unit tests for TraceClient with the JSON-RPC transport stubbed out.
"""

import pytest

from evmsim.trace_client import CALL_TRACER_CONFIG, TraceClient, TraceClientError

from trace_helpers import CALLER, TOKEN, make_frame


def stub_rpc(monkeypatch, client, handler):
    """Route provider.make_request through `handler(method, params)` and record the calls."""
    requests = []

    def make_request(method, params):
        requests.append((method, params))
        return handler(method, params)

    monkeypatch.setattr(client.w3.provider, 'make_request', make_request)
    return requests


@pytest.fixture
def client():
    return TraceClient("http://localhost:8545", quiet_mode=True)


class TestSupportsTracing:

    @pytest.mark.parametrize("message", [
        "the method debug_traceCall does not exist/is not available",
        "Method not found",
        "debug namespace not supported",
    ])
    def test_unsupported(self, monkeypatch, client, message):
        stub_rpc(monkeypatch, client, lambda method, params: {"error": {"code": -32601, "message": message}})
        assert client.supports_tracing() is False

    def test_other_errors_mean_supported(self, monkeypatch, client):
        stub_rpc(monkeypatch, client, lambda method, params: {"error": {"code": -32000, "message": "execution reverted"}})
        assert client.supports_tracing() is True


class TestTraceCall:
    """Tests for trace_call and the eth_call fallback."""

    def test_request_shape(self, monkeypatch, client):
        frame = make_frame()
        requests = stub_rpc(monkeypatch, client, lambda method, params: {"result": frame})

        assert client.trace_call(TOKEN, CALLER, "a9059cbb", block=100, value=5) == frame
        method, params = requests[0]
        assert method == "debug_traceCall"
        assert params == [
            {"to": TOKEN, "from": CALLER, "data": "0xa9059cbb", "value": "0x5"},
            "0x64",
            CALL_TRACER_CONFIG,
        ]

    def test_error_object_raises(self, monkeypatch, client):
        stub_rpc(monkeypatch, client, lambda method, params: {"error": {"message": "header not found"}})
        with pytest.raises(TraceClientError, match="header not found"):
            client.trace_call(TOKEN, CALLER, "0x")

    def test_transport_failure_raises(self, monkeypatch, client):
        def handler(method, params):
            raise ConnectionError("refused")

        stub_rpc(monkeypatch, client, handler)
        with pytest.raises(TraceClientError, match="refused"):
            client.trace_call(TOKEN, CALLER, "0x")

    def test_safe_variant_returns_none_without_tracing(self, monkeypatch, client):
        stub_rpc(monkeypatch, client, lambda method, params: {"error": {"message": "Method not found"}})
        assert client.trace_call_safe(TOKEN, CALLER, "0x") is None

    def test_safe_variant_returns_none_on_failure(self, monkeypatch, client):
        def handler(method, params):
            if params[0]["to"] == TOKEN:
                return {"error": {"message": "out of gas"}}
            return {"result": make_frame()}

        stub_rpc(monkeypatch, client, handler)
        assert client.trace_call_safe(TOKEN, CALLER, "0x") is None

    def test_eth_call(self, monkeypatch, client):
        requests = stub_rpc(monkeypatch, client, lambda method, params: {"result": "0x01"})
        assert client.call(TOKEN, CALLER, "0x", block="latest") == "0x01"
        assert requests[0][0] == "eth_call"
        assert requests[0][1][1] == "latest"
