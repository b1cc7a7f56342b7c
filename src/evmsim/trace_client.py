"""
JSON-RPC client for debug_traceCall.

Requests a nested call-frame tree from the node's built-in callTracer and
falls back to plain eth_call when the endpoint has no debug namespace.
"""

import sys
from typing import Any, Dict, Optional, Union

from web3 import Web3

from .colors import warning

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'
DEFAULT_TRACE_TIMEOUT = 10

CALL_TRACER_CONFIG = {
    "tracer": "callTracer",
    "tracerConfig": {
        "onlyTopCall": False,  # include all nested calls
    },
}

# Substrings of node errors meaning the debug namespace is unavailable
_UNSUPPORTED_MARKERS = ('method not found', 'not supported', 'does not exist')


class TraceClientError(Exception):
    """Raised when a JSON-RPC request fails or returns an error object."""
    pass


class TraceClient:
    """
    Executes debug_traceCall against an arbitrary JSON-RPC endpoint.
    """

    def __init__(self, rpc_url: str = "http://localhost:8545", timeout: int = DEFAULT_TRACE_TIMEOUT,
                 quiet_mode: bool = False, verbose: bool = False):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.quiet_mode = quiet_mode
        self.verbose = verbose
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def _request(self, method: str, params: list) -> Any:
        """Send a raw JSON-RPC request and return its `result`."""
        try:
            response = self.w3.provider.make_request(method, params)
        except Exception as e:
            raise TraceClientError(f"{method} request failed: {e}") from e

        if response.get('error'):
            error = response['error']
            message = error.get('message', str(error)) if isinstance(error, dict) else str(error)
            raise TraceClientError(f"{method} failed: {message}")
        return response.get('result')

    @staticmethod
    def _call_object(to: str, from_: str, calldata: str, value: Union[int, str] = 0) -> Dict[str, str]:
        return {
            'to': to,
            'from': from_,
            'data': "0x" + calldata if not calldata.startswith("0x") else calldata,
            'value': hex(value) if isinstance(value, int) else value,
        }

    @staticmethod
    def _block_param(block: Union[int, str, None]) -> str:
        if block is None:
            return 'latest'
        if isinstance(block, int):
            return hex(block)
        return block

    def supports_tracing(self) -> bool:
        """
        Check the endpoint with a minimal debug_traceCall.

        Only an explicit "method not found" style answer counts as unsupported;
        any other failure (invalid params, reverts) still means the method exists.
        """
        try:
            self._request("debug_traceCall", [
                {'to': ZERO_ADDRESS, 'data': '0x'},
                'latest',
                {"tracer": "callTracer"},
            ])
            return True
        except TraceClientError as e:
            message = str(e).lower()
            if any(marker in message for marker in _UNSUPPORTED_MARKERS):
                self._log("RPC does not support debug_traceCall", "debug")
                return False
            self._log(f"Trace support check inconclusive: {e}", "debug")
            return True

    def trace_call(self, to: str, from_: str, calldata: str, block: Union[int, str, None] = 'latest',
                   value: Union[int, str] = 0) -> Dict[str, Any]:
        """Run debug_traceCall with the callTracer and return the root call frame."""
        self._log("Executing debug_traceCall...", "debug")
        result = self._request(
            "debug_traceCall",
            [self._call_object(to, from_, calldata, value), self._block_param(block), CALL_TRACER_CONFIG]
        )
        if not isinstance(result, dict):
            raise TraceClientError(f"debug_traceCall returned no call frame: {result!r}")
        self._log("Trace execution completed", "debug")
        return result

    def trace_call_safe(self, to: str, from_: str, calldata: str, block: Union[int, str, None] = 'latest',
                        value: Union[int, str] = 0) -> Optional[Dict[str, Any]]:
        """Like trace_call, but None when tracing is unsupported or fails."""
        if not self.supports_tracing():
            self._log("Tracing not supported by RPC, skipping trace", "debug")
            return None
        try:
            return self.trace_call(to, from_, calldata, block, value)
        except TraceClientError as e:
            self._log(warning("Warning: Trace execution failed, continuing without trace"))
            self._log(f"Trace error: {e}", "debug")
            return None

    def call(self, to: str, from_: str, calldata: str, block: Union[int, str, None] = 'latest',
             value: Union[int, str] = 0) -> str:
        """Plain eth_call, used when the node cannot trace. Returns the hex result."""
        result = self._request("eth_call", [self._call_object(to, from_, calldata, value), self._block_param(block)])
        return result or '0x'

    def get_chain_id(self) -> int:
        return self.w3.eth.chain_id

    def get_block_number(self) -> int:
        return self.w3.eth.block_number
