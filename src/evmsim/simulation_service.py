"""
Simulation Service

Runs one transaction simulation end to end: validate the request, trace it
with debug_traceCall, fetch ABIs and contract names for every address in the
trace, decode the call tree and detect value transfers.
"""

import asyncio
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from web3 import Web3

from .calldata_codec import CalldataCodec
from .colors import error, success, warning
from .etherscan_client import EtherscanClient, get_etherscan_url, get_network_name
from .selector_registry import SelectorRegistry
from .simulator_config import SimulatorConfig
from .token_metadata_client import TokenMetadataClient
from .trace_client import TraceClient
from .trace_parser import ParsedTrace, TraceParser
from .transfer_detector import TokenMetadata, TokenTransfer, TransferDetector

CALLDATA_PATTERN = re.compile(r'^0x[0-9a-fA-F]*$')
TRACING_UNSUPPORTED = 'Tracing not supported by RPC endpoint'
TOTAL_STEPS = 5

ProgressCallback = Callable[[int, int, str], None]


class SimulationError(Exception):
    """Raised for simulation requests that cannot be run as given."""
    pass


@dataclass
class SimulationRequest:
    from_address: str
    to_address: str
    payload: str = '0x'
    value: int = 0
    block: Union[int, str] = 'latest'
    # Per-request overrides of SimulatorConfig
    rpc_url: Optional[str] = None
    api_etherscan_url: Optional[str] = None
    etherscan_url: Optional[str] = None
    etherscan_api_key: Optional[str] = None


@dataclass
class SimulationResult:
    success: bool
    trace: Optional[Dict[str, Any]] = None  # raw callTracer frame
    parsed_trace: Optional[ParsedTrace] = None
    contract_names: Dict[str, str] = field(default_factory=dict)
    chain_id: Optional[int] = None
    etherscan_url: Optional[str] = None
    transfers: List[TokenTransfer] = field(default_factory=list)
    token_metadata: Dict[str, TokenMetadata] = field(default_factory=dict)
    return_data: Optional[str] = None  # eth_call result when the node cannot trace
    error: Optional[str] = None
    error_details: Optional[Dict[str, str]] = None


def classify_error(message: str) -> Optional[Dict[str, str]]:
    """Map a failure message to a coarse error type with a hint for the user."""
    if 'revert' in message:
        return {'type': 'revert', 'reason': message}
    if 'insufficient funds' in message:
        return {'type': 'insufficient_funds',
                'reason': 'The from address may not have enough funds for this transaction'}
    if 'nonce' in message:
        return {'type': 'nonce', 'reason': 'There may be a nonce mismatch issue'}
    if 'gas' in message:
        return {'type': 'gas', 'reason': 'The transaction may require more gas'}
    return None


def validate_request(request: SimulationRequest):
    """Raise SimulationError for malformed addresses, calldata or value."""
    if not Web3.is_address(request.from_address):
        raise SimulationError(f"Invalid from address: {request.from_address}")
    if not Web3.is_address(request.to_address):
        raise SimulationError(f"Invalid contract address: {request.to_address}")
    if not CALLDATA_PATTERN.match(request.payload or ''):
        raise SimulationError(f"Invalid calldata: {request.payload}")
    if request.value < 0:
        raise SimulationError(f"Invalid value: {request.value}")


class SimulationService:
    """Service for running EVM transaction simulations with tracing."""

    def __init__(self, config: Optional[SimulatorConfig] = None, quiet_mode: bool = False, verbose: bool = False):
        self.config = config or SimulatorConfig()
        self.quiet_mode = quiet_mode
        self.verbose = verbose

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def _resolve_etherscan_url(self, request: SimulationRequest, chain_id: int) -> str:
        override = request.etherscan_url or self.config.etherscan_url
        if override:
            self._log(f"Using custom Etherscan URL: {override}", "debug")
            return override
        try:
            url = get_etherscan_url(chain_id)
        except ValueError:
            raise SimulationError(
                f"Chain ID {chain_id} is not supported. Please provide a custom Etherscan URL."
            )
        self._log(f"Auto-detected Etherscan URL: {url}", "debug")
        return url

    def simulate(self, request: SimulationRequest, on_progress: Optional[ProgressCallback] = None) -> SimulationResult:
        """Run a transaction simulation. Never raises: failures come back as success=False."""

        def progress(step: int, message: str):
            self._log(message)
            if on_progress:
                on_progress(step, TOTAL_STEPS, message)

        rpc_url = request.rpc_url or self.config.rpc_url
        try:
            progress(1, "Validating request...")
            validate_request(request)

            progress(2, f"Connecting to {rpc_url}...")
            trace_client = TraceClient(rpc_url, timeout=self.config.trace_timeout,
                                       quiet_mode=self.quiet_mode, verbose=self.verbose)
            chain_id = trace_client.get_chain_id()
            block_number = trace_client.get_block_number()
            self._log(success(f"✓ Connected to {get_network_name(chain_id)} (Chain ID: {chain_id})"))
            self._log(f"Current block number: {block_number}", "debug")

            etherscan_url = self._resolve_etherscan_url(request, chain_id)

            progress(3, "Tracing transaction...")
            trace = trace_client.trace_call_safe(
                request.to_address, request.from_address, request.payload, request.block, request.value
            )

            if trace is None:
                self._log(warning("Trace not available, falling back to standard simulation"))
                return_data = trace_client.call(
                    request.to_address, request.from_address, request.payload, request.block, request.value
                )
                return SimulationResult(
                    success=True,
                    chain_id=chain_id,
                    etherscan_url=etherscan_url,
                    return_data=return_data,
                    error=TRACING_UNSUPPORTED,
                )

            progress(4, "Fetching ABIs and contract names...")
            etherscan_client = EtherscanClient(
                api_key=request.etherscan_api_key or self.config.etherscan_api_key,
                api_url=request.api_etherscan_url or self.config.api_etherscan_url,
                chain_id=chain_id,
                requests_per_second=self.config.api_requests_per_second,
                execution_strategy=self.config.api_execution_strategy,
                quiet_mode=self.quiet_mode,
                verbose=self.verbose,
            )
            addresses = etherscan_client.extract_addresses_from_trace(trace)
            self._log(f"Found {len(addresses)} unique address(es)", "debug")
            contract_names: Dict[str, str] = {}
            if addresses:
                etherscan_client.fetch_multiple_abis(addresses)
                contract_names = etherscan_client.fetch_multiple_contract_names(addresses)

            progress(5, "Decoding trace and detecting transfers...")
            registry = SelectorRegistry(etherscan_client.get_all_cached_abis(),
                                        quiet_mode=self.quiet_mode, verbose=self.verbose)
            parser = TraceParser(CalldataCodec(registry, self.quiet_mode, self.verbose),
                                 quiet_mode=self.quiet_mode, verbose=self.verbose)
            parsed_trace = parser.parse(trace)

            metadata_client = TokenMetadataClient(rpc_url, timeout=self.config.token_metadata_timeout,
                                                  quiet_mode=self.quiet_mode, verbose=self.verbose)
            detector = TransferDetector(resolver=metadata_client.fetch_token_metadata,
                                        metadata_timeout=self.config.token_metadata_timeout,
                                        quiet_mode=self.quiet_mode, verbose=self.verbose)
            transfer_result = asyncio.run(detector.detect_transfers(parsed_trace.frame))

            return SimulationResult(
                success=True,
                trace=trace,
                parsed_trace=parsed_trace,
                contract_names=contract_names,
                chain_id=chain_id,
                etherscan_url=etherscan_url,
                transfers=transfer_result.transfers,
                token_metadata=transfer_result.token_metadata,
            )

        except Exception as e:
            message = str(e)
            self._log(error(f"Simulation failed: {message}"))
            return SimulationResult(
                success=False,
                error=message,
                error_details=classify_error(message),
            )
