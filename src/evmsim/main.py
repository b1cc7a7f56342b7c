#!/usr/bin/env python3
"""
Main entry point for evmsim
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Union

from .calldata_codec import CalldataCodec
from .colors import error, warning
from .json_serializer import TraceSerializer
from .selector_registry import SelectorRegistry
from .simulation_service import SimulationRequest, SimulationService
from .simulator_config import DEFAULT_CONFIG_FILE, SimulatorConfig
from .token_metadata_client import TokenMetadataClient
from .trace_parser import TraceParser
from .trace_printer import TracePrinter
from .transfer_detector import TransferDetector


def parse_block(value: str) -> Union[int, str]:
    """'123' -> 123; '0x7b', 'latest', 'pending' ... are passed through."""
    if value.isdigit():
        return int(value)
    return value


def load_trace_file(path: str) -> Dict[str, Any]:
    """Load a saved callTracer result, either the bare root frame or a JSON-RPC envelope."""
    with open(path, 'r') as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get('result'), dict):
        data = data['result']
    if not isinstance(data, dict) or 'type' not in data:
        raise ValueError(f"{path} does not contain a callTracer frame")
    return data


def load_abi_files(paths: Optional[List[str]]) -> List[str]:
    abis = []
    for path in paths or []:
        with open(path, 'r') as f:
            abis.append(f.read())
    return abis


def simulate_command(args):
    """Execute the simulate command."""
    config = SimulatorConfig.from_config_file(args.config)

    # CLI flags override the config file
    if args.rpc:
        config.rpc_url = args.rpc
    if args.api_url:
        config.api_etherscan_url = args.api_url
    if args.etherscan_url:
        config.etherscan_url = args.etherscan_url
    if args.etherscan_api_key:
        config.etherscan_api_key = args.etherscan_api_key

    if args.save_config:
        config.save_to_config_file(args.config)
        if not args.json:
            print(f"Configuration saved to {args.config}", file=sys.stderr)

    request = SimulationRequest(
        from_address=args.from_addr,
        to_address=args.contract_address,
        payload=args.data,
        value=args.value,
        block=parse_block(args.block),
    )
    service = SimulationService(config, quiet_mode=args.json, verbose=args.verbose)
    result = service.simulate(request)

    if args.json:
        serializer = TraceSerializer()
        print(serializer.to_json(serializer.serialize_result(result)))
        return 0 if result.success else 1

    if not result.success:
        print(error(f"Error: {result.error}"), file=sys.stderr)
        if result.error_details:
            print(f"{result.error_details['type']}: {result.error_details['reason']}", file=sys.stderr)
        return 1

    if result.parsed_trace is None:
        print(warning(f"Warning: {result.error}"))
        print(f"Return data: {result.return_data}")
        return 0

    printer = TracePrinter(result.contract_names, result.etherscan_url, result.chain_id)
    printer.print_trace(result.parsed_trace)
    printer.print_transfers(result.transfers)
    return 0


def decode_command(args):
    """Execute the decode command on a saved trace."""
    try:
        trace = load_trace_file(args.trace_file)
        abis = load_abi_files(args.abi)
    except (OSError, ValueError) as e:
        print(error(f"Error: {e}"), file=sys.stderr)
        return 1

    quiet = args.json
    registry = SelectorRegistry(abis, quiet_mode=quiet, verbose=args.verbose)
    parser = TraceParser(CalldataCodec(registry, quiet, args.verbose), quiet_mode=quiet, verbose=args.verbose)
    try:
        parsed_trace = parser.parse(trace)
    except KeyError as e:
        print(error(f"Error: Malformed trace, missing field {e}"), file=sys.stderr)
        return 1

    transfers = []
    token_metadata = {}
    if not args.no_transfers:
        resolver = None
        if args.rpc:
            resolver = TokenMetadataClient(args.rpc, quiet_mode=quiet, verbose=args.verbose).fetch_token_metadata
        detector = TransferDetector(resolver=resolver, quiet_mode=quiet, verbose=args.verbose)
        transfer_result = asyncio.run(detector.detect_transfers(parsed_trace.frame))
        transfers = transfer_result.transfers
        token_metadata = transfer_result.token_metadata

    if args.json:
        serializer = TraceSerializer()
        print(serializer.to_json(serializer.serialize_trace(
            parsed_trace, transfers=transfers, token_metadata=token_metadata
        )))
        return 0

    printer = TracePrinter()
    printer.print_trace(parsed_trace)
    if not args.no_transfers:
        printer.print_transfers(transfers)
    return 0


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description='evmsim - EVM transaction simulation and trace decoding')
    parser.add_argument('--version', '-v', action='version', version='%(prog)s 0.1.0')

    # Create subparsers for different commands
    subparsers = parser.add_subparsers(dest='command', help='Commands')
    subparsers.required = True

    simulate_parser = subparsers.add_parser('simulate', help='Simulate a transaction with debug_traceCall and decode it')
    simulate_parser.add_argument('contract_address', help='Contract address (0x...)')
    simulate_parser.add_argument('--from', dest='from_addr', required=True, help='Sender address')
    simulate_parser.add_argument('--data', default='0x', help='Raw calldata (hex string, 0x...)')
    simulate_parser.add_argument('--value', type=int, default=0, help='ETH value to send (in wei)')
    simulate_parser.add_argument('--block', default='latest', help='Block number or tag (default: latest)')
    simulate_parser.add_argument('--rpc', '-r', default=None, help='RPC URL (default: from config, else http://localhost:8545)')
    simulate_parser.add_argument('--api-url', default=None, help='Explorer API URL (default: Etherscan v2)')
    simulate_parser.add_argument('--etherscan-url', default=None, help='Block explorer URL, required for unknown chains')
    simulate_parser.add_argument('--etherscan-api-key', default=None, help='Explorer API key (default: $ETHERSCAN_API_KEY)')
    simulate_parser.add_argument('--config', default=DEFAULT_CONFIG_FILE, help=f'Config file (default: {DEFAULT_CONFIG_FILE})')
    simulate_parser.add_argument('--save-config', action='store_true', help='Save the effective configuration to the config file')
    simulate_parser.add_argument('--json', action='store_true', help='Output results as JSON')
    simulate_parser.add_argument('--verbose', action='store_true', help='Show debug messages')

    decode_parser = subparsers.add_parser('decode', help='Decode a saved callTracer result offline')
    decode_parser.add_argument('trace_file', help='JSON file with the callTracer result')
    decode_parser.add_argument('--abi', '-a', action='append', help='ABI file (JSON array). Can be specified multiple times')
    decode_parser.add_argument('--rpc', '-r', default=None, help='RPC URL used to resolve token metadata')
    decode_parser.add_argument('--json', action='store_true', help='Output results as JSON')
    decode_parser.add_argument('--no-transfers', action='store_true', help='Skip transfer detection')
    decode_parser.add_argument('--verbose', action='store_true', help='Show debug messages')

    args = parser.parse_args(argv)

    # Handle commands
    if args.command == 'simulate':
        return simulate_command(args)
    elif args.command == 'decode':
        return decode_command(args)

    return 0

if __name__ == '__main__':
    sys.exit(main())
