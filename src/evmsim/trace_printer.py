"""
Terminal rendering of decoded call trees and detected transfers.
"""

from typing import Any, Dict, List, Optional, Sequence

from .abi_utils import ParamType
from .colors import address, bold, call_type, cyan, dim, error, info, number, success, warning
from .etherscan_client import get_address_url
from .selector_registry import UNKNOWN
from .trace_parser import ParsedCallFrame, ParsedTrace, iter_frames
from .transfer_detector import TokenTransfer, format_token_amount


class TracePrinter:
    """Pretty-prints a ParsedTrace the way a debugger call stack reads."""

    def __init__(self, contract_names: Optional[Dict[str, str]] = None, etherscan_url: Optional[str] = None,
                 chain_id: Optional[int] = None):
        # lowercased address -> verified contract name
        self.contract_names = {addr.lower(): name for addr, name in (contract_names or {}).items()}
        self.etherscan_url = etherscan_url
        self.chain_id = chain_id

    def explorer_link(self, addr: str) -> Optional[str]:
        """Explorer page for `addr`, or None without a URL or a supported chain."""
        if not self.etherscan_url and self.chain_id is None:
            return None
        try:
            return get_address_url(addr, self.chain_id, self.etherscan_url)
        except ValueError:
            return None

    def format_address_display(self, addr: str, short: bool = True) -> str:
        """Address with its contract name when known, e.g. 'USDC (0xa0b8...eb48)'."""
        if not addr:
            return ""
        display = f"{addr[:6]}...{addr[-4:]}" if short and len(addr) > 12 else addr
        name = self.contract_names.get(addr.lower())
        if name:
            return f"{name} ({display})"
        return display

    def format_value(self, param_type: Optional[ParamType], value: Any) -> str:
        """Format a decoded value, walking tuples and arrays through their type descriptor."""
        if param_type is not None and param_type.is_tuple and isinstance(value, (tuple, list)):
            parts = []
            for i, item in enumerate(value):
                component = param_type.components[i] if i < len(param_type.components) else None
                label = component.name if component is not None and component.name else f"field{i}"
                parts.append(f"{label}: {self.format_value(component, item)}")
            return f"({', '.join(parts)})"
        if isinstance(value, (list, tuple)):
            child = param_type.array_children if param_type is not None and param_type.is_array else None
            return f"[{', '.join(self.format_value(child, item) for item in value)}]"
        if isinstance(value, bool):
            return cyan(str(value).lower())
        if isinstance(value, int):
            return number(str(value))
        if param_type is not None and param_type.base_type == 'address':
            return address(str(value))
        if isinstance(value, str) and not value.startswith('0x'):
            return cyan(f'"{value}"')
        return cyan(str(value))

    def _format_function(self, frame: ParsedCallFrame) -> str:
        if frame.function_name == UNKNOWN:
            return f"{warning('Unknown')} {dim(f'[{frame.function_signature}]')}"
        selector = frame.input[:10].lower() if len(frame.input) >= 10 else None
        if selector:
            return f"{cyan(frame.function_signature)} {dim(f'[{selector}]')}"
        return cyan(frame.function_signature)

    def _print_params(self, indent: str, names: Sequence[str], types: Sequence[ParamType],
                      values: Sequence[Any], prefix: str = ""):
        for name, param_type, value in zip(names, types, values):
            print(f"{indent}   {prefix}{info(name)}: {self.format_value(param_type, value)}")

    def print_frame(self, index: int, frame: ParsedCallFrame):
        indent = "  " * frame.depth
        target = self.format_address_display(frame.to_addr)
        gas_info = dim(f"gas: {number(str(frame.gas_used))} ({frame.gas_percentage}%)")
        failed = bool(frame.error or frame.revert_reason or frame.decoded_error)
        revert_indicator = f" {error('!!!')}" if failed else ""
        print(f"{indent}#{index} {call_type(frame.type)} {address(target)} {self._format_function(frame)} "
              f"{gas_info}{revert_indicator}")

        if frame.value:
            print(f"{indent}   {dim('value:')} {number(format_token_amount(frame.value, 18))} ETH")

        if frame.decoded_input is not None:
            self._print_params(indent, frame.input_param_names, frame.input_param_types, frame.decoded_input)

        if frame.decoded_output is not None:
            self._print_params(indent, frame.output_param_names, frame.output_param_types,
                               frame.decoded_output, prefix="→ ")

        if frame.decoded_error is not None:
            decoded_error = frame.decoded_error
            if decoded_error.args is not None and decoded_error.name != UNKNOWN:
                args = ', '.join(str(arg) for arg in decoded_error.args)
                print(f"{indent}   {error('error:')} {error(f'{decoded_error.name}({args})')}")
            else:
                print(f"{indent}   {error('error:')} {error(decoded_error.signature)}")
        elif frame.revert_reason:
            print(f"{indent}   {error('revert:')} {frame.revert_reason}")
        elif frame.error:
            print(f"{indent}   {error('error:')} {frame.error}")

    def print_trace(self, parsed_trace: ParsedTrace):
        """Print pretty function call trace."""
        root = parsed_trace.frame
        stats = parsed_trace.stats
        print(f"\n{bold('Call Trace:')}")
        print(f"{dim('Contract:')} {info(self.format_address_display(root.to_addr, short=False))}")
        explorer_link = self.explorer_link(root.to_addr)
        if explorer_link:
            print(f"{dim('Explorer:')} {info(explorer_link)}")
        print(f"{dim('Gas used:')} {number(str(stats.total_gas_used))}")
        print(f"{dim('Calls:')} {number(str(stats.total_calls))}  {dim('Max depth:')} {number(str(stats.max_depth))}")

        if stats.has_error:
            print(f"{dim('Status:')} {error('REVERTED')}")
            if stats.error_message:
                print(f"{error('Error:')} {stats.error_message}")
        else:
            print(f"{dim('Status:')} {success('SUCCESS')}")

        print(f"\n{bold('Call Stack:')}")
        print(dim("-" * 60))
        for i, frame in enumerate(iter_frames(root)):
            self.print_frame(i, frame)
        print(dim("-" * 60))

    def format_transfer(self, transfer: TokenTransfer) -> str:
        amount = transfer.formatted_amount or str(transfer.amount)
        symbol = transfer.token_symbol or ('ETH' if transfer.type == 'native' else 'UNKNOWN')
        kind = dim(f"[{transfer.type}]")
        sender = address(self.format_address_display(transfer.from_addr))
        recipient = address(self.format_address_display(transfer.to_addr))
        line = f"{kind} {number(amount)} {bold(symbol)}  {sender} → {recipient}"
        if transfer.token_address:
            line += dim(f"  token: {self.format_address_display(transfer.token_address)}")
        return line

    def print_transfers(self, transfers: List[TokenTransfer]):
        print(f"\n{bold('Transfers:')}")
        if not transfers:
            print(f"  {dim('No transfers detected')}")
            return
        for transfer in transfers:
            print(f"  {self.format_transfer(transfer)}")
