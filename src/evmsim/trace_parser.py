"""
Trace Parser

Turns the raw call-frame tree returned by debug_traceCall (callTracer) into
an immutable, decoded tree and computes aggregate statistics over it.
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from .abi_utils import ParamType
from .calldata_codec import CalldataCodec
from .selector_registry import UNKNOWN, DecodedError

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'


@dataclass(frozen=True)
class ParsedCallFrame:
    """One call frame with numeric fields parsed and calldata/output decoded."""
    type: str  # CALL, DELEGATECALL, STATICCALL, CREATE, CREATE2, SELFDESTRUCT
    from_addr: str
    to_addr: str
    value: int
    gas: int
    gas_used: int
    gas_percentage: float
    function_signature: str
    function_name: str
    input: str
    depth: int
    calls: Tuple['ParsedCallFrame', ...] = ()
    decoded_input: Optional[Tuple[Any, ...]] = None
    input_param_names: Optional[Tuple[str, ...]] = None
    input_param_types: Optional[Tuple[ParamType, ...]] = None
    output: Optional[str] = None
    decoded_output: Optional[Tuple[Any, ...]] = None  # never set together with decoded_error
    output_param_names: Optional[Tuple[str, ...]] = None
    output_param_types: Optional[Tuple[ParamType, ...]] = None
    error: Optional[str] = None
    revert_reason: Optional[str] = None
    decoded_error: Optional[DecodedError] = None


@dataclass(frozen=True)
class TraceStats:
    """Statistics about the trace execution."""
    total_gas_used: int  # root gas_used, already inclusive of child gas
    total_calls: int
    max_depth: int  # number of frames along the deepest path
    has_error: bool
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ParsedTrace:
    frame: ParsedCallFrame
    stats: TraceStats


def iter_frames(frame: ParsedCallFrame) -> Iterator[ParsedCallFrame]:
    """Yield `frame` and all of its descendants in pre-order (document order)."""
    stack = [frame]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.calls))


class TraceParser:
    """Parser for converting raw call frames into structured data."""

    def __init__(self, codec: CalldataCodec, quiet_mode: bool = False, verbose: bool = False):
        self.codec = codec
        self.quiet_mode = quiet_mode
        self.verbose = verbose

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def parse_quantity(self, value: Any, field_name: str = "value") -> int:
        """Parse a tracer quantity ('0x5208', a decimal string or an int). Unparsable -> 0."""
        if value is None or value == '' or value == '0x':
            return 0
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        try:
            if isinstance(value, str) and not value.lower().startswith(('0x', '-0x')):
                return int(value, 10)
            return int(value, 16)
        except (TypeError, ValueError):
            self._log(f"Unparsable {field_name} {value!r}, using 0", "debug")
            return 0

    def parse_call_frame(self, frame: Dict[str, Any], depth: int = 0) -> ParsedCallFrame:
        """Parse a raw call frame (and its sub-calls) into a ParsedCallFrame."""
        calldata = frame['input']
        decoded = self.codec.decode_call(calldata)

        gas = self.parse_quantity(frame['gas'], 'gas')
        gas_used = self.parse_quantity(frame['gasUsed'], 'gasUsed')
        value = self.parse_quantity(frame.get('value'), 'value')
        # Truncated to two decimals
        gas_percentage = (gas_used * 10000 // gas) / 100 if gas > 0 else 0.0

        output = frame.get('output')
        error = frame.get('error')
        revert_reason = frame.get('revertReason')

        decoded_error = None
        decoded_output = None
        if output and output.lower() != '0x' and len(output) >= 10:
            # Revert data is checked first, return data only on the success path
            error_decoded = self.codec.decode_error(output)
            if error_decoded.name != UNKNOWN:
                decoded_error = error_decoded
            elif not error and not revert_reason:
                decoded_output = self.codec.decode_output(calldata, output)
                if decoded_output is not None and not decoded_output.values:
                    decoded_output = None

        calls = tuple(self.parse_call_frame(child, depth + 1) for child in frame.get('calls') or ())

        return ParsedCallFrame(
            type=frame['type'],
            from_addr=frame['from'],
            to_addr=frame.get('to') or ZERO_ADDRESS,
            value=value,
            gas=gas,
            gas_used=gas_used,
            gas_percentage=gas_percentage,
            function_signature=decoded.function.signature,
            function_name=decoded.function.name,
            input=calldata,
            depth=depth,
            calls=calls,
            decoded_input=decoded.params,
            input_param_names=decoded.param_names,
            input_param_types=decoded.param_types,
            output=output,
            decoded_output=decoded_output.values if decoded_output else None,
            output_param_names=decoded_output.names if decoded_output else None,
            output_param_types=decoded_output.types if decoded_output else None,
            error=error,
            revert_reason=revert_reason,
            decoded_error=decoded_error,
        )

    def calculate_stats(self, frame: ParsedCallFrame) -> TraceStats:
        """Calculate statistics from a parsed call frame."""
        total_calls = 0
        max_depth = frame.depth
        has_error = False
        error_message = None

        for current in iter_frames(frame):
            total_calls += 1
            max_depth = max(max_depth, current.depth)
            message = current.error or current.revert_reason
            if message:
                has_error = True
                # Only the first error in document order is reported
                if error_message is None:
                    error_message = message

        return TraceStats(
            total_gas_used=frame.gas_used,
            total_calls=total_calls,
            max_depth=max_depth + 1,
            has_error=has_error,
            error_message=error_message,
        )

    def parse(self, frame: Dict[str, Any]) -> ParsedTrace:
        """Parse and analyze a call frame with statistics."""
        parsed = self.parse_call_frame(frame)
        return ParsedTrace(frame=parsed, stats=self.calculate_stats(parsed))
