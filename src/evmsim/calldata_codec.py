"""
Calldata / output codec

Decodes call arguments, return values and custom error payloads from raw hex
using a SelectorRegistry. Nothing in here raises for bad or unrecognized
input: incomplete ABI coverage is the normal case, so every failure degrades
to an 'Unknown' sentinel or to a missing field.
"""

import sys
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_utils import decode_hex

from .abi_utils import ParamType, normalize_value
from .selector_registry import UNKNOWN, DecodedError, DecodedFunction, SelectorRegistry


@dataclass(frozen=True)
class DecodedCall:
    """Result of decoding calldata."""
    function: DecodedFunction
    params: Optional[Tuple[Any, ...]] = None
    param_names: Optional[Tuple[str, ...]] = None
    param_types: Optional[Tuple[ParamType, ...]] = None


@dataclass(frozen=True)
class DecodedOutput:
    """Result of decoding return data."""
    values: Tuple[Any, ...]
    names: Tuple[str, ...]
    types: Tuple[ParamType, ...]


FALLBACK_FUNCTION = DecodedFunction(signature='fallback()', name='fallback', selector='0x')
UNKNOWN_ERROR = DecodedError(signature='Unknown error', name=UNKNOWN, selector='0x')


def split_selector(data: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split hex data into (selector, remaining hex). None when shorter than 4 bytes."""
    if not data:
        return None
    hex_part = data[2:] if data[:2].lower() == '0x' else data
    if len(hex_part) < 8:
        return None
    return '0x' + hex_part[:8].lower(), hex_part[8:]


class CalldataCodec:
    """Decodes calldata, return data and revert data against a SelectorRegistry."""

    def __init__(self, registry: SelectorRegistry, quiet_mode: bool = False, verbose: bool = False):
        self.registry = registry
        self.quiet_mode = quiet_mode
        self.verbose = verbose

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def decode_values(self, params: Sequence[ParamType], data_hex: str) -> Tuple[Any, ...]:
        """ABI-decode `data_hex` as the tuple `params`. Raises on malformed data."""
        data = decode_hex(data_hex) if data_hex else b''
        decoded = abi_decode([param.type for param in params], data)
        return tuple(normalize_value(param, value) for param, value in zip(params, decoded))

    def decode_call(self, calldata: Optional[str]) -> DecodedCall:
        """
        Decode function calldata (selector + parameters).

        Calldata shorter than a selector is a plain fallback()/receive() call.
        When the parameters cannot be decoded the function is still returned,
        just without params.
        """
        split = split_selector(calldata)
        if split is None:
            return DecodedCall(function=FALLBACK_FUNCTION)

        selector, body = split
        function = self.registry.decode_selector(selector)
        fragment = self.registry.get_function(selector)
        if fragment is None:
            return DecodedCall(function=function)

        try:
            params = self.decode_values(fragment.inputs, body)
        except Exception as e:
            self._log(f"Failed to decode calldata parameters for {function.signature}: {e}", "debug")
            return DecodedCall(function=function)

        return DecodedCall(
            function=function,
            params=params,
            param_names=tuple(param.name or f"param{i}" for i, param in enumerate(fragment.inputs)),
            param_types=fragment.inputs,
        )

    def decode_error(self, error_data: Optional[str]) -> DecodedError:
        """Decode a custom error (or Error(string)/Panic(uint256)) from revert data."""
        split = split_selector(error_data)
        if split is None:
            return UNKNOWN_ERROR

        selector, body = split
        fragment = self.registry.get_error(selector)
        if fragment is None:
            return DecodedError(signature=selector, name=UNKNOWN, selector=selector)

        try:
            args = self.decode_values(fragment.inputs, body)
        except Exception as e:
            self._log(f"Failed to decode error arguments for {fragment.signature}: {e}", "debug")
            return DecodedError(signature=fragment.signature, name=fragment.name, selector=selector)

        return DecodedError(signature=fragment.signature, name=fragment.name, selector=selector, args=args)

    def decode_output(self, calldata: Optional[str], output_data: Optional[str]) -> Optional[DecodedOutput]:
        """
        Decode return data of the function identified by `calldata`.

        Returns None when the output is empty, the function is unknown, or the
        data does not match the declared outputs.
        """
        if not output_data or output_data.lower() == '0x':
            return None

        split = split_selector(calldata)
        if split is None:
            return None
        fragment = self.registry.get_function(split[0])
        if fragment is None:
            return None

        body = output_data[2:] if output_data[:2].lower() == '0x' else output_data
        try:
            values = self.decode_values(fragment.outputs, body)
        except Exception as e:
            self._log(f"Failed to decode output for {split[0]}: {e}", "debug")
            return None

        return DecodedOutput(
            values=values,
            names=tuple(param.name or f"output{i}" for i, param in enumerate(fragment.outputs)),
            types=fragment.outputs,
        )
