"""
ABI/type parsing utilities for evmsim.

JSON ABI documents are loosely typed. Everything the decoder relies on is
validated here into frozen fragment objects and recursive ParamType
descriptors, so the rest of the pipeline never touches raw ABI dicts.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_utils import keccak, to_checksum_address

_ARRAY_SUFFIX = re.compile(r'^(.*)\[(\d*)\]$')
_ELEMENTARY_TYPE = re.compile(
    r'^(address|bool|string|function|bytes(\d{1,2})?|u?int(\d{1,3})?|u?fixed(\d{1,3}x\d{1,2})?)$'
)
_IDENTIFIER = re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*$')
_TYPE_ALIASES = {
    'uint': 'uint256',
    'int': 'int256',
    'byte': 'bytes1',
    'fixed': 'fixed128x18',
    'ufixed': 'ufixed128x18',
}


class AbiFormatError(ValueError):
    """Raised when an ABI document or fragment does not have the expected shape."""
    pass


@dataclass(frozen=True)
class ParamType:
    """Shape of one ABI parameter: a scalar, a tuple of components or an array of children."""
    name: str
    type: str  # canonical type string, e.g. "(address,uint256)[]"
    base_type: str  # "tuple", "array" or the elementary type
    components: Tuple['ParamType', ...] = ()
    array_children: Optional['ParamType'] = None
    array_length: Optional[int] = None  # None for dynamic arrays

    @property
    def is_tuple(self) -> bool:
        return self.base_type == 'tuple'

    @property
    def is_array(self) -> bool:
        return self.base_type == 'array'

    @property
    def is_array_of_tuples(self) -> bool:
        return self.is_array and self.array_children.is_tuple


@dataclass(frozen=True)
class FunctionFragment:
    """A validated `function` ABI entry."""
    name: str
    inputs: Tuple[ParamType, ...]
    outputs: Tuple[ParamType, ...] = ()
    state_mutability: str = 'nonpayable'

    @property
    def signature(self) -> str:
        return format_signature(self.name, self.inputs)

    @property
    def selector(self) -> str:
        return function_selector(self.signature)


@dataclass(frozen=True)
class ErrorFragment:
    """A validated custom `error` ABI entry."""
    name: str
    inputs: Tuple[ParamType, ...]

    @property
    def signature(self) -> str:
        return format_signature(self.name, self.inputs)

    @property
    def selector(self) -> str:
        return function_selector(self.signature)


@dataclass(frozen=True)
class EventFragment:
    """A validated `event` ABI entry. Parsed for validation only."""
    name: str
    inputs: Tuple[ParamType, ...]
    anonymous: bool = False

    @property
    def signature(self) -> str:
        return format_signature(self.name, self.inputs)


Fragment = Union[FunctionFragment, ErrorFragment, EventFragment]


def _canonical_elementary(type_str: str) -> str:
    type_str = _TYPE_ALIASES.get(type_str, type_str)
    if not _ELEMENTARY_TYPE.match(type_str):
        raise AbiFormatError(f"Unsupported ABI type: {type_str!r}")
    return type_str


def _build_param_type(type_str: str, name: str, components: Any) -> ParamType:
    match = _ARRAY_SUFFIX.match(type_str)
    if match:
        inner, length = match.groups()
        child = _build_param_type(inner, '', components)
        return ParamType(
            name=name,
            type=f"{child.type}[{length}]",
            base_type='array',
            array_children=child,
            array_length=int(length) if length else None,
        )

    if type_str == 'tuple':
        if not isinstance(components, list):
            raise AbiFormatError(f"Tuple parameter '{name}' has no components")
        fields = tuple(param_type_from_abi(component) for component in components)
        return ParamType(
            name=name,
            type=f"({','.join(field.type for field in fields)})",
            base_type='tuple',
            components=fields,
        )

    canonical = _canonical_elementary(type_str)
    return ParamType(name=name, type=canonical, base_type=canonical)


def param_type_from_abi(abi_input: Dict[str, Any]) -> ParamType:
    """Build a ParamType from one ABI `inputs`/`outputs`/`components` entry."""
    if not isinstance(abi_input, dict):
        raise AbiFormatError(f"ABI parameter must be an object, got {type(abi_input).__name__}")
    raw_type = abi_input.get('type')
    if not isinstance(raw_type, str) or not raw_type:
        raise AbiFormatError(f"ABI parameter has no type: {abi_input!r}")
    name = abi_input.get('name') or ''
    if not isinstance(name, str):
        raise AbiFormatError(f"ABI parameter name must be a string: {name!r}")
    return _build_param_type(raw_type.replace(' ', ''), name, abi_input.get('components'))


def format_signature(name: str, params: Sequence[ParamType]) -> str:
    """Canonical signature, e.g. 'transfer(address,uint256)'."""
    return f"{name}({','.join(param.type for param in params)})"


def function_selector(signature: str) -> str:
    """First 4 bytes of keccak256(signature) as a lowercase 0x-prefixed hex string."""
    return '0x' + keccak(text=signature)[:4].hex()


def _parse_params(params: Any, owner: str) -> Tuple[ParamType, ...]:
    if params is None:
        return ()
    if not isinstance(params, list):
        raise AbiFormatError(f"Parameters of '{owner}' must be a list")
    return tuple(param_type_from_abi(param) for param in params)


def parse_fragment(item: Any) -> Optional[Fragment]:
    """
    Validate one ABI entry.

    Returns None for entries that carry no selector (constructor, fallback,
    receive). Raises AbiFormatError for anything malformed.
    """
    if not isinstance(item, dict):
        raise AbiFormatError(f"ABI entry must be an object, got {type(item).__name__}")

    # Solidity allows `type` to be omitted for functions
    kind = item.get('type', 'function')
    if kind in ('constructor', 'fallback', 'receive'):
        return None
    if kind not in ('function', 'error', 'event'):
        raise AbiFormatError(f"Unknown ABI entry type: {kind!r}")

    name = item.get('name')
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise AbiFormatError(f"ABI {kind} has an invalid name: {name!r}")

    inputs = _parse_params(item.get('inputs', []), name)
    if kind == 'function':
        outputs = _parse_params(item.get('outputs', []), name)
        return FunctionFragment(
            name=name,
            inputs=inputs,
            outputs=outputs,
            state_mutability=item.get('stateMutability', 'nonpayable'),
        )
    if kind == 'error':
        return ErrorFragment(name=name, inputs=inputs)
    return EventFragment(name=name, inputs=inputs, anonymous=bool(item.get('anonymous', False)))


def load_abi_document(document: Union[str, List[Any]]) -> List[Any]:
    """Accept an ABI as a list of entries or as the JSON text of one (explorer APIs return text)."""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise AbiFormatError(f"ABI is not valid JSON: {e}") from e
    if isinstance(document, dict) and isinstance(document.get('abi'), list):
        # Hardhat/Foundry artifact
        document = document['abi']
    if not isinstance(document, list):
        raise AbiFormatError(f"ABI must be a list of entries, got {type(document).__name__}")
    return document


def normalize_value(param_type: ParamType, value: Any) -> Any:
    """
    Niceties for readability, driven by the type descriptor:
    - addresses -> checksum 0x...
    - bytes / bytesN -> 0x-hex
    - tuples stay tuples, arrays become lists, handled recursively
    """
    if param_type.is_array:
        return [normalize_value(param_type.array_children, item) for item in value]
    if param_type.is_tuple:
        return tuple(
            normalize_value(component, item)
            for component, item in zip(param_type.components, value)
        )
    if param_type.base_type == 'address':
        return to_checksum_address(value)
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    return value
