"""
Selector Registry

Maps 4-byte function and custom error selectors to their decoded signatures,
built from any number of ABI documents. One registry is built per simulation
run and handed to the codec by reference.
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .abi_utils import (
    AbiFormatError,
    ErrorFragment,
    FunctionFragment,
    ParamType,
    load_abi_document,
    parse_fragment,
)
from .colors import warning

UNKNOWN = 'Unknown'


@dataclass(frozen=True)
class DecodedFunction:
    """Function resolved from a selector."""
    signature: str  # e.g. "transfer(address,uint256)", or the hex selector when unknown
    name: str  # e.g. "transfer", or "Unknown"
    selector: str  # e.g. "0xa9059cbb"


@dataclass(frozen=True)
class DecodedError:
    """Custom error resolved from revert data."""
    signature: str
    name: str
    selector: str
    args: Optional[Tuple[Any, ...]] = None  # present only when the payload decoded


# Emitted by the compiler without being declared in any ABI
BUILTIN_ERRORS = (
    ErrorFragment(name='Error', inputs=(ParamType(name='message', type='string', base_type='string'),)),
    ErrorFragment(name='Panic', inputs=(ParamType(name='code', type='uint256', base_type='uint256'),)),
)


def normalize_selector(selector: str) -> str:
    """Lowercase, 0x-prefixed selector."""
    selector = selector.lower()
    return selector if selector.startswith('0x') else f"0x{selector}"


class SelectorRegistry:
    """
    Two independent selector maps, one for functions and one for custom errors.

    Registration is append-only: loading more ABIs can add selectors but never
    replaces one that is already known (first registration wins).
    """

    def __init__(self, abis: Optional[Iterable[Any]] = None, quiet_mode: bool = False, verbose: bool = False):
        self.quiet_mode = quiet_mode
        self.verbose = verbose

        self.function_fragments: Dict[str, FunctionFragment] = {}  # selector -> fragment
        self.error_fragments: Dict[str, ErrorFragment] = {}  # selector -> fragment
        self.function_signatures: Dict[str, DecodedFunction] = {}  # selector -> decoded function
        self.documents_loaded = 0

        for fragment in BUILTIN_ERRORS:
            self._register_error(fragment)

        if abis:
            self.load(abis)

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def _register_function(self, fragment: FunctionFragment) -> int:
        selector = fragment.selector
        if selector in self.function_fragments:
            return 0
        self.function_fragments[selector] = fragment
        self.function_signatures[selector] = DecodedFunction(
            signature=fragment.signature,
            name=fragment.name,
            selector=selector,
        )
        return 1

    def _register_error(self, fragment: ErrorFragment) -> int:
        selector = fragment.selector
        if selector in self.error_fragments:
            return 0
        self.error_fragments[selector] = fragment
        return 1

    def load(self, abi_documents: Iterable[Any]) -> int:
        """
        Register every function and custom error of the given ABI documents.

        `abi_documents` is a collection of ABIs, each one a list of entries or
        the JSON text of one. Malformed documents and malformed entries are
        skipped with a warning. Returns the number of newly registered selectors.
        """
        added = 0
        for index, document in enumerate(abi_documents):
            try:
                entries = load_abi_document(document)
            except AbiFormatError as e:
                self._log(warning(f"Warning: Skipping malformed ABI #{index}: {e}"))
                continue

            self.documents_loaded += 1
            for entry in entries:
                try:
                    fragment = parse_fragment(entry)
                except AbiFormatError as e:
                    self._log(warning(f"Warning: Skipping malformed entry in ABI #{index}: {e}"))
                    continue

                if isinstance(fragment, FunctionFragment):
                    added += self._register_function(fragment)
                elif isinstance(fragment, ErrorFragment):
                    added += self._register_error(fragment)

        self._log(
            f"Selector registry holds {len(self.function_fragments)} function(s) "
            f"and {len(self.error_fragments)} error(s)",
            "debug",
        )
        return added

    def decode_selector(self, selector: str) -> DecodedFunction:
        """Resolve a function selector. Unknown selectors yield an 'Unknown' sentinel, never an error."""
        selector = normalize_selector(selector)
        decoded = self.function_signatures.get(selector)
        if decoded:
            return decoded
        return DecodedFunction(signature=selector, name=UNKNOWN, selector=selector)

    def get_function(self, selector: str) -> Optional[FunctionFragment]:
        return self.function_fragments.get(normalize_selector(selector))

    def get_error(self, selector: str) -> Optional[ErrorFragment]:
        return self.error_fragments.get(normalize_selector(selector))

    def get_cache_stats(self) -> Dict[str, int]:
        """Get cache statistics."""
        return {
            'function_count': len(self.function_fragments),
            'error_count': len(self.error_fragments),
            'documents': self.documents_loaded,
        }
