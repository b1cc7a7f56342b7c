"""
Transfer Detector

Walks a parsed call tree and collects value transfers: native value moved by
CALL/CREATE frames and ERC-20 transfer()/transferFrom() calls. Token metadata
is resolved through a caller supplied async resolver, concurrently and with a
per-token timeout, and the final list is deduplicated so that a transfer seen
at both a proxy and its implementation is only reported once.
"""

import asyncio
import sys
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from eth_abi import decode as abi_decode
from eth_utils import decode_hex

from .colors import warning
from .trace_parser import ParsedCallFrame

TRANSFER_SELECTOR = '0xa9059cbb'  # transfer(address,uint256)
TRANSFER_FROM_SELECTOR = '0x23b872dd'  # transferFrom(address,address,uint256)

NATIVE_SYMBOL = 'ETH'
NATIVE_DECIMALS = 18

UNKNOWN_TOKEN_NAME = 'Unknown Token'
UNKNOWN_TOKEN_SYMBOL = 'UNKNOWN'
DEFAULT_TOKEN_DECIMALS = 18
DEFAULT_METADATA_TIMEOUT = 5.0


@dataclass(frozen=True)
class TokenMetadata:
    """Token metadata from an ERC-20 contract."""
    address: str
    name: str
    symbol: str
    decimals: int

    @classmethod
    def unknown(cls, address: str) -> 'TokenMetadata':
        return cls(
            address=address.lower(),
            name=UNKNOWN_TOKEN_NAME,
            symbol=UNKNOWN_TOKEN_SYMBOL,
            decimals=DEFAULT_TOKEN_DECIMALS,
        )


@dataclass(frozen=True)
class TokenTransfer:
    """A token or native value transfer detected in the trace."""
    type: str  # 'erc20' or 'native'
    from_addr: str
    to_addr: str
    amount: int
    token_address: Optional[str] = None  # ERC-20 only
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    token_decimals: Optional[int] = None
    formatted_amount: Optional[str] = None

    @property
    def dedup_key(self) -> Tuple[str, str, int, str]:
        # No token_address: proxy and implementation frames report the same
        # transfer under different contract addresses
        return (self.from_addr.lower(), self.to_addr.lower(), self.amount, self.type)

    @property
    def has_metadata(self) -> bool:
        return bool(self.token_symbol) and self.token_symbol != UNKNOWN_TOKEN_SYMBOL


@dataclass
class TransferResult:
    transfers: List[TokenTransfer]
    token_metadata: Dict[str, TokenMetadata]  # lowercased address -> metadata


TokenMetadataResolver = Callable[[str], Awaitable[Union[TokenMetadata, Mapping[str, Any], None]]]


def format_token_amount(amount: int, decimals: int, max_decimals: int = 6) -> str:
    """
    Format a raw token amount with its decimals, e.g. (1500000, 6) -> '1.5'.

    The fractional part is truncated, never rounded, to `max_decimals` digits.
    """
    if decimals <= 0:
        return str(amount)

    integer_part, fractional_part = divmod(amount, 10 ** decimals)
    if fractional_part == 0:
        return str(integer_part)

    fractional = str(fractional_part).rjust(decimals, '0').rstrip('0')[:max_decimals].rstrip('0')
    return f"{integer_part}.{fractional}" if fractional else str(integer_part)


class TransferDetector:
    """Service for detecting token transfers in transaction traces."""

    def __init__(self, resolver: Optional[TokenMetadataResolver] = None,
                 metadata_timeout: float = DEFAULT_METADATA_TIMEOUT,
                 quiet_mode: bool = False, verbose: bool = False):
        self.resolver = resolver
        self.metadata_timeout = metadata_timeout
        self.quiet_mode = quiet_mode
        self.verbose = verbose

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def _erc20_args(self, frame: ParsedCallFrame, arg_types: Sequence[str]) -> Optional[Sequence[Any]]:
        """Arguments of an ERC-20 call, from the ABI-decoded input or from the fixed ERC-20 layout."""
        if frame.decoded_input is not None and len(frame.decoded_input) >= len(arg_types):
            return frame.decoded_input
        try:
            return abi_decode(list(arg_types), decode_hex(frame.input[10:]))
        except Exception as e:
            self._log(f"Could not decode ERC-20 arguments at depth {frame.depth}: {e}", "debug")
            return None

    @staticmethod
    def _valid_transfer_args(addresses: Sequence[Any], amount: Any) -> bool:
        if not all(isinstance(addr, str) and addr for addr in addresses):
            return False
        return isinstance(amount, int) and not isinstance(amount, bool) and amount >= 0

    def _parse_transfer_call(self, frame: ParsedCallFrame, actual_from: str) -> Optional[TokenTransfer]:
        """Parse transfer() call: transfer(address to, uint256 amount)"""
        args = self._erc20_args(frame, ('address', 'uint256'))
        if args is None:
            return None
        recipient, amount = args[0], args[1]
        if not self._valid_transfer_args([recipient], amount):
            return None
        return TokenTransfer(
            type='erc20',
            from_addr=actual_from,
            to_addr=recipient,
            amount=amount,
            token_address=frame.to_addr,
        )

    def _parse_transfer_from_call(self, frame: ParsedCallFrame, actual_from: str) -> Optional[TokenTransfer]:
        """Parse transferFrom() call: transferFrom(address from, address to, uint256 amount)"""
        args = self._erc20_args(frame, ('address', 'address', 'uint256'))
        if args is None:
            return None
        sender, recipient, amount = args[0], args[1], args[2]
        if not self._valid_transfer_args([sender, recipient], amount):
            return None
        if frame.type == 'DELEGATECALL':
            sender = actual_from
        return TokenTransfer(
            type='erc20',
            from_addr=sender,
            to_addr=recipient,
            amount=amount,
            token_address=frame.to_addr,
        )

    def _traverse_frame(self, frame: ParsedCallFrame, transfers: List[TokenTransfer],
                        token_addresses: Dict[str, None], parent: Optional[ParsedCallFrame] = None):
        # DELEGATECALL runs in the caller's context, so the caller's caller is the sender
        is_delegate_call = frame.type == 'DELEGATECALL'
        actual_from = parent.from_addr if is_delegate_call and parent is not None else frame.from_addr

        # Value of a DELEGATECALL was already moved by the enclosing CALL
        if frame.value > 0 and not is_delegate_call:
            transfers.append(TokenTransfer(
                type='native',
                from_addr=actual_from,
                to_addr=frame.to_addr,
                amount=frame.value,
                token_symbol=NATIVE_SYMBOL,
                token_decimals=NATIVE_DECIMALS,
                formatted_amount=format_token_amount(frame.value, NATIVE_DECIMALS),
            ))

        calldata = frame.input.lower()
        transfer = None
        if calldata.startswith(TRANSFER_SELECTOR):
            transfer = self._parse_transfer_call(frame, actual_from)
        elif calldata.startswith(TRANSFER_FROM_SELECTOR):
            transfer = self._parse_transfer_from_call(frame, actual_from)
        if transfer is not None:
            transfers.append(transfer)
            token_addresses[transfer.token_address.lower()] = None

        for call in frame.calls:
            self._traverse_frame(call, transfers, token_addresses, frame)

    def _coerce_metadata(self, address: str, resolved: Any) -> TokenMetadata:
        if resolved is None:
            return TokenMetadata.unknown(address)
        if isinstance(resolved, TokenMetadata):
            return replace(resolved, address=address)
        return TokenMetadata(
            address=address,
            name=str(resolved.get('name') or UNKNOWN_TOKEN_NAME),
            symbol=str(resolved.get('symbol') or UNKNOWN_TOKEN_SYMBOL),
            decimals=int(resolved.get('decimals', DEFAULT_TOKEN_DECIMALS)),
        )

    async def fetch_token_metadata(self, address: str) -> TokenMetadata:
        """Resolve one token. Failures and timeouts resolve to the UNKNOWN sentinel."""
        address = address.lower()
        if self.resolver is None:
            return TokenMetadata.unknown(address)
        try:
            resolved = await asyncio.wait_for(self.resolver(address), timeout=self.metadata_timeout)
            return self._coerce_metadata(address, resolved)
        except asyncio.TimeoutError:
            self._log(warning(f"Warning: Timeout fetching token metadata for {address}"))
        except Exception as e:
            self._log(warning(f"Warning: Failed to fetch token metadata for {address}: {e}"))
        return TokenMetadata.unknown(address)

    async def fetch_multiple_token_metadata(self, addresses: Sequence[str]) -> Dict[str, TokenMetadata]:
        """Fetch token metadata for multiple addresses concurrently. Never raises."""
        unique_addresses = list(dict.fromkeys(addr.lower() for addr in addresses))
        self._log(f"Fetching metadata for {len(unique_addresses)} token(s)...", "debug")

        results = await asyncio.gather(
            *(self.fetch_token_metadata(addr) for addr in unique_addresses),
            return_exceptions=True,
        )

        metadata = {}
        for addr, result in zip(unique_addresses, results):
            metadata[addr] = result if isinstance(result, TokenMetadata) else TokenMetadata.unknown(addr)
        return metadata

    def _enrich(self, transfer: TokenTransfer, token_metadata: Dict[str, TokenMetadata]) -> TokenTransfer:
        if transfer.type != 'erc20' or not transfer.token_address:
            return transfer
        metadata = token_metadata.get(transfer.token_address.lower())
        if metadata is None:
            return transfer
        return replace(
            transfer,
            token_name=metadata.name,
            token_symbol=metadata.symbol,
            token_decimals=metadata.decimals,
            formatted_amount=format_token_amount(transfer.amount, metadata.decimals),
        )

    @staticmethod
    def deduplicate_transfers(transfers: Sequence[TokenTransfer]) -> List[TokenTransfer]:
        """
        Collapse transfers that share (from, to, amount, type).

        A copy with resolved metadata replaces an unresolved one; otherwise the
        first one in traversal order is kept.
        """
        seen: Dict[Tuple[str, str, int, str], TokenTransfer] = {}
        for transfer in transfers:
            key = transfer.dedup_key
            existing = seen.get(key)
            if existing is None or (transfer.has_metadata and not existing.has_metadata):
                seen[key] = transfer
        return list(seen.values())

    def find_transfers(self, frame: ParsedCallFrame) -> List[TokenTransfer]:
        """Raw detections in traversal order, before metadata and deduplication."""
        transfers: List[TokenTransfer] = []
        self._traverse_frame(frame, transfers, {})
        return transfers

    async def detect_transfers(self, frame: ParsedCallFrame) -> TransferResult:
        """Detect all transfers in a parsed trace, resolve token metadata and deduplicate."""
        transfers: List[TokenTransfer] = []
        token_addresses: Dict[str, None] = {}
        self._traverse_frame(frame, transfers, token_addresses)
        self._log(f"Detected {len(transfers)} transfer(s)", "debug")

        token_metadata: Dict[str, TokenMetadata] = {}
        if token_addresses:
            token_metadata = await self.fetch_multiple_token_metadata(list(token_addresses))

        enriched = [self._enrich(transfer, token_metadata) for transfer in transfers]
        return TransferResult(
            transfers=self.deduplicate_transfers(enriched),
            token_metadata=token_metadata,
        )
