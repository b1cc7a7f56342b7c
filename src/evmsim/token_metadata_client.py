"""
On-chain ERC-20 metadata lookup (name, symbol, decimals).

The bound `fetch_token_metadata` coroutine is what TransferDetector expects
as its resolver.
"""

import asyncio
import sys
from typing import Dict

from web3 import AsyncHTTPProvider, AsyncWeb3

from .transfer_detector import (
    DEFAULT_METADATA_TIMEOUT,
    DEFAULT_TOKEN_DECIMALS,
    UNKNOWN_TOKEN_NAME,
    UNKNOWN_TOKEN_SYMBOL,
    TokenMetadata,
)

ERC20_METADATA_ABI = [
    {
        "type": "function",
        "name": "name",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "symbol",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "decimals",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
    },
]


class TokenMetadataClient:
    """Reads token metadata straight from the token contract."""

    def __init__(self, rpc_url: str, timeout: float = DEFAULT_METADATA_TIMEOUT,
                 quiet_mode: bool = False, verbose: bool = False):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.quiet_mode = quiet_mode
        self.verbose = verbose
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        self._cache: Dict[str, TokenMetadata] = {}

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    async def fetch_token_metadata(self, address: str) -> TokenMetadata:
        """
        Call name(), symbol() and decimals() concurrently.

        Each field falls back on its own, so a token without name() still
        reports its symbol and decimals.
        """
        cache_key = address.lower()
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        contract = self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=ERC20_METADATA_ABI)
        name, symbol, decimals = await asyncio.gather(
            contract.functions.name().call(),
            contract.functions.symbol().call(),
            contract.functions.decimals().call(),
            return_exceptions=True,
        )

        for field, result in (('name', name), ('symbol', symbol), ('decimals', decimals)):
            if isinstance(result, BaseException):
                self._log(f"{field}() failed for {address}: {result}", "debug")

        metadata = TokenMetadata(
            address=cache_key,
            name=name if isinstance(name, str) and name else UNKNOWN_TOKEN_NAME,
            symbol=symbol if isinstance(symbol, str) and symbol else UNKNOWN_TOKEN_SYMBOL,
            decimals=int(decimals) if isinstance(decimals, int) else DEFAULT_TOKEN_DECIMALS,
        )
        self._cache[cache_key] = metadata
        return metadata
