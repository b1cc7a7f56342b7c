"""
Explorer API client for fetching contract ABIs and names.

Supports:
- Etherscan API v1 (chain-specific endpoints like https://api.etherscan.io/api)
- Etherscan API v2 (unified endpoint https://api.etherscan.io/v2/api with a chainid parameter)
- Blockscout (Etherscan compatible /api)
"""

import json
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter

from .colors import success, warning

DEFAULT_API_URL = 'https://api.etherscan.io/v2/api'
DEFAULT_REQUESTS_PER_SECOND = 4  # safe margin below the 5/s free tier limit
REQUEST_TIMEOUT = 10

NETWORK_NAMES = {
    # Ethereum
    1: 'Ethereum Mainnet',
    11155111: 'Sepolia Testnet',
    # Optimism
    10: 'Optimism',
    11155420: 'Optimism Sepolia',
    # BSC
    56: 'BNB Smart Chain',
    97: 'BNB Testnet',
    # Polygon
    137: 'Polygon',
    80002: 'Polygon Amoy',
    # Arbitrum
    42161: 'Arbitrum One',
    421614: 'Arbitrum Sepolia',
    # Base
    8453: 'Base',
    84532: 'Base Sepolia',
}

EXPLORER_URLS = {
    1: 'https://etherscan.io',
    11155111: 'https://sepolia.etherscan.io',
    10: 'https://optimistic.etherscan.io',
    11155420: 'https://sepolia-optimism.etherscan.io',
    56: 'https://bscscan.com',
    97: 'https://testnet.bscscan.com',
    137: 'https://polygonscan.com',
    80002: 'https://amoy.polygonscan.com',
    42161: 'https://arbiscan.io',
    421614: 'https://sepolia.arbiscan.io',
    8453: 'https://basescan.org',
    84532: 'https://sepolia.basescan.org',
}


def get_network_name(chain_id: int) -> str:
    return NETWORK_NAMES.get(chain_id, f"Unknown Network ({chain_id})")


def get_etherscan_url(chain_id: int) -> str:
    """Block explorer base URL for a chain. Raises ValueError for unsupported chains."""
    url = EXPLORER_URLS.get(chain_id)
    if not url:
        raise ValueError(
            f"Unsupported chain ID: {chain_id}. Please provide a custom Etherscan URL."
        )
    return url


def get_address_url(address: str, chain_id: int, etherscan_url: Optional[str] = None) -> str:
    base_url = (etherscan_url or get_etherscan_url(chain_id)).rstrip('/')
    return f"{base_url}/address/{address}"


class RateLimiter:
    """
    Token bucket shared by all worker threads.

    acquire() blocks until a request may start, so at most `requests_per_second`
    requests start in any one second after the initial burst.
    """

    def __init__(self, requests_per_second: float, burst_size: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic, sleep: Callable[[float], None] = time.sleep):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.refill_rate = float(requests_per_second)
        self.max_tokens = float(burst_size or requests_per_second)
        self.tokens = self.max_tokens
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def acquire(self):
        while True:
            with self._lock:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    return
                wait_time = (1 - self.tokens) / self.refill_rate
            self._sleep(wait_time)

    def execute(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run `fn` once a token is available."""
        self.acquire()
        return fn(*args, **kwargs)


class EtherscanClient:
    """
    Explorer API client (Etherscan v2 / Blockscout compatible).

    Results are cached in memory per client, including "not found" answers,
    so one run never repeats a request that already came back empty.
    """

    def __init__(self, api_key: str = '', api_url: str = DEFAULT_API_URL, chain_id: Optional[int] = None,
                 requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
                 execution_strategy: str = 'parallel', max_workers: int = 4,
                 session: Optional[requests.Session] = None,
                 quiet_mode: bool = False, verbose: bool = False):
        if execution_strategy not in ('parallel', 'sequential'):
            raise ValueError(f"Unknown execution strategy: {execution_strategy}")
        self.api_key = api_key
        self.api_url = api_url
        self.chain_id = chain_id
        self.is_v2_api = '/v2/api' in api_url
        self.execution_strategy = execution_strategy
        self.max_workers = max_workers
        self.quiet_mode = quiet_mode
        self.verbose = verbose
        self.rate_limiter = RateLimiter(requests_per_second)

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=max_workers, pool_maxsize=max_workers)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

        # lowercased address -> ABI / name; None marks a cached "not found"
        self._abi_cache: Dict[str, Optional[List[Any]]] = {}
        self._name_cache: Dict[str, Optional[str]] = {}
        self._cache_lock = threading.Lock()

    def _log(self, message: str, level: str = "info"):
        """Log a message to stderr if not in quiet mode."""
        if self.quiet_mode or (level == "debug" and not self.verbose):
            return
        print(message, file=sys.stderr)

    def _build_params(self, action: str, address: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.is_v2_api and self.chain_id:
            params['chainid'] = str(self.chain_id)
        params.update({'module': 'contract', 'action': action, 'address': address})
        if self.api_key:
            params['apikey'] = self.api_key
        return params

    def _get(self, action: str, address: str) -> Dict[str, Any]:
        response = self.rate_limiter.execute(
            self.session.get, self.api_url, params=self._build_params(action, address), timeout=REQUEST_TIMEOUT
        )
        response.raise_for_status()
        return response.json()

    def fetch_contract_abi(self, address: str) -> Optional[List[Any]]:
        """Fetch a verified contract's ABI. None if not verified or on failure."""
        cache_key = address.lower()
        with self._cache_lock:
            if cache_key in self._abi_cache:
                self._log(f"Using cached ABI for {address}", "debug")
                return self._abi_cache[cache_key]

        api_version = 'v2' if self.is_v2_api else 'v1'
        self._log(f"Fetching ABI for {address} from Explorer API ({api_version})...", "debug")
        try:
            data = self._get('getabi', address)
        except (requests.RequestException, ValueError) as e:
            # Transport failures are not cached, a later run may succeed
            self._log(warning(f"Warning: Failed to fetch ABI for {address}: {e}"))
            return None

        abi = None
        if data.get('status') == '1' and data.get('result'):
            try:
                abi = json.loads(data['result'])
            except (TypeError, ValueError) as e:
                self._log(warning(f"Warning: Explorer returned an unreadable ABI for {address}: {e}"))
        else:
            self._log(f"No ABI found for {address}: {data.get('message') or 'Unknown error'}", "debug")

        if abi is not None and not isinstance(abi, list):
            abi = None
        with self._cache_lock:
            self._abi_cache[cache_key] = abi
        if abi is not None:
            self._log(success(f"✓ Fetched ABI for {address}"), "debug")
        return abi

    def fetch_contract_name(self, address: str) -> Optional[str]:
        """Fetch a verified contract's name from its source code entry."""
        cache_key = address.lower()
        with self._cache_lock:
            if cache_key in self._name_cache:
                return self._name_cache[cache_key]

        self._log(f"Fetching contract name for {address}...", "debug")
        try:
            data = self._get('getsourcecode', address)
        except (requests.RequestException, ValueError) as e:
            self._log(f"Failed to fetch contract name for {address}: {e}", "debug")
            return None

        name = None
        result = data.get('result')
        if data.get('status') == '1' and isinstance(result, list) and result:
            name = result[0].get('ContractName') or None

        with self._cache_lock:
            self._name_cache[cache_key] = name
        return name

    def _fetch_all(self, fetch: Callable[[str], Any], addresses: List[str]) -> List[Any]:
        if self.execution_strategy == 'sequential' or len(addresses) < 2:
            return [fetch(address) for address in addresses]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            # map preserves input order
            return list(executor.map(fetch, addresses))

    def fetch_multiple_abis(self, addresses: Iterable[str]) -> Dict[str, List[Any]]:
        """Fetch ABIs for several addresses. Only found ABIs are returned, keyed by lowercased address."""
        unique_addresses = list(dict.fromkeys(address.lower() for address in addresses))
        with self._cache_lock:
            to_fetch = [address for address in unique_addresses if address not in self._abi_cache]

        if to_fetch:
            cached_count = len(unique_addresses) - len(to_fetch)
            self._log(f"Fetching ABIs for {len(to_fetch)} contract(s) from Explorer API ({cached_count} cached)...")
            self._fetch_all(self.fetch_contract_abi, to_fetch)

        with self._cache_lock:
            abi_map = {
                address: self._abi_cache[address]
                for address in unique_addresses
                if self._abi_cache.get(address)
            }
        if to_fetch:
            self._log(success(f"✓ Fetched {len(abi_map)} ABI(s) from Explorer API"))
        return abi_map

    def fetch_multiple_contract_names(self, addresses: Iterable[str]) -> Dict[str, str]:
        """Fetch contract names for several addresses, keyed by lowercased address."""
        unique_addresses = list(dict.fromkeys(address.lower() for address in addresses))
        with self._cache_lock:
            to_fetch = [address for address in unique_addresses if address not in self._name_cache]

        if to_fetch:
            self._log(f"Fetching contract names for {len(to_fetch)} address(es)...", "debug")
            self._fetch_all(self.fetch_contract_name, to_fetch)

        with self._cache_lock:
            return {
                address: self._name_cache[address]
                for address in unique_addresses
                if self._name_cache.get(address)
            }

    def get_all_cached_abis(self) -> List[List[Any]]:
        with self._cache_lock:
            return [abi for abi in self._abi_cache.values() if abi]

    def get_all_contract_names(self) -> Dict[str, str]:
        with self._cache_lock:
            return {address: name for address, name in self._name_cache.items() if name}

    @staticmethod
    def extract_addresses_from_trace(trace: Dict[str, Any]) -> List[str]:
        """Unique lowercased `to`/`from` addresses of every frame in a raw call tree."""
        addresses: Dict[str, None] = {}
        stack = [trace]
        while stack:
            node = stack.pop()
            if node.get('to'):
                addresses[node['to'].lower()] = None
            if node.get('from'):
                addresses[node['from'].lower()] = None
            stack.extend(reversed(node.get('calls') or []))
        return list(addresses)
