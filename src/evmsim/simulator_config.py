"""
Simulator configuration management.
Holds RPC and explorer endpoints plus timeouts, loaded from evmsim.config.yaml.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_FILE = "evmsim.config.yaml"


@dataclass
class SimulatorConfig:
    """Configuration for one simulation run."""

    rpc_url: str = "http://localhost:8545"
    api_etherscan_url: str = "https://api.etherscan.io/v2/api"
    etherscan_url: Optional[str] = None  # block explorer override, else derived from the chain id
    etherscan_api_key: str = field(default_factory=lambda: os.environ.get("ETHERSCAN_API_KEY", ""))

    # Timeouts (seconds)
    trace_timeout: int = 10
    token_metadata_timeout: float = 5.0

    # Explorer API
    api_requests_per_second: float = 4
    api_execution_strategy: str = "parallel"  # or "sequential"

    def __post_init__(self):
        if self.api_execution_strategy not in ("parallel", "sequential"):
            raise ValueError(f"Unknown api_execution_strategy: {self.api_execution_strategy}")

    @classmethod
    def from_config_file(cls, config_file: str = DEFAULT_CONFIG_FILE) -> "SimulatorConfig":
        """Load configuration from an evmsim config file."""
        if not Path(config_file).exists():
            # Return default config if file doesn't exist
            return cls()

        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        rpc_config = config_data.get('rpc', {}) or {}
        explorer_config = config_data.get('explorer', {}) or {}
        defaults = cls()

        return cls(
            rpc_url=rpc_config.get('url', defaults.rpc_url),
            trace_timeout=rpc_config.get('trace_timeout', defaults.trace_timeout),
            token_metadata_timeout=rpc_config.get('token_metadata_timeout', defaults.token_metadata_timeout),
            api_etherscan_url=explorer_config.get('api_url', defaults.api_etherscan_url),
            etherscan_url=explorer_config.get('url', defaults.etherscan_url),
            etherscan_api_key=explorer_config.get('api_key') or defaults.etherscan_api_key,
            api_requests_per_second=explorer_config.get('requests_per_second', defaults.api_requests_per_second),
            api_execution_strategy=explorer_config.get('execution_strategy', defaults.api_execution_strategy),
        )

    def save_to_config_file(self, config_file: str = DEFAULT_CONFIG_FILE):
        """Save configuration to an evmsim config file, keeping unrelated keys."""
        config_data = {}
        if Path(config_file).exists():
            with open(config_file, 'r') as f:
                config_data = yaml.safe_load(f) or {}

        # Ensure structure exists
        if 'rpc' not in config_data:
            config_data['rpc'] = {}
        if 'explorer' not in config_data:
            config_data['explorer'] = {}

        config_data['rpc'].update({
            'url': self.rpc_url,
            'trace_timeout': self.trace_timeout,
            'token_metadata_timeout': self.token_metadata_timeout,
        })
        config_data['explorer'].update({
            'api_url': self.api_etherscan_url,
            'requests_per_second': self.api_requests_per_second,
            'execution_strategy': self.api_execution_strategy,
        })
        if self.etherscan_url:
            config_data['explorer']['url'] = self.etherscan_url
        # The API key stays out of the file, it comes from ETHERSCAN_API_KEY or --etherscan-api-key

        with open(config_file, 'w') as f:
            yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)
