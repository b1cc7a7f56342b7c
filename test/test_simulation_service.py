"""
Unit tests for SimulationService with the network clients replaced by fakes.
"""

import pytest

import evmsim.simulation_service as simulation_service
from evmsim.simulation_service import (
    TRACING_UNSUPPORTED,
    SimulationError,
    SimulationRequest,
    SimulationService,
    classify_error,
    validate_request,
)
from evmsim.simulator_config import SimulatorConfig

from trace_helpers import CALLER, ERC20_ABI, RECIPIENT, TOKEN, make_frame, transfer_input


class FakeTraceClient:
    """Stands in for TraceClient; behaviour is set on the class by each test."""
    chain_id = 1
    trace = None
    chain_error = None
    calls = []

    def __init__(self, rpc_url, timeout=10, quiet_mode=False, verbose=False):
        self.rpc_url = rpc_url

    def get_chain_id(self):
        if self.chain_error:
            raise self.chain_error
        return self.chain_id

    def get_block_number(self):
        return 19000000

    def trace_call_safe(self, to, from_, calldata, block='latest', value=0):
        return self.trace

    def call(self, to, from_, calldata, block='latest', value=0):
        FakeTraceClient.calls.append((to, from_, calldata, block, value))
        return '0x01'


class FakeEtherscanClient:

    def __init__(self, api_key='', api_url='', chain_id=None, **kwargs):
        self.chain_id = chain_id

    extract_addresses_from_trace = staticmethod(simulation_service.EtherscanClient.extract_addresses_from_trace)

    def fetch_multiple_abis(self, addresses):
        return {TOKEN: ERC20_ABI}

    def fetch_multiple_contract_names(self, addresses):
        return {TOKEN: 'FiatToken'}

    def get_all_cached_abis(self):
        return [ERC20_ABI]


class FakeTokenMetadataClient:

    def __init__(self, rpc_url, timeout=5.0, quiet_mode=False, verbose=False):
        pass

    async def fetch_token_metadata(self, address):
        return {'name': 'USD Coin', 'symbol': 'USDC', 'decimals': 6}


@pytest.fixture
def fake_clients(monkeypatch):
    FakeTraceClient.chain_id = 1
    FakeTraceClient.trace = None
    FakeTraceClient.chain_error = None
    FakeTraceClient.calls = []
    monkeypatch.setattr(simulation_service, 'TraceClient', FakeTraceClient)
    monkeypatch.setattr(simulation_service, 'EtherscanClient', FakeEtherscanClient)
    monkeypatch.setattr(simulation_service, 'TokenMetadataClient', FakeTokenMetadataClient)
    return FakeTraceClient


def make_service():
    return SimulationService(SimulatorConfig(rpc_url='http://node:8545', etherscan_api_key=''), quiet_mode=True)


class TestValidation:

    @pytest.mark.parametrize("overrides,message", [
        ({'from_address': '0x123'}, 'Invalid from address'),
        ({'to_address': 'not-an-address'}, 'Invalid contract address'),
        ({'payload': '0xzz'}, 'Invalid calldata'),
        ({'payload': 'a9059cbb'}, 'Invalid calldata'),
        ({'value': -1}, 'Invalid value'),
    ])
    def test_invalid_requests(self, overrides, message):
        fields = {'from_address': CALLER, 'to_address': TOKEN}
        fields.update(overrides)
        with pytest.raises(SimulationError, match=message):
            validate_request(SimulationRequest(**fields))

    def test_valid_request(self):
        validate_request(SimulationRequest(from_address=CALLER, to_address=TOKEN, payload='0x', value=0))


class TestClassifyError:

    @pytest.mark.parametrize("message,error_type", [
        ('execution reverted: paused', 'revert'),
        ('insufficient funds for gas * price + value', 'insufficient_funds'),
        ('nonce too low', 'nonce'),
        ('intrinsic gas too low', 'gas'),
    ])
    def test_known_failures(self, message, error_type):
        assert classify_error(message)['type'] == error_type

    def test_unknown_failure(self):
        assert classify_error('connection refused') is None


class TestSimulate:
    """Tests for the end-to-end simulate() flow."""

    def test_invalid_request_is_reported_not_raised(self, fake_clients):
        result = make_service().simulate(SimulationRequest(from_address='0x123', to_address=TOKEN))
        assert result.success is False
        assert result.error.startswith('Invalid from address')
        assert result.error_details is None

    def test_falls_back_to_eth_call_without_tracing(self, fake_clients):
        request = SimulationRequest(from_address=CALLER, to_address=TOKEN, payload='0xabcd', value=5, block=100)
        result = make_service().simulate(request)

        assert result.success is True
        assert result.error == TRACING_UNSUPPORTED
        assert result.return_data == '0x01'
        assert result.chain_id == 1
        assert result.etherscan_url == 'https://etherscan.io'
        assert result.parsed_trace is None
        assert fake_clients.calls == [(TOKEN, CALLER, '0xabcd', 100, 5)]

    def test_full_simulation(self, fake_clients):
        fake_clients.trace = make_frame(input=transfer_input(RECIPIENT, 500000))
        steps = []

        result = make_service().simulate(
            SimulationRequest(from_address=CALLER, to_address=TOKEN, payload=transfer_input(RECIPIENT, 500000)),
            on_progress=lambda step, total, message: steps.append((step, total)),
        )

        assert result.success is True
        assert steps == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]
        assert result.parsed_trace.frame.function_name == 'transfer'
        assert result.contract_names == {TOKEN: 'FiatToken'}
        assert [t.formatted_amount for t in result.transfers] == ['0.5']
        assert result.transfers[0].token_symbol == 'USDC'

    def test_unsupported_chain_needs_explorer_url(self, fake_clients):
        fake_clients.chain_id = 999
        result = make_service().simulate(SimulationRequest(from_address=CALLER, to_address=TOKEN))
        assert result.success is False
        assert 'Chain ID 999 is not supported' in result.error

    def test_explorer_url_override(self, fake_clients):
        fake_clients.chain_id = 999
        request = SimulationRequest(from_address=CALLER, to_address=TOKEN, etherscan_url='https://scan.example.org')
        result = make_service().simulate(request)
        assert result.success is True
        assert result.etherscan_url == 'https://scan.example.org'

    def test_node_failure_is_classified(self, fake_clients):
        fake_clients.chain_error = ConnectionError('insufficient funds for transfer')
        result = make_service().simulate(SimulationRequest(from_address=CALLER, to_address=TOKEN))
        assert result.success is False
        assert result.error_details['type'] == 'insufficient_funds'
