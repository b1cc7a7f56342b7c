"""
Unit tests for the explorer API client, its rate limiter and URL helpers.
"""

import json

import pytest
import requests

from evmsim.etherscan_client import (
    EtherscanClient,
    RateLimiter,
    get_address_url,
    get_etherscan_url,
    get_network_name,
)

from trace_helpers import CALLER, ERC20_ABI, PROXY, RECIPIENT, TOKEN, make_frame


class FakeResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


class FakeSession:
    """Records every GET and answers from a per-(action, address) table."""

    def __init__(self, answers):
        self.answers = answers
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, dict(params)))
        answer = self.answers.get((params['action'], params['address']))
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            return FakeResponse({'status': '0', 'message': 'NOTOK', 'result': 'Contract source code not verified'})
        return FakeResponse(answer)


def abi_answer(abi):
    return {'status': '1', 'message': 'OK', 'result': json.dumps(abi)}


def name_answer(name):
    return {'status': '1', 'message': 'OK', 'result': [{'ContractName': name, 'SourceCode': ''}]}


def make_client(answers, **kwargs):
    session = FakeSession(answers)
    kwargs.setdefault('requests_per_second', 1000)
    client = EtherscanClient(session=session, quiet_mode=True, **kwargs)
    return client, session


class TestUrlHelpers:

    def test_network_names(self):
        assert get_network_name(1) == 'Ethereum Mainnet'
        assert get_network_name(8453) == 'Base'
        assert get_network_name(999) == 'Unknown Network (999)'

    def test_explorer_urls(self):
        assert get_etherscan_url(42161) == 'https://arbiscan.io'
        with pytest.raises(ValueError):
            get_etherscan_url(999)

    def test_address_url(self):
        assert get_address_url(TOKEN, 1) == f'https://etherscan.io/address/{TOKEN}'
        assert get_address_url(TOKEN, 999, 'https://explorer.example.org/') == \
            f'https://explorer.example.org/address/{TOKEN}'


class TestRequests:
    """Tests for request parameters and caching."""

    def test_v2_requests_carry_chain_id(self):
        client, session = make_client({('getabi', TOKEN): abi_answer(ERC20_ABI)}, api_key='key', chain_id=8453)
        assert client.is_v2_api

        assert client.fetch_contract_abi(TOKEN) == ERC20_ABI
        url, params = session.requests[0]
        assert url == 'https://api.etherscan.io/v2/api'
        assert params == {'chainid': '8453', 'module': 'contract', 'action': 'getabi',
                          'address': TOKEN, 'apikey': 'key'}

    def test_v1_requests_have_no_chain_id(self):
        client, session = make_client({}, api_url='https://api.etherscan.io/api', chain_id=1)
        assert not client.is_v2_api
        client.fetch_contract_abi(TOKEN)
        assert 'chainid' not in session.requests[0][1]
        assert 'apikey' not in session.requests[0][1]

    def test_not_found_is_cached(self):
        client, session = make_client({})
        assert client.fetch_contract_abi(TOKEN) is None
        assert client.fetch_contract_abi(TOKEN.upper().replace('0X', '0x')) is None
        assert len(session.requests) == 1

    def test_transport_errors_are_not_cached(self):
        client, session = make_client({('getabi', TOKEN): requests.ConnectionError('refused')})
        assert client.fetch_contract_abi(TOKEN) is None
        assert client.fetch_contract_abi(TOKEN) is None
        assert len(session.requests) == 2

    def test_unreadable_abi_is_treated_as_missing(self):
        client, _ = make_client({('getabi', TOKEN): {'status': '1', 'result': 'not json'}})
        assert client.fetch_contract_abi(TOKEN) is None

    def test_contract_name(self):
        client, _ = make_client({('getsourcecode', TOKEN): name_answer('FiatTokenProxy')})
        assert client.fetch_contract_name(TOKEN) == 'FiatTokenProxy'
        assert client.fetch_contract_name(PROXY) is None

    def test_unknown_strategy_is_rejected(self):
        with pytest.raises(ValueError):
            EtherscanClient(execution_strategy='bursty')


class TestBatchFetching:

    @pytest.mark.parametrize("strategy", ["parallel", "sequential"])
    def test_fetch_multiple_abis(self, strategy):
        client, session = make_client({('getabi', TOKEN): abi_answer(ERC20_ABI)}, execution_strategy=strategy)

        abis = client.fetch_multiple_abis([TOKEN, PROXY, TOKEN])

        assert abis == {TOKEN: ERC20_ABI}
        assert sorted(params['address'] for _, params in session.requests) == sorted([TOKEN, PROXY])
        assert client.get_all_cached_abis() == [ERC20_ABI]

    def test_cached_addresses_are_not_refetched(self):
        client, session = make_client({('getsourcecode', TOKEN): name_answer('Token')})
        client.fetch_multiple_contract_names([TOKEN, PROXY])
        client.fetch_multiple_contract_names([PROXY, TOKEN])

        assert len(session.requests) == 2
        assert client.get_all_contract_names() == {TOKEN: 'Token'}


class TestExtractAddresses:

    def test_pre_order_unique_lowercased(self):
        trace = make_frame(to=TOKEN, calls=[
            make_frame(**{'from': TOKEN, 'to': PROXY}, calls=[make_frame(**{'from': PROXY, 'to': RECIPIENT})]),
            make_frame(**{'from': TOKEN, 'to': CALLER}),
        ])
        assert EtherscanClient.extract_addresses_from_trace(trace) == [TOKEN, CALLER, PROXY, RECIPIENT]

    def test_create_frame_without_to(self):
        trace = make_frame(type='CREATE')
        del trace['to']
        assert EtherscanClient.extract_addresses_from_trace(trace) == [CALLER]


class TestRateLimiter:
    """Tests for the token bucket, driven by a fake clock."""

    def make_limiter(self, rate, burst=None):
        clock = {'now': 0.0}
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            clock['now'] += seconds

        limiter = RateLimiter(rate, burst, clock=lambda: clock['now'], sleep=sleep)
        return limiter, sleeps

    def test_burst_then_throttle(self):
        limiter, sleeps = self.make_limiter(4)
        for _ in range(4):
            limiter.acquire()
        assert sleeps == []

        limiter.acquire()
        assert sleeps == [pytest.approx(0.25)]

    def test_execute_runs_the_callable(self):
        limiter, _ = self.make_limiter(4)
        assert limiter.execute(lambda a, b=0: a + b, 1, b=2) == 3

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            RateLimiter(0)
